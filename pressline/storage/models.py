"""Data models for topics, content pieces, pipeline runs and approvals."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TopicStatus(str, Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes_requested"


class ContentStatus(str, Enum):
    DRAFT = "draft"
    READY = "ready"
    PUBLISHED = "published"
    ERROR = "error"


class PipelineKind(str, Enum):
    CONTENT = "content"
    SEO = "seo"
    PODCAST = "podcast"


class TriggerType(str, Enum):
    CRON = "cron"
    MANUAL = "manual"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ApprovalType(str, Enum):
    TOPIC_SELECTION = "topic_selection"
    CONTENT_REVIEW = "content_review"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes_requested"

    @property
    def is_terminal(self) -> bool:
        return self is not ApprovalStatus.PENDING


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"
    AGENT = "agent"


class Topic(BaseModel):
    """A candidate content subject."""

    id: str = Field(default_factory=lambda: new_id("topic"))
    title_he: str = Field(default="", description="Hebrew title")
    title_en: str = Field(..., description="English title")
    keywords: list[str] = Field(default_factory=list)
    priority: Priority = Field(default=Priority.MEDIUM)
    status: TopicStatus = Field(default=TopicStatus.PROPOSED)
    last_used: Optional[datetime] = None

    # Set when the topic was derived from reviewer feedback
    source_topic_id: Optional[str] = None
    feedback: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("keywords")
    @classmethod
    def _dedupe_keywords(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for keyword in value:
            keyword = keyword.strip()
            if keyword and keyword not in seen:
                seen.append(keyword)
        return seen

    @property
    def display_title(self) -> str:
        return self.title_en or self.title_he


class MediaUrls(BaseModel):
    """Optional media assets, each filled independently."""

    featured_image: Optional[str] = None
    video: Optional[str] = None
    social_image: Optional[str] = None
    podcast_audio: Optional[str] = None
    podcast_episode: Optional[str] = None


class ContentPiece(BaseModel):
    """The generated artifact for a Topic."""

    id: str = Field(default_factory=lambda: new_id("content"))
    topic_id: str
    body_he: str = ""
    body_en: str = ""
    word_count: int = Field(default=0, ge=0)
    seo_score: int = Field(default=0, ge=0, le=100)
    focus_keyword: str = ""
    status: ContentStatus = Field(default=ContentStatus.DRAFT)
    media: MediaUrls = Field(default_factory=MediaUrls)

    # Publishing target references
    wp_post_id: Optional[int] = None
    wp_post_id_en: Optional[int] = None
    social_posts: dict[str, str] = Field(default_factory=dict)

    # Healer exclusive marker
    heal_marker: Optional[str] = None
    heal_marker_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_publishable(self) -> bool:
        return bool(self.body_he.strip()) and self.wp_post_id is not None


class RunLogEntry(BaseModel):
    """A log line embedded in a pipeline run."""

    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel = LogLevel.INFO
    stage: Optional[str] = None
    message: str


class PipelineRun(BaseModel):
    """One execution instance of a pipeline kind."""

    id: str = Field(default_factory=lambda: new_id("run"))
    trigger_type: TriggerType = TriggerType.MANUAL
    kind: PipelineKind = PipelineKind.CONTENT
    status: RunStatus = RunStatus.RUNNING
    current_stage: str
    stages_completed: list[str] = Field(default_factory=list)
    stages_failed: list[str] = Field(default_factory=list)

    topic_id: Optional[str] = None
    content_id: Optional[str] = None
    retry_of: Optional[str] = None

    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    logs: list[RunLogEntry] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status is not RunStatus.RUNNING


class Approval(BaseModel):
    """A pending or resolved human decision."""

    id: str = Field(default_factory=lambda: new_id("approval"))
    type: ApprovalType = ApprovalType.CONTENT_REVIEW
    entity_id: str
    run_id: Optional[str] = None
    title: str = ""
    status: ApprovalStatus = ApprovalStatus.PENDING
    feedback: Optional[str] = None
    responder_id: Optional[str] = None
    responded_at: Optional[datetime] = None
    external_message_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class PipelineLogEntry(BaseModel):
    """An append-only dashboard log entry."""

    id: Optional[int] = None
    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel = LogLevel.INFO
    message: str
    topic_id: Optional[str] = None
    run_id: Optional[str] = None
