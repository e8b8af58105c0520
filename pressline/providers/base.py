"""Collaborator interfaces: generation providers, publishing target and messaging channel."""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from ..errors import ExternalUnavailable

logger = structlog.get_logger()


class JobKind(str, Enum):
    ARTICLE = "article"
    TRANSLATION = "translation"
    ENHANCEMENT = "enhancement"
    SOCIAL = "social"
    TITLE = "title"
    PODCAST_SCRIPT = "podcast_script"
    SHOW_NOTES = "show_notes"
    SPEECH = "speech"
    IMAGE = "image"
    VIDEO = "video"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobSpec(BaseModel):
    """A unit of work submitted to a generation provider."""

    kind: JobKind
    prompt: str
    system: Optional[str] = None
    options: dict[str, Any] = Field(default_factory=dict)


class JobStatus(BaseModel):
    """Polled state of a submitted job. *output* is text or a media URL."""

    task_id: str
    state: JobState = JobState.PENDING
    output: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_done(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)


class GenerationProvider(ABC):
    """Asynchronous black-box generator (text, audio, image or video)."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        pass

    @abstractmethod
    async def submit(self, job: JobSpec) -> str:
        """Submit a job and return its task id."""
        pass

    @abstractmethod
    async def poll(self, task_id: str) -> JobStatus:
        """Return the current status of a submitted job."""
        pass


async def await_job(
    provider: GenerationProvider,
    job: JobSpec,
    poll_interval: float = 15.0,
    timeout: float = 300.0,
    critical: bool = True,
) -> str:
    """
    Submit a job and poll it until it succeeds, fails or times out.

    Returns the job output. Raises ExternalUnavailable on failure or timeout,
    flagged with *critical* so callers can decide whether to degrade.
    """
    try:
        task_id = await provider.submit(job)
    except ExternalUnavailable:
        raise
    except Exception as e:
        raise ExternalUnavailable(provider.name, f"submit failed: {e}", critical=critical) from e

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        try:
            status = await provider.poll(task_id)
        except ExternalUnavailable:
            raise
        except Exception as e:
            raise ExternalUnavailable(provider.name, f"poll failed for {task_id}: {e}", critical=critical) from e

        if status.state is JobState.SUCCEEDED:
            if not status.output:
                raise ExternalUnavailable(provider.name, f"job {task_id} returned no output", critical=critical)
            return status.output
        if status.state is JobState.FAILED:
            raise ExternalUnavailable(provider.name, status.error or f"job {task_id} failed", critical=critical)

        if loop.time() >= deadline:
            raise ExternalUnavailable(provider.name, f"job {task_id} timed out after {timeout:.0f}s", critical=critical)

        logger.debug(f"{provider.name} job {task_id} is {status.state.value}, polling again")
        await asyncio.sleep(poll_interval)


class RemotePost(BaseModel):
    """A post as stored by the publishing target."""

    id: int
    status: str = "draft"
    link: str = ""
    title: str = ""


class PostDraft(BaseModel):
    """Fields for creating a post on the publishing target."""

    title: str
    content: str
    excerpt: str = ""
    lang: str = "he"
    featured_image_url: Optional[str] = None
    translation_of: Optional[int] = None
    meta: dict[str, Any] = Field(default_factory=dict)


class PublishingTarget(ABC):
    """Publishing target. Callers store the returned post id and never create twice."""

    @abstractmethod
    async def create_draft_post(self, draft: PostDraft) -> RemotePost:
        pass

    @abstractmethod
    async def publish_post(self, post_id: int) -> RemotePost:
        pass

    @abstractmethod
    async def update_post(self, post_id: int, fields: dict[str, Any]) -> RemotePost:
        pass

    @abstractmethod
    async def get_post(self, post_id: int) -> Optional[RemotePost]:
        pass


class ApprovalRequest(BaseModel):
    """Renderable review request for the messaging channel."""

    approval_id: str
    approval_type: str
    entity_id: str
    title: str
    summary: str = ""

    def to_text(self) -> str:
        heading = "Topic proposal" if self.approval_type == "topic_selection" else "Article ready for review"
        lines = [f"*{heading}:* {self.title}"]
        if self.summary:
            lines.append(self.summary)
        lines.append(f"Approval ID: `{self.approval_id}`")
        return "\n".join(lines)


class MessagingChannel(ABC):
    """Outbound messaging channel for review requests and notifications."""

    @abstractmethod
    async def send_approval_request(self, request: ApprovalRequest) -> str:
        """Send a review request. Returns the external message id."""
        pass

    @abstractmethod
    async def send_message(self, text: str) -> Optional[str]:
        """Send a plain notification."""
        pass


class PodcastEpisode(BaseModel):
    """An episode as stored by the podcast host."""

    id: str
    url: str = ""
    title: str = ""


class PodcastHost(ABC):
    """Podcast hosting service that distributes finished episodes."""

    @abstractmethod
    async def upload_episode(self, audio_url: str, title: str, show_notes: str) -> PodcastEpisode:
        """Upload the audio at *audio_url* as a new episode."""
        pass
