"""
Stage executor contract.

An executor receives a snapshot of the run and the shared collaborators and
returns a StageResult: either completed (with any new topic/content bindings)
or suspended awaiting an external decision. Raising means the stage failed.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import structlog
from pydantic import BaseModel

from ..errors import ExternalUnavailable, StageExecutionError
from ..providers.base import (
    GenerationProvider,
    JobKind,
    JobSpec,
    MessagingChannel,
    PodcastHost,
    PublishingTarget,
    await_job,
)
from ..settings import PipelineSettings
from ..storage.models import ContentPiece, PipelineRun, Topic
from ..storage.repository import ContentStore

if TYPE_CHECKING:
    from ..pipeline.approval import ApprovalGate
    from ..pipeline.logger import PipelineLogger

logger = structlog.get_logger()


class StageStatus(str, Enum):
    COMPLETED = "completed"
    SUSPENDED = "suspended"


class StageResult(BaseModel):
    """Outcome of a successful stage invocation."""

    status: StageStatus = StageStatus.COMPLETED
    message: str = ""
    topic_id: Optional[str] = None
    content_id: Optional[str] = None

    @classmethod
    def completed(cls, message: str = "", topic_id: Optional[str] = None, content_id: Optional[str] = None):
        return cls(status=StageStatus.COMPLETED, message=message, topic_id=topic_id, content_id=content_id)

    @classmethod
    def suspended(cls, message: str = ""):
        return cls(status=StageStatus.SUSPENDED, message=message)

    @property
    def is_suspended(self) -> bool:
        return self.status is StageStatus.SUSPENDED


class StageContext:
    """Collaborators shared by every stage executor."""

    def __init__(
        self,
        store: ContentStore,
        pipeline_logger: "PipelineLogger",
        approvals: "ApprovalGate",
        settings: PipelineSettings,
        text: GenerationProvider,
        audio: GenerationProvider,
        media: GenerationProvider,
        publisher: PublishingTarget,
        messenger: MessagingChannel,
        podcast_host: PodcastHost,
    ):
        self.store = store
        self.log = pipeline_logger
        self.approvals = approvals
        self.settings = settings
        self.text = text
        self.audio = audio
        self.media = media
        self.publisher = publisher
        self.messenger = messenger
        self.podcast_host = podcast_host

    async def generate(
        self,
        provider: GenerationProvider,
        kind: JobKind,
        prompt: str,
        system: Optional[str] = None,
        critical: bool = True,
        **options: Any,
    ) -> str:
        """Submit a job and wait for its output under the configured polling budget."""
        job = JobSpec(kind=kind, prompt=prompt, system=system, options=options)
        return await await_job(
            provider,
            job,
            poll_interval=self.settings.job_poll_interval_seconds,
            timeout=self.settings.job_timeout_seconds,
            critical=critical,
        )

    async def try_generate(
        self,
        run: PipelineRun,
        provider: GenerationProvider,
        kind: JobKind,
        prompt: str,
        system: Optional[str] = None,
        **options: Any,
    ) -> Optional[str]:
        """Non-critical generation: a provider failure becomes a warning and None."""
        try:
            return await self.generate(provider, kind, prompt, system=system, critical=False, **options)
        except ExternalUnavailable as e:
            await self.log.warn(f"{kind.value} skipped: {e}", topic_id=run.topic_id, run_id=run.id)
            return None


class StageExecutor(ABC):
    """One stage of a pipeline topology."""

    name: str = ""

    @abstractmethod
    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        pass

    def fail(self, message: str) -> StageExecutionError:
        return StageExecutionError(self.name, message)

    async def require_topic(self, run: PipelineRun, ctx: StageContext) -> Topic:
        if not run.topic_id:
            raise self.fail("run has no topic bound")
        topic = await ctx.store.get_topic(run.topic_id)
        if topic is None:
            raise self.fail(f"topic {run.topic_id} not found")
        return topic

    async def require_content(self, run: PipelineRun, ctx: StageContext) -> ContentPiece:
        piece = None
        if run.content_id:
            piece = await ctx.store.get_content_piece(run.content_id)
        elif run.topic_id:
            piece = await ctx.store.get_content_for_topic(run.topic_id)
        if piece is None:
            raise self.fail("no content piece bound to the run")
        return piece
