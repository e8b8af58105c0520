"""
Pipeline orchestrator for the bilingual content workflow.

Three fixed pipeline kinds share one stage driver:

    CONTENT: topic-selection → hebrew-generation → wp-draft-video →
             approval-gate ⏸ → hebrew-publish → english-publish-social
    SEO:     seo-audit → seo-enhance
    PODCAST: podcast-selection → podcast-production

Progress is persisted after every stage, so ``advance`` can pick a run up
from its stored stage pointer after a suspension or a crash, and ``heal``
can re-drive a single stage for a record left inconsistent.
"""

import asyncio
import re
from enum import Enum
from typing import Optional, Union

import structlog
from pydantic import BaseModel

from ..errors import (
    ExternalUnavailable,
    RunConflictError,
    RunImmutableError,
    StageExecutionError,
    StoreUnavailable,
    ValidationError,
)
from ..providers.base import JobKind
from ..settings import PipelineSettings
from ..stages import StageContext, StageExecutor, topology
from ..storage.models import (
    ApprovalType,
    ContentPiece,
    PipelineKind,
    PipelineRun,
    Priority,
    RunStatus,
    Topic,
    TopicStatus,
    TriggerType,
)
from ..storage.repository import ContentStore
from .defects import Defect, detect_defects
from .ledger import RunLedger
from .logger import PipelineLogger

logger = structlog.get_logger()

STOPWORDS = {
    "the", "and", "for", "but", "not", "too", "very", "this", "that", "with", "are", "was",
    "please", "more", "less", "should", "would", "could", "about", "into", "from", "its",
    "needs", "need", "make", "much", "some", "just", "than", "then", "also",
}

TITLE_PROMPT = """You are a Content Strategy Expert for {site_url}.

A reviewer rejected a proposed blog topic with this feedback: "{feedback}"
Previous topic: {previous}
Target audience: {audience}

Suggest ONE new blog topic title in English that addresses the feedback.
Return only the title, nothing else."""


class StageOutcome(BaseModel):
    """Where a run stands after the orchestrator stops driving it."""

    run_id: str
    status: RunStatus
    current_stage: str
    suspended: bool = False
    message: str = ""


class HealStatus(str, Enum):
    HEALED = "healed"
    ALREADY_OK = "already_ok"
    FAILED = "failed"
    SKIPPED = "skipped"


class HealOutcome(BaseModel):
    """Result of healing one content piece."""

    content_id: str
    status: HealStatus
    defect: Optional[Defect] = None
    run_id: Optional[str] = None
    message: str = ""


def feedback_slug(feedback: str, max_length: int = 60) -> str:
    """'Too technical!' -> 'too-technical'"""
    slug = re.sub(r"[\W_]+", "-", feedback.lower()).strip("-")
    return slug[:max_length].rstrip("-")


def feedback_terms(feedback: str) -> list[str]:
    terms = []
    for word in re.findall(r"\w+", feedback.lower()):
        if len(word) > 2 and word not in STOPWORDS and word not in terms:
            terms.append(word)
    return terms


class PipelineOrchestrator:
    """
    Drives pipeline runs stage by stage.

    Usage:
        orchestrator = PipelineOrchestrator(store, ledger, pipeline_logger, context, executors, settings)

        # Start a content run (suspends at the approval gate)
        run_id = await orchestrator.run(PipelineKind.CONTENT)

        # Resume after the reviewer decided, or after a crash
        outcome = await orchestrator.advance(run_id)
    """

    def __init__(
        self,
        store: ContentStore,
        ledger: RunLedger,
        pipeline_logger: PipelineLogger,
        context: StageContext,
        executors: dict[str, StageExecutor],
        settings: PipelineSettings,
    ):
        self.store = store
        self.ledger = ledger
        self.log = pipeline_logger
        self.context = context
        self.executors = executors
        self.settings = settings

        missing = [
            stage
            for stages in topology.TOPOLOGIES.values()
            for stage in stages
            if stage not in executors
        ]
        if missing:
            raise ValueError(f"No executor registered for stages: {', '.join(missing)}")

    # -- Entry points --------------------------------------------------------

    async def run(
        self,
        kind: Union[PipelineKind, str],
        trigger_type: Union[TriggerType, str] = TriggerType.MANUAL,
        topic_id: Optional[str] = None,
    ) -> str:
        """
        Start a new run and drive it until it completes, suspends or fails.

        Returns the run id. Raises ValidationError for bad input and
        RunConflictError if the topic already has a running run.
        """
        try:
            kind = PipelineKind(kind)
            trigger_type = TriggerType(trigger_type)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        if topic_id is not None:
            if kind is not PipelineKind.CONTENT:
                raise ValidationError(f"A topic can only be given for content runs, not {kind.value}")
            topic = await self.store.get_topic(topic_id)
            if topic is None:
                raise ValidationError(f"Topic {topic_id} not found")
            if topic.status is TopicStatus.REJECTED:
                raise ValidationError(f"Topic {topic_id} was rejected")

        run = await self.ledger.open(kind, trigger_type, topic_id=topic_id)
        await self._drive(run)
        return run.id

    async def advance(self, run_id: str) -> StageOutcome:
        """
        Continue a run from its stored stage pointer.

        A running run re-executes its current stage. A failed run is left as
        is and a new run is opened from the failed stage with the completed
        prefix carried over. A completed run cannot be advanced.
        """
        run = await self.store.get_pipeline_run(run_id)
        if run is None:
            raise ValidationError(f"Pipeline run {run_id} not found")

        if run.status is RunStatus.COMPLETED:
            raise RunImmutableError(f"Pipeline run {run_id} is already completed")

        if run.status is RunStatus.FAILED:
            failed_stage = run.stages_failed[-1] if run.stages_failed else run.current_stage
            retry = await self.ledger.open(
                run.kind,
                TriggerType.MANUAL,
                topic_id=run.topic_id,
                content_id=run.content_id,
                start_stage=failed_stage,
                stages_completed=topology.prefix(run.kind, failed_stage),
                retry_of=run.id,
            )
            return await self._drive(retry)

        return await self._drive(run)

    async def heal(self, content_id: str, defect: Union[Defect, str, None] = None) -> HealOutcome:
        """
        Re-drive only the stage that produces a piece's missing artifact.

        With no *defect* given, the first detected defect is healed. A healthy
        record is reported as already_ok without touching anything.
        """
        if defect is not None:
            try:
                defect = Defect(defect)
            except ValueError as e:
                raise ValidationError(f"Unknown defect: {defect!r}") from e

        piece = await self.store.get_content_piece(content_id)
        if piece is None:
            raise ValidationError(f"Content piece {content_id} not found")

        found = detect_defects(
            piece,
            low_seo_threshold=self.settings.low_seo_threshold,
            stuck_draft_hours=self.settings.stuck_draft_hours,
        )
        if defect is None:
            defect = found[0] if found else None
        if defect is None or defect not in found:
            return HealOutcome(content_id=content_id, status=HealStatus.ALREADY_OK, defect=defect)

        kind, start_stage = self._heal_target(piece, defect)

        active = await self.store.get_active_run_for_topic(piece.topic_id)
        if active is not None:
            if defect is Defect.STUCK_DRAFT:
                await self.log.agent(
                    f"Healing {content_id} ({defect.value}) by resuming run {active.id}",
                    topic_id=piece.topic_id,
                    run_id=active.id,
                )
                outcome = await self.advance(active.id)
                return self._heal_outcome(content_id, defect, outcome)
            return HealOutcome(
                content_id=content_id,
                status=HealStatus.FAILED,
                defect=defect,
                run_id=active.id,
                message=f"Topic {piece.topic_id} has an active run {active.id}",
            )

        await self.log.agent(
            f"Healing {content_id} ({defect.value}) from {start_stage}",
            topic_id=piece.topic_id,
        )
        try:
            run = await self.ledger.open(
                kind,
                TriggerType.MANUAL,
                topic_id=piece.topic_id,
                content_id=piece.id,
                start_stage=start_stage,
                stages_completed=topology.prefix(kind, start_stage),
            )
        except RunConflictError as e:
            return HealOutcome(
                content_id=content_id,
                status=HealStatus.FAILED,
                defect=defect,
                run_id=e.run_id,
                message=str(e),
            )

        outcome = await self._drive(run)
        return self._heal_outcome(content_id, defect, outcome)

    async def propose_with_feedback(self, feedback: str, source_topic_id: Optional[str] = None) -> Topic:
        """
        Derive a new proposed topic from reviewer feedback.

        The source topic is never modified. The new topic carries a slug of the
        feedback as a keyword and is sent for topic-selection approval.
        """
        feedback = (feedback or "").strip()
        if not feedback:
            raise ValidationError("Feedback is required to propose a revised topic")

        source = None
        if source_topic_id is not None:
            source = await self.store.get_topic(source_topic_id)
            if source is None:
                raise ValidationError(f"Topic {source_topic_id} not found")

        keywords = [feedback_slug(feedback)] + feedback_terms(feedback)
        if source is not None:
            keywords += source.keywords

        title = await self._suggest_title(feedback, source)
        topic = Topic(
            title_en=title,
            keywords=keywords,
            priority=source.priority if source else Priority.MEDIUM,
            status=TopicStatus.PROPOSED,
            source_topic_id=source.id if source else None,
            feedback=feedback,
        )
        await self.store.put_topic(topic)
        await self.log.agent(f"Proposed revised topic \"{title}\" from feedback: {feedback}", topic_id=topic.id)

        summary = f"Feedback addressed: \"{feedback}\""
        if source is not None:
            summary += f"\nReplaces: {source.display_title}"
        await self.context.approvals.request(
            entity_id=topic.id,
            title=title,
            summary=summary,
            approval_type=ApprovalType.TOPIC_SELECTION,
        )
        return topic

    # -- Stage driver --------------------------------------------------------

    async def _drive(self, run: PipelineRun) -> StageOutcome:
        while True:
            stage = run.current_stage
            executor = self.executors[stage]

            try:
                result = await asyncio.wait_for(
                    executor.execute(run.model_copy(deep=True), self.context),
                    timeout=self.settings.stage_timeout_seconds,
                )
            except StoreUnavailable:
                raise
            except asyncio.TimeoutError:
                error = StageExecutionError(stage, f"timed out after {self.settings.stage_timeout_seconds:.0f}s")
                return await self._fail(run, error)
            except StageExecutionError as e:
                return await self._fail(run, e)
            except Exception as e:
                logger.error(f"Stage {stage} of run {run.id} raised {type(e).__name__}: {e}")
                return await self._fail(run, StageExecutionError(stage, str(e) or type(e).__name__))

            if result.is_suspended:
                await self.ledger.record_suspension(run, stage, result.message)
                return self._outcome(run, suspended=True, message=result.message)

            try:
                await self.ledger.bind(run, topic_id=result.topic_id, content_id=result.content_id)
            except RunConflictError as e:
                return await self._fail(run, StageExecutionError(stage, str(e)))

            await self.ledger.record_success(run, stage, result.message)
            if run.status is RunStatus.COMPLETED:
                return self._outcome(run, message=result.message)

    async def _fail(self, run: PipelineRun, error: StageExecutionError) -> StageOutcome:
        await self.ledger.record_failure(run, error.stage, error.message)
        return self._outcome(run, message=error.message)

    def _outcome(self, run: PipelineRun, suspended: bool = False, message: str = "") -> StageOutcome:
        return StageOutcome(
            run_id=run.id,
            status=run.status,
            current_stage=run.current_stage,
            suspended=suspended,
            message=message,
        )

    # -- Healing helpers -----------------------------------------------------

    def _heal_target(self, piece: ContentPiece, defect: Defect) -> tuple[PipelineKind, str]:
        if defect is Defect.MISSING_TRANSLATION:
            return PipelineKind.CONTENT, topology.ENGLISH_PUBLISH_SOCIAL
        if defect is Defect.LOW_SEO:
            return PipelineKind.SEO, topology.SEO_ENHANCE
        if not piece.body_he.strip():
            return PipelineKind.CONTENT, topology.HEBREW_GENERATION
        return PipelineKind.CONTENT, topology.WP_DRAFT_VIDEO

    def _heal_outcome(self, content_id: str, defect: Defect, outcome: StageOutcome) -> HealOutcome:
        status = HealStatus.FAILED if outcome.status is RunStatus.FAILED else HealStatus.HEALED
        return HealOutcome(
            content_id=content_id,
            status=status,
            defect=defect,
            run_id=outcome.run_id,
            message=outcome.message,
        )

    async def _suggest_title(self, feedback: str, source: Optional[Topic]) -> str:
        previous = source.display_title if source else "(none)"
        fallback = f"{source.title_en} - revised: {feedback}" if source and source.title_en else f"Revised topic: {feedback}"

        try:
            suggestion = await self.context.generate(
                self.context.text,
                JobKind.TITLE,
                TITLE_PROMPT.format(
                    site_url=self.settings.site_url,
                    feedback=feedback,
                    previous=previous,
                    audience=self.settings.audience,
                ),
                critical=False,
            )
        except ExternalUnavailable as e:
            await self.log.warn(f"Title suggestion unavailable, using fallback: {e}")
            return fallback

        title = suggestion.strip().splitlines()[0].strip().strip("\"'") if suggestion.strip() else ""
        return title or fallback
