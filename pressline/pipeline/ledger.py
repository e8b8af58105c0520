"""
Pipeline run ledger.

Typed state transitions for PipelineRun records. Every transition is
persisted immediately, so a run interrupted mid-way can be resumed from its
stored stage pointer.
"""

from typing import Iterable, Optional

import structlog

from ..errors import RunConflictError, RunImmutableError
from ..storage.models import (
    LogLevel,
    PipelineKind,
    PipelineRun,
    RunLogEntry,
    RunStatus,
    TriggerType,
    utcnow,
)
from ..storage.repository import ContentStore
from ..stages import topology
from .logger import PipelineLogger

logger = structlog.get_logger()


class RunLedger:
    """The only writer of PipelineRun records."""

    def __init__(self, store: ContentStore, pipeline_logger: PipelineLogger):
        self.store = store
        self.log = pipeline_logger

    async def open(
        self,
        kind: PipelineKind,
        trigger_type: TriggerType = TriggerType.MANUAL,
        topic_id: Optional[str] = None,
        content_id: Optional[str] = None,
        start_stage: Optional[str] = None,
        stages_completed: Iterable[str] = (),
        retry_of: Optional[str] = None,
    ) -> PipelineRun:
        """Create a running run. Raises RunConflictError if the topic already has one."""
        stage = start_stage or topology.initial_stage(kind)
        run = PipelineRun(
            trigger_type=trigger_type,
            kind=kind,
            current_stage=stage,
            stages_completed=list(stages_completed),
            topic_id=topic_id,
            content_id=content_id,
            retry_of=retry_of,
        )
        origin = f" (retry of {retry_of})" if retry_of else ""
        run.logs.append(RunLogEntry(stage=stage, message=f"Run opened at {stage}{origin}"))

        try:
            await self.store.create_pipeline_run(run)
        except RunConflictError as e:
            active = await self.store.get_active_run_for_topic(topic_id) if topic_id else None
            raise RunConflictError(topic_id or "", active.id if active else None) from e

        await self.log.info(
            f"Started {kind.value} pipeline run {run.id} at {stage}{origin}",
            topic_id=topic_id,
            run_id=run.id,
        )
        return run

    async def bind(
        self,
        run: PipelineRun,
        topic_id: Optional[str] = None,
        content_id: Optional[str] = None,
    ) -> PipelineRun:
        """Attach topic/content bindings. Raises RunConflictError if the topic is busy."""
        self._guard(run)
        changed = False
        previous_topic = run.topic_id
        if topic_id and topic_id != run.topic_id:
            run.topic_id = topic_id
            changed = True
        if content_id and content_id != run.content_id:
            run.content_id = content_id
            changed = True
        if not changed:
            return run

        try:
            return await self.store.update_pipeline_run(run)
        except RunConflictError as e:
            run.topic_id = previous_topic
            active = await self.store.get_active_run_for_topic(topic_id)
            raise RunConflictError(topic_id, active.id if active else None) from e

    async def record_success(self, run: PipelineRun, stage: str, message: str = "") -> PipelineRun:
        """Mark *stage* completed and move the pointer, finishing the run after the terminal stage."""
        self._guard(run)
        if stage not in run.stages_completed:
            run.stages_completed.append(stage)

        following = topology.next_stage(run.kind, stage)
        if following is None:
            run.current_stage = stage
            run.status = RunStatus.COMPLETED
            run.completed_at = utcnow()
        else:
            run.current_stage = following

        text = message or f"Stage {stage} completed"
        run.logs.append(RunLogEntry(level=LogLevel.SUCCESS, stage=stage, message=text))
        await self.store.update_pipeline_run(run)
        await self.log.success(f"[{stage}] {text}", topic_id=run.topic_id, run_id=run.id)

        if run.status is RunStatus.COMPLETED:
            await self.log.success(
                f"Pipeline run {run.id} ({run.kind.value}) completed",
                topic_id=run.topic_id,
                run_id=run.id,
            )
        return run

    async def record_suspension(self, run: PipelineRun, stage: str, message: str = "") -> PipelineRun:
        """Persist that the run is waiting at *stage* for an external decision."""
        self._guard(run)
        run.current_stage = stage
        text = message or f"Suspended at {stage}"
        run.logs.append(RunLogEntry(level=LogLevel.INFO, stage=stage, message=text))
        await self.store.update_pipeline_run(run)
        await self.log.info(f"[{stage}] {text}", topic_id=run.topic_id, run_id=run.id)
        return run

    async def record_failure(self, run: PipelineRun, stage: str, message: str) -> PipelineRun:
        """Fail the run at *stage*. The run is terminal afterwards."""
        self._guard(run)
        run.current_stage = stage
        run.stages_failed.append(stage)
        run.status = RunStatus.FAILED
        run.completed_at = utcnow()
        run.logs.append(RunLogEntry(level=LogLevel.ERROR, stage=stage, message=message))
        await self.store.update_pipeline_run(run)
        await self.log.error(f"[{stage}] {message}", topic_id=run.topic_id, run_id=run.id)
        return run

    def _guard(self, run: PipelineRun) -> None:
        if run.is_terminal:
            raise RunImmutableError(f"Pipeline run {run.id} is {run.status.value} and cannot change")
