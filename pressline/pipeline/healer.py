"""
Data auto-healer.

Scans recent content pieces for records left inconsistent by failed runs and
re-drives the missing stage through the orchestrator, one record at a time.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional, Union
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from ..errors import PipelineError, RecordBusy, StoreUnavailable, ValidationError
from ..settings import PipelineSettings
from ..storage.models import utcnow
from ..storage.repository import ContentStore
from .defects import Defect, detect_defects
from .logger import PipelineLogger
from .orchestrator import HealOutcome, HealStatus, PipelineOrchestrator

logger = structlog.get_logger()


class HealFinding(BaseModel):
    """A content piece and the defects detected on it."""

    content_id: str
    topic_id: str
    defects: list[Defect]


class HealReport(BaseModel):
    """Findings from a scan, plus per-record outcomes when healing."""

    scanned: int = 0
    findings: list[HealFinding] = Field(default_factory=list)
    outcomes: list[HealOutcome] = Field(default_factory=list)

    def count(self, status: HealStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def summary(self) -> str:
        if not self.outcomes:
            return f"Scanned {self.scanned} records, {len(self.findings)} need healing"
        counts = ", ".join(f"{self.count(status)} {status.value}" for status in HealStatus)
        return f"Scanned {self.scanned} records: {counts}"


class DataAutoHealer:
    """Finds and repairs defective content pieces."""

    def __init__(
        self,
        store: ContentStore,
        orchestrator: PipelineOrchestrator,
        pipeline_logger: PipelineLogger,
        settings: PipelineSettings,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.log = pipeline_logger
        self.settings = settings
        self.holder = f"healer_{uuid4().hex[:8]}"

    async def scan(self, limit: Optional[int] = None) -> HealReport:
        """Classify the most recent pieces against every defect. Read-only."""
        pieces = await self.store.get_recent_content_pieces(limit or self.settings.scan_limit)
        now = utcnow()

        report = HealReport(scanned=len(pieces))
        for piece in pieces:
            defects = detect_defects(
                piece,
                low_seo_threshold=self.settings.low_seo_threshold,
                stuck_draft_hours=self.settings.stuck_draft_hours,
                now=now,
            )
            if defects:
                report.findings.append(HealFinding(content_id=piece.id, topic_id=piece.topic_id, defects=defects))
        return report

    async def heal_all(self, defect: Union[Defect, str, None] = None, limit: Optional[int] = None) -> HealReport:
        """
        Heal every scanned record matching *defect* (any defect when None).

        A failure on one record is recorded and the rest are still healed.
        """
        if defect is not None:
            try:
                defect = Defect(defect)
            except ValueError as e:
                raise ValidationError(f"Unknown defect: {defect!r}") from e
        report = await self.scan(limit)

        targets = [f for f in report.findings if defect is None or defect in f.defects]
        if not targets:
            await self.log.info(f"DataAutoHeal: all {report.scanned} records healthy, no action needed")
            return report

        label = defect.value if defect else "any defect"
        await self.log.warn(f"DataAutoHeal: found {len(targets)} records with {label}, healing")

        for finding in targets:
            report.outcomes.append(await self._heal_one(finding, defect))

        await self.log.info(f"DataAutoHeal: {report.summary}")
        return report

    async def _heal_one(self, finding: HealFinding, defect: Optional[Defect]) -> HealOutcome:
        try:
            async with self.exclusive(finding.content_id):
                return await self.orchestrator.heal(finding.content_id, defect)
        except RecordBusy as e:
            await self.log.info(f"DataAutoHeal: skipped {finding.content_id}: {e}", topic_id=finding.topic_id)
            return HealOutcome(content_id=finding.content_id, status=HealStatus.SKIPPED, defect=defect, message=str(e))
        except StoreUnavailable:
            raise
        except Exception as e:
            if not isinstance(e, PipelineError):
                logger.error(f"Healing {finding.content_id} raised {type(e).__name__}: {e}")
            message = str(e) or type(e).__name__
            await self.log.error(f"DataAutoHeal: failed to heal {finding.content_id}: {message}", topic_id=finding.topic_id)
            return HealOutcome(content_id=finding.content_id, status=HealStatus.FAILED, defect=defect, message=message)

    @asynccontextmanager
    async def exclusive(self, content_id: str) -> AsyncIterator[None]:
        """Hold the record's healer marker for the duration of the block."""
        stale_before = utcnow() - timedelta(minutes=self.settings.heal_marker_ttl_minutes)
        if not await self.store.acquire_heal_marker(content_id, self.holder, stale_before):
            raise RecordBusy(f"content {content_id} is being healed by another execution")
        try:
            yield
        finally:
            await self.store.release_heal_marker(content_id, self.holder)
