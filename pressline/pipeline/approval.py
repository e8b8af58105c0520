"""
Approval gate.

Two-phase protocol: ``request`` persists a pending Approval and notifies the
reviewer in the background; ``resolve`` records the decision exactly once and
applies its effects through the orchestrator.
"""

import asyncio
from typing import TYPE_CHECKING, Iterable, Optional, Union

import structlog

from ..errors import (
    ApprovalConflictError,
    AuthorizationError,
    RunConflictError,
    ValidationError,
)
from ..providers.base import ApprovalRequest, MessagingChannel
from ..storage.models import (
    Approval,
    ApprovalStatus,
    ApprovalType,
    PipelineKind,
    Topic,
    TopicStatus,
    TriggerType,
    utcnow,
)
from ..storage.repository import ContentStore
from .logger import PipelineLogger

if TYPE_CHECKING:
    from .orchestrator import PipelineOrchestrator

logger = structlog.get_logger()

_TOPIC_STATUS_FOR_DECISION = {
    ApprovalStatus.APPROVED: TopicStatus.APPROVED,
    ApprovalStatus.REJECTED: TopicStatus.REJECTED,
    ApprovalStatus.CHANGES_REQUESTED: TopicStatus.CHANGES_REQUESTED,
}


class ApprovalGate:
    """Requests and resolves human decisions on topics and drafts."""

    def __init__(
        self,
        store: ContentStore,
        pipeline_logger: PipelineLogger,
        messenger: MessagingChannel,
        approver_ids: Iterable[str] = (),
    ):
        self.store = store
        self.log = pipeline_logger
        self.messenger = messenger
        self.approver_ids = set(approver_ids)

        self._orchestrator: Optional["PipelineOrchestrator"] = None
        self._sends: set[asyncio.Task] = set()

    def attach(self, orchestrator: "PipelineOrchestrator") -> None:
        """Connect the orchestrator that applies decision effects."""
        self._orchestrator = orchestrator

    @property
    def orchestrator(self) -> "PipelineOrchestrator":
        if self._orchestrator is None:
            raise RuntimeError("ApprovalGate has no orchestrator attached")
        return self._orchestrator

    async def request(
        self,
        entity_id: str,
        title: str,
        summary: str = "",
        approval_type: ApprovalType = ApprovalType.CONTENT_REVIEW,
        run_id: Optional[str] = None,
    ) -> str:
        """Persist a pending approval and send it to the reviewer. Returns the approval id."""
        approval = Approval(type=approval_type, entity_id=entity_id, run_id=run_id, title=title)
        await self.store.create_approval(approval)
        await self.log.agent(
            f"Requested {approval_type.value} approval {approval.id}: {title}",
            topic_id=entity_id,
            run_id=run_id,
        )

        task = asyncio.create_task(self._send(approval, summary))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)
        return approval.id

    async def _send(self, approval: Approval, summary: str) -> None:
        request = ApprovalRequest(
            approval_id=approval.id,
            approval_type=approval.type.value,
            entity_id=approval.entity_id,
            title=approval.title,
            summary=summary,
        )
        try:
            message_id = await self.messenger.send_approval_request(request)
        except Exception as e:
            logger.warning(f"Approval request {approval.id} not delivered: {e}")
            return

        approval.external_message_id = message_id
        await self.store.update_approval(approval, expected_status=ApprovalStatus.PENDING)

    async def drain(self) -> None:
        """Wait for in-flight review requests to finish sending."""
        if self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)

    async def resolve(
        self,
        approval_id: str,
        decision: Union[ApprovalStatus, str],
        responder_id: str,
        feedback: Optional[str] = None,
    ) -> Approval:
        """
        Record a decision on a pending approval and apply its effects.

        Raises AuthorizationError for unknown responders, ValidationError for
        unknown approvals or decisions, and ApprovalConflictError when the
        approval was already resolved.
        """
        if responder_id not in self.approver_ids:
            raise AuthorizationError(f"Responder {responder_id!r} is not an approver")

        try:
            decision = ApprovalStatus(decision)
        except ValueError as e:
            raise ValidationError(f"Unknown decision: {decision!r}") from e
        if decision is ApprovalStatus.PENDING:
            raise ValidationError("A decision must be approved, rejected or changes_requested")

        approval = await self.store.get_approval(approval_id)
        if approval is None:
            raise ValidationError(f"Approval {approval_id} not found")
        if approval.status.is_terminal:
            raise ApprovalConflictError(approval_id, approval.status.value)

        approval.status = decision
        approval.responder_id = responder_id
        approval.responded_at = utcnow()
        approval.feedback = feedback.strip() if feedback and feedback.strip() else None

        if not await self.store.update_approval(approval, expected_status=ApprovalStatus.PENDING):
            current = await self.store.get_approval(approval_id)
            raise ApprovalConflictError(approval_id, current.status.value if current else "unknown")

        note = f" Feedback: {approval.feedback}" if approval.feedback else ""
        await self.log.info(
            f"Approval {approval.id} ({approval.type.value}) {decision.value} by {responder_id}.{note}",
            topic_id=approval.entity_id,
            run_id=approval.run_id,
        )

        await self._apply(approval)
        return approval

    async def _apply(self, approval: Approval) -> None:
        topic = await self.store.get_topic(approval.entity_id)
        if topic is None:
            await self.log.warn(f"Approval {approval.id} refers to unknown topic {approval.entity_id}")
            return

        topic.status = _TOPIC_STATUS_FOR_DECISION[approval.status]
        await self.store.put_topic(topic)

        if approval.type is ApprovalType.CONTENT_REVIEW:
            await self._apply_content_review(approval, topic)
        else:
            await self._apply_topic_selection(approval, topic)

    async def _apply_content_review(self, approval: Approval, topic: Topic) -> None:
        if approval.run_id:
            try:
                await self.orchestrator.advance(approval.run_id)
            except ValidationError as e:
                await self.log.warn(f"Run {approval.run_id} not resumed: {e}", topic_id=topic.id)

        if approval.status is not ApprovalStatus.APPROVED and approval.feedback:
            await self.orchestrator.propose_with_feedback(approval.feedback, source_topic_id=topic.id)

    async def _apply_topic_selection(self, approval: Approval, topic: Topic) -> None:
        if approval.status is ApprovalStatus.APPROVED:
            try:
                await self.orchestrator.run(PipelineKind.CONTENT, TriggerType.MANUAL, topic_id=topic.id)
            except RunConflictError as e:
                await self.log.warn(f"Content run not started: {e}", topic_id=topic.id)
            return

        if approval.feedback:
            await self.orchestrator.propose_with_feedback(approval.feedback, source_topic_id=topic.id)
