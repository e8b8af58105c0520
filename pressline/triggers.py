"""
Trigger surface: authenticated entry points for manual/cron triggers and
reviewer decision callbacks. Every check runs before any core method.
"""

import hashlib
import hmac
import json
import time
from typing import Mapping, Optional, Union
from urllib.parse import parse_qs

import structlog
from pydantic import BaseModel, field_validator

from .app import PipelineApp
from .errors import AuthorizationError, ValidationError
from .pipeline import Defect, HealOutcome, HealReport
from .storage.models import Approval, ApprovalStatus, PipelineKind, TriggerType

logger = structlog.get_logger()

SLACK_SIGNATURE_VERSION = "v0"

FEEDBACK_ACTION_ID = "feedback_input"

ACTION_DECISIONS = {
    "approve": ApprovalStatus.APPROVED,
    "reject": ApprovalStatus.REJECTED,
    "changes_requested": ApprovalStatus.CHANGES_REQUESTED,
}


class DecisionCallback(BaseModel):
    """An inbound reviewer decision."""

    approval_id: str
    decision: ApprovalStatus
    responder_id: str
    feedback: Optional[str] = None

    @field_validator("decision")
    @classmethod
    def _not_pending(cls, value: ApprovalStatus) -> ApprovalStatus:
        if value is ApprovalStatus.PENDING:
            raise ValueError("decision cannot be pending")
        return value

    @classmethod
    def from_slack_payload(cls, payload: Mapping) -> "DecisionCallback":
        """Build a decision from a Slack block_actions payload."""
        actions = payload.get("actions") or []
        if not actions:
            raise ValidationError("Slack payload has no actions")
        action = actions[0]
        decision = ACTION_DECISIONS.get(action.get("action_id", ""))
        if decision is None:
            raise ValidationError(f"Unknown Slack action: {action.get('action_id')!r}")

        state_values = (payload.get("state") or {}).get("values") or {}
        feedback = None
        for block in state_values.values():
            field = block.get(FEEDBACK_ACTION_ID) or {}
            if field.get("value"):
                feedback = field["value"]
                break

        return cls(
            approval_id=action.get("value", ""),
            decision=decision,
            responder_id=(payload.get("user") or {}).get("id", ""),
            feedback=feedback,
        )


def verify_trigger_token(expected: Optional[str], provided: Optional[str]) -> None:
    """Constant-time comparison of the shared trigger token."""
    if not expected:
        raise AuthorizationError("Trigger token is not configured")
    if not provided or not hmac.compare_digest(expected.encode(), provided.encode()):
        raise AuthorizationError("Invalid trigger token")


def verify_slack_signature(
    signing_secret: Optional[str],
    timestamp: Optional[str],
    body: bytes,
    signature: Optional[str],
    max_age_seconds: int = 300,
    now: Optional[float] = None,
) -> None:
    """Verify an ``X-Slack-Signature`` header against the raw request body."""
    if not signing_secret:
        raise AuthorizationError("Slack signing secret is not configured")
    if not timestamp or not signature:
        raise AuthorizationError("Missing Slack signature headers")

    try:
        sent_at = int(timestamp)
    except ValueError as e:
        raise AuthorizationError("Malformed Slack request timestamp") from e
    if abs((now if now is not None else time.time()) - sent_at) > max_age_seconds:
        raise AuthorizationError("Slack request timestamp is too old")

    basestring = f"{SLACK_SIGNATURE_VERSION}:{timestamp}:".encode() + body
    digest = hmac.new(signing_secret.encode(), basestring, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(f"{SLACK_SIGNATURE_VERSION}={digest}", signature):
        raise AuthorizationError("Invalid Slack signature")


async def handle_decision(app: PipelineApp, callback: DecisionCallback) -> Approval:
    """Apply an already-authenticated reviewer decision."""
    logger.info(f"Decision {callback.decision.value} on {callback.approval_id} from {callback.responder_id}")
    return await app.approvals.resolve(
        callback.approval_id,
        callback.decision,
        callback.responder_id,
        feedback=callback.feedback,
    )


async def handle_slack_interaction(app: PipelineApp, headers: Mapping[str, str], body: bytes) -> Approval:
    """Verify and apply a Slack interactive-message callback."""
    lowered = {key.lower(): value for key, value in headers.items()}
    verify_slack_signature(
        app.settings.slack.signing_secret.get_secret_value() if app.settings.slack.signing_secret else None,
        lowered.get("x-slack-request-timestamp"),
        body,
        lowered.get("x-slack-signature"),
        max_age_seconds=app.settings.security.max_callback_age_seconds,
    )

    form = parse_qs(body.decode("utf-8"))
    try:
        payload = json.loads(form["payload"][0])
    except (KeyError, IndexError, json.JSONDecodeError) as e:
        raise ValidationError("Slack callback has no JSON payload") from e

    return await handle_decision(app, DecisionCallback.from_slack_payload(payload))


def _trigger_token(app: PipelineApp) -> Optional[str]:
    token = app.settings.security.token
    return token.get_secret_value() if token else None


async def handle_run_trigger(
    app: PipelineApp,
    token: Optional[str],
    kind: Union[PipelineKind, str],
    trigger_type: Union[TriggerType, str] = TriggerType.MANUAL,
    topic_id: Optional[str] = None,
) -> str:
    """Authenticated pipeline start. Returns the run id."""
    verify_trigger_token(_trigger_token(app), token)
    return await app.orchestrator.run(kind, trigger_type, topic_id=topic_id)


async def handle_heal_trigger(
    app: PipelineApp,
    token: Optional[str],
    content_id: Optional[str] = None,
    defect: Union[Defect, str, None] = None,
) -> Union[HealOutcome, HealReport]:
    """Authenticated heal of one record, or of every record when no id is given."""
    verify_trigger_token(_trigger_token(app), token)
    if content_id:
        return await app.orchestrator.heal(content_id, defect)
    return await app.healer.heal_all(defect)
