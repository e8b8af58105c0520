"""Exception taxonomy shared by the pipeline components."""

from typing import Optional


class PipelineError(Exception):
    """Base class for all Pressline errors."""


class ValidationError(PipelineError):
    """Bad input to a core method. Raised before any state is mutated."""


class RunConflictError(ValidationError):
    """A topic already has a running pipeline run."""

    def __init__(self, topic_id: str, run_id: Optional[str] = None):
        self.topic_id = topic_id
        self.run_id = run_id
        detail = f" ({run_id})" if run_id else ""
        super().__init__(f"Topic {topic_id} already has a running pipeline run{detail}")


class RunImmutableError(ValidationError):
    """A terminal pipeline run cannot be mutated."""


class StageExecutionError(PipelineError):
    """A stage executor failed or timed out."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"{stage}: {message}")


class ApprovalConflictError(PipelineError):
    """Resolving an approval that is already terminal."""

    def __init__(self, approval_id: str, status: str):
        self.approval_id = approval_id
        self.status = status
        super().__init__(f"Approval {approval_id} already resolved as {status}")


class ExternalUnavailable(PipelineError):
    """A collaborator call failed."""

    def __init__(self, service: str, message: str, critical: bool = True):
        self.service = service
        self.critical = critical
        super().__init__(f"{service} unavailable: {message}")


class AuthorizationError(PipelineError):
    """A trigger, callback or responder failed authentication."""


class RecordBusy(PipelineError):
    """The healer marker for a record is held by another execution."""


class StoreUnavailable(PipelineError):
    """The content store cannot be reached."""
