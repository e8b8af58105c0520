"""Pipeline orchestration, approvals and healing."""

from .approval import ApprovalGate
from .defects import Defect, detect_defects
from .healer import DataAutoHealer, HealFinding, HealReport
from .ledger import RunLedger
from .logger import PipelineLogger
from .orchestrator import (
    HealOutcome,
    HealStatus,
    PipelineOrchestrator,
    StageOutcome,
    feedback_slug,
    feedback_terms,
)
from .scheduler import PipelineScheduler

__all__ = [
    "ApprovalGate",
    "DataAutoHealer",
    "Defect",
    "HealFinding",
    "HealOutcome",
    "HealReport",
    "HealStatus",
    "PipelineLogger",
    "PipelineOrchestrator",
    "PipelineScheduler",
    "RunLedger",
    "StageOutcome",
    "detect_defects",
    "feedback_slug",
    "feedback_terms",
]
