"""Stage executors for the content, SEO and podcast pipelines."""

from .base import StageContext, StageExecutor, StageResult, StageStatus
from .content import (
    ApprovalGateStage,
    EnglishPublishSocialStage,
    HebrewGenerationStage,
    HebrewPublishStage,
    TopicSelectionStage,
    WpDraftVideoStage,
)
from .podcast import PodcastProductionStage, PodcastSelectionStage
from .seo import SeoAuditStage, SeoEnhanceStage, score_seo


def default_executors() -> dict[str, StageExecutor]:
    """One executor per stage name across every topology."""
    executors = [
        TopicSelectionStage(),
        HebrewGenerationStage(),
        WpDraftVideoStage(),
        ApprovalGateStage(),
        HebrewPublishStage(),
        EnglishPublishSocialStage(),
        SeoAuditStage(),
        SeoEnhanceStage(),
        PodcastSelectionStage(),
        PodcastProductionStage(),
    ]
    return {executor.name: executor for executor in executors}


__all__ = [
    "ApprovalGateStage",
    "EnglishPublishSocialStage",
    "HebrewGenerationStage",
    "HebrewPublishStage",
    "PodcastProductionStage",
    "PodcastSelectionStage",
    "SeoAuditStage",
    "SeoEnhanceStage",
    "StageContext",
    "StageExecutor",
    "StageResult",
    "StageStatus",
    "TopicSelectionStage",
    "WpDraftVideoStage",
    "default_executors",
    "score_seo",
]
