"""Fixed stage topologies for each pipeline kind."""

from typing import Optional

from ..storage.models import PipelineKind

TOPIC_SELECTION = "topic-selection"
HEBREW_GENERATION = "hebrew-generation"
WP_DRAFT_VIDEO = "wp-draft-video"
APPROVAL_GATE = "approval-gate"
HEBREW_PUBLISH = "hebrew-publish"
ENGLISH_PUBLISH_SOCIAL = "english-publish-social"
SEO_AUDIT = "seo-audit"
SEO_ENHANCE = "seo-enhance"
PODCAST_SELECTION = "podcast-selection"
PODCAST_PRODUCTION = "podcast-production"

TOPOLOGIES: dict[PipelineKind, tuple[str, ...]] = {
    PipelineKind.CONTENT: (
        TOPIC_SELECTION,
        HEBREW_GENERATION,
        WP_DRAFT_VIDEO,
        APPROVAL_GATE,
        HEBREW_PUBLISH,
        ENGLISH_PUBLISH_SOCIAL,
    ),
    PipelineKind.SEO: (SEO_AUDIT, SEO_ENHANCE),
    PipelineKind.PODCAST: (PODCAST_SELECTION, PODCAST_PRODUCTION),
}


def stages_for(kind: PipelineKind) -> tuple[str, ...]:
    return TOPOLOGIES[kind]


def initial_stage(kind: PipelineKind) -> str:
    return TOPOLOGIES[kind][0]


def next_stage(kind: PipelineKind, stage: str) -> Optional[str]:
    """The stage after *stage*, or None when *stage* is terminal."""
    stages = TOPOLOGIES[kind]
    index = stages.index(stage)
    if index + 1 < len(stages):
        return stages[index + 1]
    return None


def prefix(kind: PipelineKind, stage: str) -> list[str]:
    """Stages that precede *stage* in the topology, in order."""
    stages = TOPOLOGIES[kind]
    if stage not in stages:
        raise ValueError(f"Stage {stage!r} is not part of the {kind.value} pipeline")
    return list(stages[: stages.index(stage)])
