"""Defect predicates for content pieces left inconsistent by earlier runs."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ..storage.models import ContentPiece, ContentStatus, utcnow


class Defect(str, Enum):
    MISSING_TRANSLATION = "missing_translation"
    LOW_SEO = "low_seo"
    STUCK_DRAFT = "stuck_draft"


def detect_defects(
    piece: ContentPiece,
    low_seo_threshold: int = 80,
    stuck_draft_hours: float = 24.0,
    now: Optional[datetime] = None,
) -> list[Defect]:
    """Classify a piece against every defect predicate, in healing order."""
    now = now or utcnow()
    defects = []

    if piece.status is ContentStatus.PUBLISHED:
        if not piece.body_en.strip():
            defects.append(Defect.MISSING_TRANSLATION)
        if piece.seo_score < low_seo_threshold:
            defects.append(Defect.LOW_SEO)
    elif piece.status is ContentStatus.DRAFT:
        if piece.updated_at < now - timedelta(hours=stuck_draft_hours):
            defects.append(Defect.STUCK_DRAFT)

    return defects
