"""
SEO stages: audit a published article and enhance it when it scores low.

Scoring mimics the Rank Math factors the site is graded on.
"""

import re

import structlog

from ..providers.base import JobKind
from ..storage.models import ContentPiece, PipelineRun, Topic
from . import topology
from .base import StageContext, StageExecutor, StageResult

logger = structlog.get_logger()

HEADING_RE = re.compile(r"<h[2-3][^>]*>.*?</h[2-3]>", re.IGNORECASE | re.DOTALL)
TAG_RE = re.compile(r"<[^>]+>")

BASE_SCORE = 40

ENHANCE_PROMPT = """You are an SEO editor for {site_url}, a Hebrew tax advisory site.

Rewrite the following Hebrew article so it scores higher in Rank Math while keeping every fact intact.

Focus keyword: {keyword}
Article title: {title}
Current SEO score: {score}/100

Requirements:
- Use the focus keyword in the first paragraph
- Keep keyword density between 1% and 3%
- Structure the article with <h2> and <h3> headings
- Expand thin sections so the article exceeds 1000 words
- Return only the article HTML, no commentary

ARTICLE:
{body}
"""


def plain_text(content: str) -> str:
    return TAG_RE.sub(" ", content)


def count_words(content: str) -> int:
    return len(plain_text(content).split())


def score_seo(content: str, title: str, focus_keyword: str) -> int:
    """Score content 0-100 against the focus keyword."""
    keyword = focus_keyword.strip().lower()
    lowered = content.lower()
    words = max(len(content.split()), 1)
    score = 0

    if keyword:
        if keyword in title.lower():
            score += 10

        intro = lowered[: int(len(content) * 0.1)]
        if keyword in intro:
            score += 10

    if words > 2000:
        score += 20
    elif words > 1000:
        score += 10

    if keyword:
        density = lowered.count(keyword) / words * 100
        if 1 <= density <= 3:
            score += 10

    if HEADING_RE.search(content):
        score += 10

    return min(score + BASE_SCORE, 100)


def _title_for(topic: Topic) -> str:
    return topic.title_he or topic.title_en


class SeoAuditStage(StageExecutor):
    """Rescore the bound piece, or pick the weakest published piece under the threshold."""

    name = topology.SEO_AUDIT

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        if run.content_id:
            piece = await self.require_content(run, ctx)
        else:
            candidates = await ctx.store.get_published_below_seo(ctx.settings.low_seo_threshold, limit=1)
            if not candidates:
                return StageResult.completed("All published content meets the SEO threshold")
            piece = candidates[0]

        topic = await ctx.store.get_topic(piece.topic_id)
        title = _title_for(topic) if topic else ""

        previous = piece.seo_score
        piece.seo_score = score_seo(piece.body_he, title, piece.focus_keyword)
        await ctx.store.put_content_piece(piece)

        return StageResult.completed(
            f"SEO score for {piece.id}: {previous} -> {piece.seo_score}",
            topic_id=piece.topic_id,
            content_id=piece.id,
        )


class SeoEnhanceStage(StageExecutor):
    """Rewrite a low-scoring article and push the update to WordPress."""

    name = topology.SEO_ENHANCE

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        if not run.content_id:
            return StageResult.completed("No content selected for enhancement")

        piece = await self.require_content(run, ctx)
        topic = await self.require_topic(run, ctx) if run.topic_id else await ctx.store.get_topic(piece.topic_id)
        title = _title_for(topic) if topic else ""
        threshold = ctx.settings.low_seo_threshold

        if piece.seo_score >= threshold:
            return StageResult.completed(f"SEO score {piece.seo_score} already meets {threshold}")
        if not piece.body_he.strip():
            raise self.fail(f"content {piece.id} has no Hebrew body to enhance")

        prompt = ENHANCE_PROMPT.format(
            site_url=ctx.settings.site_url,
            keyword=piece.focus_keyword or title,
            title=title,
            score=piece.seo_score,
            body=piece.body_he,
        )
        enhanced = await ctx.generate(ctx.text, JobKind.ENHANCEMENT, prompt)
        new_score = score_seo(enhanced, title, piece.focus_keyword)

        if new_score <= piece.seo_score:
            await ctx.log.warn(
                f"Enhanced article scored {new_score}, keeping the original ({piece.seo_score})",
                topic_id=piece.topic_id,
                run_id=run.id,
            )
            return StageResult.completed(f"No improvement over {piece.seo_score}")

        await self._apply(piece, enhanced, new_score, ctx)
        return StageResult.completed(f"SEO score improved to {new_score}")

    async def _apply(self, piece: ContentPiece, enhanced: str, score: int, ctx: StageContext) -> None:
        piece.body_he = enhanced
        piece.word_count = count_words(enhanced)
        piece.seo_score = score
        await ctx.store.put_content_piece(piece)

        if piece.wp_post_id is not None:
            await ctx.publisher.update_post(
                piece.wp_post_id,
                {"content": enhanced, "meta": {"rank_math_focus_keyword": piece.focus_keyword}},
            )
            logger.info(f"Updated WordPress post {piece.wp_post_id} with enhanced content")
