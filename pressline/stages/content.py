"""
Content pipeline stages.

topic-selection -> hebrew-generation -> wp-draft-video -> approval-gate ->
hebrew-publish -> english-publish-social

Every stage checks what is already stored before calling a collaborator, so
re-entering a stage never creates a second draft, post or approval.
"""

import structlog

from ..errors import ExternalUnavailable
from ..providers.base import JobKind, PostDraft
from ..storage.models import (
    ApprovalStatus,
    ApprovalType,
    ContentPiece,
    ContentStatus,
    PipelineRun,
    Topic,
    TopicStatus,
    utcnow,
)
from . import topology
from .base import StageContext, StageExecutor, StageResult
from .seo import count_words, plain_text, score_seo

logger = structlog.get_logger()

SOCIAL_PLATFORMS = ("linkedin", "facebook")

ARTICLE_SYSTEM = "You are a senior US-Israel tax writer for {site_url}. You write in fluent, professional Hebrew."

ARTICLE_PROMPT = """Write a comprehensive Hebrew blog article.

TOPIC: {title}
ENGLISH TITLE: {title_en}
FOCUS KEYWORD: {keyword}
RELATED KEYWORDS: {keywords}
TARGET AUDIENCE: {audience}

Requirements:
- At least {min_words} words
- Use the focus keyword in the first paragraph and in at least one heading
- Structure with <h2> and <h3> headings, short paragraphs and practical examples
- End with a short call to action to contact the Tax4Us team
- Return only the article HTML, no commentary
"""

TRANSLATION_PROMPT = """Translate the following Hebrew article into natural, professional English for {audience}.

Keep the HTML structure and headings intact. Do not add commentary.

TITLE: {title}

ARTICLE:
{body}
"""

SOCIAL_PROMPTS = {
    "linkedin": """You are a professional social media manager for "Tax4Us".
Create a LinkedIn post based on the following article.

Requirements:
- Tone: Professional, insightful, authoritative yet accessible.
- Structure: Hook -> Key takeaways (bullet points) -> Call to action.
- Length: 150-250 words.
- Hashtags: 3-5 relevant hashtags.

TITLE: {title}
LINK: {link}

ARTICLE:
{body}
""",
    "facebook": """You are a social media manager for "Tax4Us".
Create a Facebook post based on the following article.

Requirements:
- Tone: Engaging, friendly, helpful, slightly more casual than LinkedIn.
- Structure: Question/Hook -> Brief explanation -> Benefit of reading more.
- Length: 100-150 words.
- Hashtags: 2-3 broad tags.

TITLE: {title}
LINK: {link}

ARTICLE:
{body}
""",
}

IMAGE_PROMPT = "Clean editorial illustration for a tax advisory article titled \"{title}\". No text, modern flat style, blue and white palette."

VIDEO_PROMPT = "Short explainer video for an article about {title}: professional presenter tone, simple animated charts, 30 seconds."


def _summary(body: str, limit: int = 280) -> str:
    text = " ".join(plain_text(body).split())
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


class TopicSelectionStage(StageExecutor):
    """Use the run's topic, or the highest-priority eligible one."""

    name = topology.TOPIC_SELECTION

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        if run.topic_id:
            topic = await self.require_topic(run, ctx)
            if topic.status is TopicStatus.REJECTED:
                raise self.fail(f"topic {topic.id} was rejected")
        else:
            candidates = await ctx.store.get_available_topics(
                limit=1,
                cooldown_days=ctx.settings.topic_cooldown_days,
            )
            if not candidates:
                raise self.fail("no eligible topics available")
            topic = candidates[0]

        topic.last_used = utcnow()
        await ctx.store.put_topic(topic)

        return StageResult.completed(f"Selected topic: {topic.display_title}", topic_id=topic.id)


class HebrewGenerationStage(StageExecutor):
    """Generate the long-form Hebrew article into a draft ContentPiece."""

    name = topology.HEBREW_GENERATION

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        topic = await self.require_topic(run, ctx)
        piece = await self._working_piece(run, topic, ctx)

        if piece.body_he.strip():
            return StageResult.completed(
                f"Hebrew article already generated ({piece.word_count} words)",
                content_id=piece.id,
            )

        keyword = piece.focus_keyword or (topic.keywords[0] if topic.keywords else topic.title_en)
        prompt = ARTICLE_PROMPT.format(
            title=topic.title_he or topic.title_en,
            title_en=topic.title_en,
            keyword=keyword,
            keywords=", ".join(topic.keywords),
            audience=ctx.settings.audience,
            min_words=ctx.settings.min_hebrew_words,
        )
        system = ARTICLE_SYSTEM.format(site_url=ctx.settings.site_url)
        body = await ctx.generate(ctx.text, JobKind.ARTICLE, prompt, system=system)

        word_count = count_words(body)
        if word_count < ctx.settings.min_hebrew_words:
            raise self.fail(f"generated article is too short ({word_count} words)")

        piece.body_he = body
        piece.word_count = word_count
        piece.focus_keyword = keyword
        piece.seo_score = score_seo(body, topic.title_he or topic.title_en, keyword)
        piece.status = ContentStatus.DRAFT
        await ctx.store.put_content_piece(piece)

        logger.info(f"Generated Hebrew article for {topic.id}: {word_count} words, SEO {piece.seo_score}")
        return StageResult.completed(
            f"Generated Hebrew article ({word_count} words, SEO {piece.seo_score})",
            content_id=piece.id,
        )

    async def _working_piece(self, run: PipelineRun, topic: Topic, ctx: StageContext) -> ContentPiece:
        if run.content_id:
            return await self.require_content(run, ctx)

        existing = await ctx.store.get_content_for_topic(topic.id)
        if existing and existing.status in (ContentStatus.DRAFT, ContentStatus.ERROR):
            return existing

        piece = ContentPiece(topic_id=topic.id)
        return await ctx.store.put_content_piece(piece)


class WpDraftVideoStage(StageExecutor):
    """Create the WordPress draft once and attach media where available."""

    name = topology.WP_DRAFT_VIDEO

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        topic = await self.require_topic(run, ctx)
        piece = await self.require_content(run, ctx)
        if not piece.body_he.strip():
            raise self.fail(f"content {piece.id} has no Hebrew body")

        title = topic.title_he or topic.title_en

        if not piece.media.featured_image:
            piece.media.featured_image = await ctx.try_generate(
                run, ctx.media, JobKind.IMAGE, IMAGE_PROMPT.format(title=topic.title_en or title)
            )

        if piece.wp_post_id is None:
            post = await ctx.publisher.create_draft_post(PostDraft(
                title=title,
                content=piece.body_he,
                excerpt=_summary(piece.body_he, 160),
                lang="he",
                featured_image_url=piece.media.featured_image,
                meta={"rank_math_focus_keyword": piece.focus_keyword},
            ))
            piece.wp_post_id = post.id
            await ctx.store.put_content_piece(piece)
            await ctx.log.info(f"WordPress draft {post.id} created", topic_id=topic.id, run_id=run.id)

        if not piece.media.video:
            piece.media.video = await ctx.try_generate(
                run, ctx.media, JobKind.VIDEO, VIDEO_PROMPT.format(title=topic.title_en or title)
            )

        if piece.status in (ContentStatus.DRAFT, ContentStatus.ERROR):
            piece.status = ContentStatus.READY
        await ctx.store.put_content_piece(piece)

        attached = [name for name in ("featured_image", "video") if getattr(piece.media, name)]
        media_note = ", ".join(attached) if attached else "no media"
        return StageResult.completed(f"Draft {piece.wp_post_id} ready with {media_note}")


class ApprovalGateStage(StageExecutor):
    """Suspend until a reviewer decides on the draft."""

    name = topology.APPROVAL_GATE

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        approval = await ctx.store.get_latest_approval_for_run(run.id)

        if approval is None or approval.type is not ApprovalType.CONTENT_REVIEW:
            topic = await self.require_topic(run, ctx)
            piece = await self.require_content(run, ctx)
            approval_id = await ctx.approvals.request(
                entity_id=topic.id,
                title=topic.title_he or topic.title_en,
                summary=self._review_summary(piece, ctx),
                approval_type=ApprovalType.CONTENT_REVIEW,
                run_id=run.id,
            )
            return StageResult.suspended(f"Awaiting content review ({approval_id})")

        if approval.status is ApprovalStatus.PENDING:
            return StageResult.suspended(f"Still awaiting content review ({approval.id})")

        if approval.status is ApprovalStatus.APPROVED:
            return StageResult.completed(f"Content approved by {approval.responder_id}")

        reason = f": {approval.feedback}" if approval.feedback else ""
        raise self.fail(f"content {approval.status.value} by {approval.responder_id}{reason}")

    def _review_summary(self, piece: ContentPiece, ctx: StageContext) -> str:
        lines = [
            f"{piece.word_count} words, SEO score {piece.seo_score}/100",
            f"Focus keyword: {piece.focus_keyword}",
        ]
        if piece.wp_post_id is not None:
            admin_url = f"{ctx.settings.site_url}/wp-admin/post.php?post={piece.wp_post_id}&action=edit"
            lines.append(f"Draft: <{admin_url}|Review in WordPress>")
        lines.append(_summary(piece.body_he))
        return "\n".join(lines)


class HebrewPublishStage(StageExecutor):
    """Publish the approved Hebrew draft."""

    name = topology.HEBREW_PUBLISH

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        piece = await self.require_content(run, ctx)
        if not piece.is_publishable:
            raise self.fail(f"content {piece.id} needs a Hebrew body and a WordPress draft before publishing")

        if piece.status is ContentStatus.PUBLISHED:
            return StageResult.completed(f"Post {piece.wp_post_id} already published")

        post = await ctx.publisher.publish_post(piece.wp_post_id)
        piece.status = ContentStatus.PUBLISHED
        await ctx.store.put_content_piece(piece)

        return StageResult.completed(f"Published Hebrew post {post.id} {post.link}".rstrip())


class EnglishPublishSocialStage(StageExecutor):
    """Translate, publish the linked English post and prepare social posts."""

    name = topology.ENGLISH_PUBLISH_SOCIAL

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        topic = await self.require_topic(run, ctx)
        piece = await self.require_content(run, ctx)
        if piece.status is not ContentStatus.PUBLISHED:
            raise self.fail(f"content {piece.id} is {piece.status.value}, not published")

        if not piece.body_en.strip():
            piece.body_en = await ctx.generate(
                ctx.text,
                JobKind.TRANSLATION,
                TRANSLATION_PROMPT.format(
                    audience=ctx.settings.audience,
                    title=topic.title_he or topic.title_en,
                    body=piece.body_he,
                ),
            )
            await ctx.store.put_content_piece(piece)

        if piece.wp_post_id_en is None:
            draft = await ctx.publisher.create_draft_post(PostDraft(
                title=topic.title_en,
                content=piece.body_en,
                excerpt=_summary(piece.body_en, 160),
                lang="en",
                featured_image_url=piece.media.featured_image,
                translation_of=piece.wp_post_id,
            ))
            piece.wp_post_id_en = draft.id
            await ctx.store.put_content_piece(piece)

        post = await ctx.publisher.publish_post(piece.wp_post_id_en)

        for platform in SOCIAL_PLATFORMS:
            if platform in piece.social_posts:
                continue
            text = await ctx.try_generate(
                run,
                ctx.text,
                JobKind.SOCIAL,
                SOCIAL_PROMPTS[platform].format(title=topic.title_en, link=post.link, body=piece.body_en),
            )
            if text:
                piece.social_posts[platform] = text

        if not piece.media.social_image and piece.media.featured_image:
            piece.media.social_image = piece.media.featured_image
        await ctx.store.put_content_piece(piece)

        await self._announce(run, topic, post.link, ctx)
        platforms = ", ".join(sorted(piece.social_posts)) or "none"
        return StageResult.completed(f"English post {post.id} published; social posts: {platforms}")

    async def _announce(self, run: PipelineRun, topic: Topic, link: str, ctx: StageContext) -> None:
        try:
            await ctx.messenger.send_message(f"Published: {topic.title_en} {link}".rstrip())
        except ExternalUnavailable as e:
            await ctx.log.warn(f"Publish announcement not sent: {e}", topic_id=topic.id, run_id=run.id)
