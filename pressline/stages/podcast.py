"""
Podcast pipeline stages.

podcast-selection -> podcast-production: turn a published article into a
narrated episode hosted on the podcast host.
"""

import structlog

from ..errors import ExternalUnavailable
from ..providers.base import JobKind
from ..storage.models import PipelineRun
from . import topology
from .base import StageContext, StageExecutor, StageResult
from .seo import plain_text

logger = structlog.get_logger()

# Average speaking rate in words per minute
WORDS_PER_MINUTE = 150

SCRIPT_PROMPT = """You are producing a short single-host podcast episode for Tax4Us.

Turn the following article into a spoken script for {audience}.

Requirements:
- Natural conversational style with short, TTS-friendly sentences
- Open with a one-line hook and close with a call to visit {site_url}
- About {target_words} words total
- Plain text only, no stage directions or markup

TITLE: {title}

ARTICLE:
{body}
"""

SHOW_NOTES_PROMPT = """Write short, catchy podcast show notes for the Tax4Us episode "{title}".

Two or three sentences summarizing the episode, then a closing line inviting
listeners to read the full article at {site_url}. Plain text only.

EPISODE:
{source}
"""


def estimate_duration(script: str) -> float:
    """Estimate episode duration in minutes based on word count."""
    return len(script.split()) / WORDS_PER_MINUTE


def fallback_show_notes(title: str, text: str, site_url: str, words: int = 40) -> str:
    lead = " ".join(text.split()[:words])
    return f"{title}. {lead}... Read the full article at {site_url}"


class PodcastSelectionStage(StageExecutor):
    """Bound piece, or the most recent published piece without a hosted episode."""

    name = topology.PODCAST_SELECTION

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        if run.content_id:
            piece = await self.require_content(run, ctx)
        else:
            candidates = await ctx.store.get_published_without_podcast(limit=1)
            if not candidates:
                return StageResult.completed("No published content is waiting for an episode")
            piece = candidates[0]

        return StageResult.completed(
            f"Selected {piece.id} for podcast production",
            topic_id=piece.topic_id,
            content_id=piece.id,
        )


class PodcastProductionStage(StageExecutor):
    """Script and narrate the selected article, then upload it to the podcast host."""

    name = topology.PODCAST_PRODUCTION

    def __init__(self, target_minutes: int = 8):
        self.target_minutes = target_minutes

    async def execute(self, run: PipelineRun, ctx: StageContext) -> StageResult:
        if not run.content_id:
            return StageResult.completed("No content selected for production")

        piece = await self.require_content(run, ctx)
        if piece.media.podcast_episode:
            return StageResult.completed(f"Episode already published: {piece.media.podcast_episode}")

        topic = await ctx.store.get_topic(piece.topic_id)
        title = topic.title_en if topic else piece.focus_keyword
        body = piece.body_en or piece.body_he
        if not body.strip():
            raise self.fail(f"content {piece.id} has no article body")

        # Narration survives a failed upload, so a retry only redoes the upload
        script = None
        if not piece.media.podcast_audio:
            script = await ctx.generate(
                ctx.text,
                JobKind.PODCAST_SCRIPT,
                SCRIPT_PROMPT.format(
                    audience=ctx.settings.audience,
                    site_url=ctx.settings.site_url,
                    target_words=self.target_minutes * WORDS_PER_MINUTE,
                    title=title,
                    body=plain_text(body),
                ),
            )
            piece.media.podcast_audio = await ctx.generate(ctx.audio, JobKind.SPEECH, script)
            piece = await ctx.store.put_content_piece(piece)
            logger.info(f"Podcast episode for {piece.id}: ~{estimate_duration(script):.1f} minutes")

        source = script or plain_text(body)
        show_notes = await ctx.try_generate(
            run,
            ctx.text,
            JobKind.SHOW_NOTES,
            SHOW_NOTES_PROMPT.format(title=title, site_url=ctx.settings.site_url, source=source),
        )
        if not show_notes or not show_notes.strip():
            show_notes = fallback_show_notes(title, source, ctx.settings.site_url)

        episode = await ctx.podcast_host.upload_episode(piece.media.podcast_audio, title, show_notes.strip())
        piece.media.podcast_episode = episode.url or episode.id
        await ctx.store.put_content_piece(piece)

        try:
            await ctx.messenger.send_message(f"New podcast episode: {title} {piece.media.podcast_episode}")
        except ExternalUnavailable as e:
            await ctx.log.warn(f"Episode notification not sent: {e}", topic_id=piece.topic_id, run_id=run.id)

        if script is None:
            return StageResult.completed(f"Episode {episode.id} uploaded from existing narration")
        return StageResult.completed(f"Episode {episode.id} published (~{estimate_duration(script):.1f} min)")
