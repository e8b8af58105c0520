"""
Application wiring.

Components are constructed explicitly and connected once per process;
nothing is held in module-level singletons.
"""

from typing import Optional

import structlog
from pydantic import SecretStr

from .pipeline import (
    ApprovalGate,
    DataAutoHealer,
    PipelineLogger,
    PipelineOrchestrator,
    PipelineScheduler,
    RunLedger,
)
from .providers.base import GenerationProvider, MessagingChannel, PodcastHost, PublishingTarget
from .providers.captivate import CaptivateConfig, CaptivateHost
from .providers.elevenlabs_audio import ElevenLabsAudioConfig, ElevenLabsAudioProvider
from .providers.kie_media import KieConfig, KieMediaProvider
from .providers.openai_text import OpenAITextProvider, TextProviderConfig
from .providers.slack import SlackChannel, SlackConfig
from .providers.wordpress import WordPressConfig, WordPressTarget
from .settings import Settings, load_settings
from .stages import StageContext, StageExecutor, default_executors
from .storage import ContentStore, PipelineDatabase, init_database

logger = structlog.get_logger()


def _secret(value: Optional[SecretStr]) -> Optional[str]:
    return value.get_secret_value() if value else None


class PipelineApp:
    """Every wired component, plus shutdown."""

    def __init__(
        self,
        settings: Settings,
        db: PipelineDatabase,
        store: ContentStore,
        pipeline_logger: PipelineLogger,
        approvals: ApprovalGate,
        orchestrator: PipelineOrchestrator,
        healer: DataAutoHealer,
        collaborators: list,
    ):
        self.settings = settings
        self.db = db
        self.store = store
        self.log = pipeline_logger
        self.approvals = approvals
        self.orchestrator = orchestrator
        self.healer = healer
        self._collaborators = collaborators

    def scheduler(self) -> PipelineScheduler:
        return PipelineScheduler(self.orchestrator, self.healer)

    async def close(self) -> None:
        """Flush pending review requests, then close sessions and the database."""
        await self.approvals.drain()
        for collaborator in self._collaborators:
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()
        await self.db.close()

    async def __aenter__(self) -> "PipelineApp":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


async def build_app(
    settings: Optional[Settings] = None,
    db: Optional[PipelineDatabase] = None,
    text: Optional[GenerationProvider] = None,
    audio: Optional[GenerationProvider] = None,
    media: Optional[GenerationProvider] = None,
    publisher: Optional[PublishingTarget] = None,
    messenger: Optional[MessagingChannel] = None,
    podcast_host: Optional[PodcastHost] = None,
    executors: Optional[dict[str, StageExecutor]] = None,
) -> PipelineApp:
    """Construct and connect every component. Any collaborator may be injected."""
    settings = settings or load_settings()

    if db is None:
        db = await init_database(settings.storage.db_path)

    text = text or OpenAITextProvider(TextProviderConfig(
        provider=settings.llm.provider,
        api_key=_secret(settings.llm.api_key),
        base_url=settings.llm.base_url,
        article_model=settings.llm.article_model,
        fast_model=settings.llm.fast_model,
        temperature=settings.llm.temperature,
        max_tokens=settings.llm.max_tokens,
    ))
    audio = audio or ElevenLabsAudioProvider(ElevenLabsAudioConfig(
        api_key=_secret(settings.tts.elevenlabs_api_key),
        voice_id=settings.tts.voice_id,
        model=settings.tts.model,
        output_dir=settings.storage.output_dir / "audio",
        output_format=settings.tts.output_format,
    ))
    media = media or KieMediaProvider(KieConfig(
        api_key=_secret(settings.kie.api_key),
        base_url=settings.kie.base_url,
    ))
    publisher = publisher or WordPressTarget(WordPressConfig(
        base_url=settings.wordpress.base_url,
        username=settings.wordpress.username,
        app_password=_secret(settings.wordpress.app_password),
        timeout_seconds=settings.wordpress.timeout_seconds,
    ))
    messenger = messenger or SlackChannel(SlackConfig(
        bot_token=_secret(settings.slack.bot_token),
        channel=settings.slack.approval_channel or "#content-approvals",
    ))
    podcast_host = podcast_host or CaptivateHost(CaptivateConfig(
        api_key=_secret(settings.captivate.api_key),
        show_id=settings.captivate.show_id,
        base_url=settings.captivate.base_url,
    ))

    store = ContentStore(db)
    pipeline_logger = PipelineLogger(store)
    approvals = ApprovalGate(store, pipeline_logger, messenger, settings.slack.approver_ids)
    ledger = RunLedger(store, pipeline_logger)
    context = StageContext(
        store=store,
        pipeline_logger=pipeline_logger,
        approvals=approvals,
        settings=settings.pipeline,
        text=text,
        audio=audio,
        media=media,
        publisher=publisher,
        messenger=messenger,
        podcast_host=podcast_host,
    )
    orchestrator = PipelineOrchestrator(
        store,
        ledger,
        pipeline_logger,
        context,
        executors or default_executors(),
        settings.pipeline,
    )
    approvals.attach(orchestrator)
    healer = DataAutoHealer(store, orchestrator, pipeline_logger, settings.pipeline)

    logger.debug(f"Pipeline app wired with database {db.db_path}")
    return PipelineApp(
        settings=settings,
        db=db,
        store=store,
        pipeline_logger=pipeline_logger,
        approvals=approvals,
        orchestrator=orchestrator,
        healer=healer,
        collaborators=[text, audio, media, publisher, messenger, podcast_host],
    )
