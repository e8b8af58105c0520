"""
Configuration settings for Pressline - bilingual content pipeline.
Uses pydantic-settings for environment variable management.
"""
import logging
from pathlib import Path
from typing import Literal

import structlog
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineSettings(BaseSettings):
    """Orchestrator, healer and stage executor tuning."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    # Stage execution
    stage_timeout_seconds: float = Field(default=600.0, gt=0, description="Per-stage budget")
    job_poll_interval_seconds: float = Field(default=15.0, gt=0)
    job_timeout_seconds: float = Field(default=300.0, gt=0)

    # Topic selection
    topic_cooldown_days: int = Field(default=30, ge=0, description="Days before a topic is reused")

    # Healing
    low_seo_threshold: int = Field(default=80, ge=0, le=100)
    stuck_draft_hours: float = Field(default=24.0, gt=0)
    heal_marker_ttl_minutes: float = Field(default=30.0, gt=0)
    scan_limit: int = Field(default=50, ge=1, le=1000)

    # Content
    min_hebrew_words: int = Field(default=300, ge=0)
    site_url: str = Field(default="https://tax4us.co.il")
    audience: str = Field(default="Israeli business owners and expats dealing with US taxes")


class StorageSettings(BaseSettings):
    """Database and file storage configuration."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: Path = Field(default=Path("data/pressline.db"))
    output_dir: Path = Field(default=Path("output"))


class WordPressSettings(BaseSettings):
    """WordPress REST API publishing target."""

    model_config = SettingsConfigDict(env_prefix="WP_")

    base_url: str = Field(default="https://tax4us.co.il/wp-json/wp/v2")
    username: str | None = Field(default=None)
    app_password: SecretStr | None = Field(default=None)
    timeout_seconds: float = Field(default=30.0, gt=0)


class SlackSettings(BaseSettings):
    """Slack messaging channel for approvals and notifications."""

    model_config = SettingsConfigDict(env_prefix="SLACK_")

    bot_token: SecretStr | None = Field(default=None)
    signing_secret: SecretStr | None = Field(default=None)
    approval_channel: str = Field(default="", description="Channel or user id for review requests")
    approver_ids: list[str] = Field(default_factory=list, description="Responder identities allowed to decide")


class LLMSettings(BaseSettings):
    """LLM API configuration for article, translation and script generation."""

    model_config = SettingsConfigDict(env_prefix="LLM_")

    provider: Literal["openrouter", "openai"] = Field(default="openrouter")
    api_key: SecretStr | None = Field(default=None)
    base_url: str | None = Field(default=None)

    article_model: str = Field(default="anthropic/claude-3.5-sonnet")
    fast_model: str = Field(
        default="google/gemini-2.5-flash-preview-05-20",
        description="Model for topic titles and social posts (use cheaper models)",
    )
    max_tokens: int = Field(default=8192)
    temperature: float = Field(default=0.7)


class TTSSettings(BaseSettings):
    """ElevenLabs text-to-speech configuration."""

    model_config = SettingsConfigDict(env_prefix="TTS_")

    elevenlabs_api_key: SecretStr | None = Field(default=None)
    voice_id: str = Field(default="Rachel")
    model: str = Field(default="eleven_multilingual_v2")
    output_format: Literal["mp3", "wav"] = Field(default="mp3")


class KieSettings(BaseSettings):
    """Kie.ai image and video generation."""

    model_config = SettingsConfigDict(env_prefix="KIE_")

    api_key: SecretStr | None = Field(default=None)
    base_url: str = Field(default="https://api.kie.ai/api/v1")


class CaptivateSettings(BaseSettings):
    """Captivate.fm podcast hosting."""

    model_config = SettingsConfigDict(env_prefix="CAPTIVATE_")

    api_key: SecretStr | None = Field(default=None)
    show_id: str | None = Field(default=None, description="Show the episodes are published to")
    base_url: str = Field(default="https://api.captivate.fm")


class SecuritySettings(BaseSettings):
    """Trigger authentication."""

    model_config = SettingsConfigDict(env_prefix="TRIGGER_")

    token: SecretStr | None = Field(default=None, description="Shared secret for manual and cron triggers")
    max_callback_age_seconds: int = Field(default=300, ge=1)


class Settings(BaseSettings):
    """Main configuration aggregating all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-configurations
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    wordpress: WordPressSettings = Field(default_factory=WordPressSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    tts: TTSSettings = Field(default_factory=TTSSettings)
    kie: KieSettings = Field(default_factory=KieSettings)
    captivate: CaptivateSettings = Field(default_factory=CaptivateSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)

    # Application settings
    debug: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


def load_settings() -> Settings:
    """Load configuration from environment and .env file."""
    from dotenv import load_dotenv

    load_dotenv()
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through a level-filtering bound logger."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        cache_logger_on_first_use=True,
    )
