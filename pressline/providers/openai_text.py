"""
LLM text generation provider.

Uses OpenRouter for access to multiple models (Claude, Gemini, GPT, etc.)
through the OpenAI-compatible API. Completions run inside ``submit`` and the
result is held until polled, so callers see the same submit/poll contract as
the slower media providers.
"""

from typing import Optional
from uuid import uuid4

import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel

from ..errors import ExternalUnavailable
from .base import GenerationProvider, JobKind, JobSpec, JobState, JobStatus

logger = structlog.get_logger()

# OpenRouter base URL
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# Cheap model for short outputs, strong model for long-form content
FAST_JOB_KINDS = {JobKind.TITLE, JobKind.SOCIAL, JobKind.SHOW_NOTES}


class TextProviderConfig(BaseModel):
    """Configuration for the text provider."""

    provider: str = "openrouter"  # openrouter (recommended), openai
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    article_model: str = "anthropic/claude-3.5-sonnet"
    fast_model: str = "google/gemini-2.5-flash-preview-05-20"
    temperature: float = 0.7
    max_tokens: int = 8192


class OpenAITextProvider(GenerationProvider):
    """Generates articles, translations, scripts and short copy with an LLM."""

    def __init__(self, config: TextProviderConfig):
        self.config = config
        self._client: Optional[AsyncOpenAI] = None
        self._results: dict[str, JobStatus] = {}

    @property
    def name(self) -> str:
        return "llm"

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.config.api_key:
                raise ExternalUnavailable(self.name, "LLM_API_KEY is not configured")
            if self.config.provider == "openai":
                self._client = AsyncOpenAI(api_key=self.config.api_key)
            else:
                # Default to OpenRouter for any other provider
                self._client = AsyncOpenAI(
                    api_key=self.config.api_key,
                    base_url=self.config.base_url or OPENROUTER_BASE_URL,
                )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def submit(self, job: JobSpec) -> str:
        task_id = f"text_{uuid4().hex[:12]}"
        model = self.config.fast_model if job.kind in FAST_JOB_KINDS else self.config.article_model

        messages = []
        if job.system:
            messages.append({"role": "system", "content": job.system})
        messages.append({"role": "user", "content": job.prompt})

        try:
            response = await self.client.chat.completions.create(
                model=job.options.get("model", model),
                messages=messages,
                temperature=job.options.get("temperature", self.config.temperature),
                max_tokens=job.options.get("max_tokens", self.config.max_tokens),
            )
            content = response.choices[0].message.content or ""
            self._results[task_id] = JobStatus(task_id=task_id, state=JobState.SUCCEEDED, output=content.strip())
            logger.info(f"Text job {task_id} ({job.kind.value}) completed with {model}")
        except Exception as e:
            logger.error(f"Text job {task_id} ({job.kind.value}) failed: {e}")
            self._results[task_id] = JobStatus(task_id=task_id, state=JobState.FAILED, error=str(e))

        return task_id

    async def poll(self, task_id: str) -> JobStatus:
        # Results are terminal once stored, so each is handed out once
        status = self._results.pop(task_id, None)
        if status is None:
            return JobStatus(task_id=task_id, state=JobState.FAILED, error="unknown task id")
        return status
