"""
ElevenLabs audio provider for podcast narration.

Single-host narration in Hebrew or English using the multilingual model.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

import structlog
from elevenlabs import AsyncElevenLabs, VoiceSettings
from pydantic import BaseModel

from ..errors import ExternalUnavailable
from .base import GenerationProvider, JobSpec, JobState, JobStatus

logger = structlog.get_logger()


class ElevenLabsAudioConfig(BaseModel):
    """Configuration for ElevenLabs narration."""

    api_key: Optional[str] = None
    voice_id: str = "Rachel"
    model: str = "eleven_multilingual_v2"
    output_dir: Path = Path("output/audio")
    output_format: str = "mp3"

    # Voice settings
    stability: float = 0.5
    similarity_boost: float = 0.75


class ElevenLabsAudioProvider(GenerationProvider):
    """Converts a podcast script into an audio file."""

    def __init__(self, config: ElevenLabsAudioConfig):
        self.config = config
        self.client = AsyncElevenLabs(api_key=config.api_key)
        self.voice_settings = VoiceSettings(
            stability=config.stability,
            similarity_boost=config.similarity_boost,
        )
        self._results: dict[str, JobStatus] = {}

    @property
    def name(self) -> str:
        return "elevenlabs"

    async def submit(self, job: JobSpec) -> str:
        task_id = f"audio_{uuid4().hex[:12]}"
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        output_path = self.config.output_dir / f"episode_{timestamp}_{task_id}.{self.config.output_format}"

        try:
            audio_bytes = await self._generate(job.prompt, job.options.get("voice_id", self.config.voice_id))
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "wb") as f:
                f.write(audio_bytes)
            self._results[task_id] = JobStatus(
                task_id=task_id,
                state=JobState.SUCCEEDED,
                output=output_path.resolve().as_uri(),
            )
            logger.info(f"Audio saved to {output_path}")
        except Exception as e:
            logger.error(f"Audio job {task_id} failed: {e}")
            self._results[task_id] = JobStatus(task_id=task_id, state=JobState.FAILED, error=str(e))

        return task_id

    async def poll(self, task_id: str) -> JobStatus:
        # Results are terminal once stored, so each is handed out once
        status = self._results.pop(task_id, None)
        if status is None:
            return JobStatus(task_id=task_id, state=JobState.FAILED, error="unknown task id")
        return status

    async def _generate(self, text: str, voice: str) -> bytes:
        """Generate audio for the full script."""
        if not self.config.api_key:
            raise ExternalUnavailable(self.name, "TTS_ELEVENLABS_API_KEY is not configured")
        audio_generator = self.client.text_to_speech.convert(
            voice_id=voice,
            text=text,
            model_id=self.config.model,
            voice_settings=self.voice_settings,
        )

        # Collect all chunks
        audio_bytes = b""
        async for chunk in audio_generator:
            audio_bytes += chunk

        return audio_bytes
