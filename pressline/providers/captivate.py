"""
Captivate.fm podcast host.

Episodes are uploaded as a multipart form: the narrated MP3 plus title and
show notes.
"""

import asyncio
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote, urlparse

import aiohttp
import structlog
from pydantic import BaseModel

from ..errors import ExternalUnavailable
from .base import PodcastEpisode, PodcastHost

logger = structlog.get_logger()


class CaptivateConfig(BaseModel):
    """Configuration for the Captivate.fm API."""

    api_key: Optional[str] = None
    show_id: Optional[str] = None
    base_url: str = "https://api.captivate.fm"
    timeout_seconds: float = 120.0


class CaptivateHost(PodcastHost):
    """Uploads narrated episodes to Captivate.fm."""

    def __init__(self, config: CaptivateConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def name(self) -> str:
        return "captivate"

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self.config.api_key:
            raise ExternalUnavailable(self.name, "CAPTIVATE_API_KEY is not configured")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _read_audio(self, session: aiohttp.ClientSession, audio_url: str) -> bytes:
        parsed = urlparse(audio_url)
        if parsed.scheme == "file":
            path = Path(unquote(parsed.path))
            try:
                return path.read_bytes()
            except OSError as e:
                raise ExternalUnavailable(self.name, f"cannot read episode audio {path}: {e}") from e

        async with session.get(audio_url) as resp:
            if resp.status >= 400:
                raise ExternalUnavailable(self.name, f"HTTP {resp.status} fetching episode audio {audio_url}")
            return await resp.read()

    async def upload_episode(self, audio_url: str, title: str, show_notes: str) -> PodcastEpisode:
        session = await self._get_session()

        try:
            audio = await self._read_audio(session, audio_url)

            form = aiohttp.FormData()
            form.add_field("file", audio, filename="episode.mp3", content_type="audio/mpeg")
            form.add_field("title", title)
            form.add_field("shownotes", show_notes)
            if self.config.show_id:
                form.add_field("shows_id", self.config.show_id)

            async with session.post(f"{self.config.base_url}/episodes", data=form) as resp:
                body = await resp.json(content_type=None)
                if resp.status >= 400:
                    raise ExternalUnavailable(self.name, f"HTTP {resp.status} uploading episode: {str(body)[:300]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExternalUnavailable(self.name, f"episode upload failed: {e}") from e

        episode = self._to_episode(body, title)
        logger.info(f"Uploaded episode {episode.id} to Captivate: {episode.url}")
        return episode

    def _to_episode(self, body: Any, title: str) -> PodcastEpisode:
        record = body.get("episode", body) if isinstance(body, dict) else None
        if not isinstance(record, dict) or not record.get("id"):
            raise ExternalUnavailable(self.name, f"unexpected response: {str(body)[:200]}")
        return PodcastEpisode(
            id=str(record["id"]),
            url=record.get("episode_url") or record.get("media_url") or record.get("url") or "",
            title=record.get("title") or title,
        )
