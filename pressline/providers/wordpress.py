"""
WordPress REST API publishing target.

Hebrew posts are created as drafts and published after approval; English
posts are linked to their Hebrew original through Polylang's translation
parameters.
"""

import asyncio
from typing import Any, Optional

import aiohttp
import structlog
from pydantic import BaseModel

from ..errors import ExternalUnavailable
from .base import PostDraft, PublishingTarget, RemotePost

logger = structlog.get_logger()

MAX_RETRIES = 2
RETRY_BASE_DELAY = 1.0


class WordPressConfig(BaseModel):
    """Configuration for the WordPress REST API."""

    base_url: str = "https://tax4us.co.il/wp-json/wp/v2"
    username: Optional[str] = None
    app_password: Optional[str] = None
    timeout_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.username and self.app_password)


class WordPressTarget(PublishingTarget):
    """Publishes posts through the WordPress REST API."""

    def __init__(self, config: WordPressConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self.config.is_configured:
            raise ExternalUnavailable("wordpress", "WP_USERNAME / WP_APP_PASSWORD are not configured")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                auth=aiohttp.BasicAuth(self.config.username, self.config.app_password),
                headers={"Accept": "application/json", "User-Agent": "Pressline/0.1"},
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> tuple[int, Any]:
        """Make an HTTP request, retrying transient network errors with backoff."""
        session = await self._get_session()
        url = f"{self.config.base_url}/{endpoint}"

        for attempt in range(MAX_RETRIES + 1):
            try:
                async with session.request(method, url, json=json_data, params=params) as resp:
                    body = await resp.json(content_type=None)
                    if resp.status == 404:
                        return 404, body
                    if resp.status >= 400:
                        message = body.get("message", str(body)) if isinstance(body, dict) else str(body)
                        raise ExternalUnavailable("wordpress", f"HTTP {resp.status} on {endpoint}: {message}")
                    return resp.status, body
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(f"Network error on {url}, retrying in {delay:.1f}s: {e}")
                    await asyncio.sleep(delay)
                else:
                    raise ExternalUnavailable("wordpress", f"network error after {MAX_RETRIES} retries: {e}") from e

        raise ExternalUnavailable("wordpress", f"request to {endpoint} did not complete")

    async def create_draft_post(self, draft: PostDraft) -> RemotePost:
        payload: dict[str, Any] = {
            "title": draft.title,
            "content": draft.content,
            "excerpt": draft.excerpt,
            "status": "draft",
            "meta": draft.meta,
        }
        params = {"lang": draft.lang}
        if draft.translation_of is not None:
            params["translations[he]"] = str(draft.translation_of)

        _, body = await self._request("POST", "posts", json_data=payload, params=params)
        post = self._to_post(body)
        logger.info(f"Created {draft.lang} draft post {post.id}: {draft.title}")
        return post

    async def publish_post(self, post_id: int) -> RemotePost:
        status, body = await self._request("POST", f"posts/{post_id}", json_data={"status": "publish"})
        if status == 404:
            raise ExternalUnavailable("wordpress", f"post {post_id} not found")
        post = self._to_post(body)
        logger.info(f"Published post {post_id}: {post.link}")
        return post

    async def update_post(self, post_id: int, fields: dict[str, Any]) -> RemotePost:
        status, body = await self._request("POST", f"posts/{post_id}", json_data=fields)
        if status == 404:
            raise ExternalUnavailable("wordpress", f"post {post_id} not found")
        return self._to_post(body)

    async def get_post(self, post_id: int) -> Optional[RemotePost]:
        status, body = await self._request("GET", f"posts/{post_id}", params={"context": "edit"})
        if status == 404:
            return None
        return self._to_post(body)

    def _to_post(self, body: Any) -> RemotePost:
        if not isinstance(body, dict) or "id" not in body:
            raise ExternalUnavailable("wordpress", f"unexpected response: {str(body)[:200]}")
        title = body.get("title")
        if isinstance(title, dict):
            title = title.get("raw") or title.get("rendered", "")
        return RemotePost(
            id=int(body["id"]),
            status=body.get("status", "draft"),
            link=body.get("link", ""),
            title=title or "",
        )
