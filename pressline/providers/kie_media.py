"""
Kie.ai image and video generation provider.

Jobs are genuinely asynchronous: ``submit`` creates a remote task and
``poll`` reads its record until a result URL is available.
"""

import asyncio
import json
from typing import Any, Optional

import aiohttp
import structlog
from pydantic import BaseModel

from ..errors import ExternalUnavailable
from .base import GenerationProvider, JobKind, JobSpec, JobState, JobStatus

logger = structlog.get_logger()

SUCCESS_STATES = {"success", "completed", "succeeded"}
FAILURE_STATES = {"fail", "failed", "error"}


class KieConfig(BaseModel):
    """Configuration for Kie.ai."""

    api_key: Optional[str] = None
    base_url: str = "https://api.kie.ai/api/v1"
    timeout_seconds: float = 30.0


class KieMediaProvider(GenerationProvider):
    """Featured images and explainer videos via Kie.ai."""

    def __init__(self, config: KieConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def name(self) -> str:
        return "kie.ai"

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self.config.api_key:
            raise ExternalUnavailable(self.name, "KIE_API_KEY is not configured")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"x-api-key": self.config.api_key, "Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        session = await self._get_session()
        url = f"{self.config.base_url}{path}"
        try:
            async with session.request(method, url, **kwargs) as resp:
                body = await resp.json(content_type=None)
                if resp.status >= 400:
                    raise ExternalUnavailable(self.name, f"HTTP {resp.status}: {json.dumps(body)[:300]}")
                return body or {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExternalUnavailable(self.name, f"{method} {path} failed: {e}") from e

    async def submit(self, job: JobSpec) -> str:
        if job.kind is JobKind.VIDEO:
            body = await self._request("POST", "/veo/generate", json={"prompt": job.prompt, **job.options})
        else:
            body = await self._request(
                "POST",
                "/jobs/createTask",
                json={"taskType": "image_gen", "prompt": job.prompt, **job.options},
            )

        task_id = (body.get("data") or {}).get("taskId")
        if not task_id:
            raise ExternalUnavailable(self.name, f"no task id in response: {json.dumps(body)[:300]}")

        logger.info(f"Kie.ai {job.kind.value} task created: {task_id}")
        return task_id

    async def poll(self, task_id: str) -> JobStatus:
        body = await self._request("GET", "/jobs/recordInfo", params={"taskId": task_id})
        data = body.get("data") or {}
        state = str(data.get("state") or data.get("status") or "").lower()

        if state in SUCCESS_STATES:
            url = data.get("url") or self._first_result_url(data.get("resultJson"))
            if url:
                return JobStatus(task_id=task_id, state=JobState.SUCCEEDED, output=url)
            return JobStatus(task_id=task_id, state=JobState.FAILED, error="completed without a result url")
        if state in FAILURE_STATES:
            return JobStatus(task_id=task_id, state=JobState.FAILED, error=data.get("failMsg") or state)
        return JobStatus(task_id=task_id, state=JobState.RUNNING)

    def _first_result_url(self, result_json: Any) -> Optional[str]:
        if not result_json:
            return None
        try:
            result = json.loads(result_json) if isinstance(result_json, str) else result_json
        except json.JSONDecodeError:
            return None
        urls = result.get("resultUrls") or []
        return urls[0] if urls else None
