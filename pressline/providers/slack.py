"""Slack messaging channel for review requests and notifications."""

import asyncio
from typing import Any, Optional

import aiohttp
import structlog
from pydantic import BaseModel

from ..errors import ExternalUnavailable
from .base import ApprovalRequest, MessagingChannel

logger = structlog.get_logger()

SLACK_API_URL = "https://slack.com/api"


class SlackConfig(BaseModel):
    """Configuration for the Slack Web API."""

    bot_token: Optional[str] = None
    channel: str = "#content-approvals"
    timeout_seconds: float = 15.0


class SlackChannel(MessagingChannel):
    """Posts approval requests with approve/reject buttons."""

    def __init__(self, config: SlackConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self.config.bot_token:
            raise ExternalUnavailable("slack", "SLACK_BOT_TOKEN is not configured", critical=False)
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self.config.bot_token}",
                    "Content-Type": "application/json; charset=utf-8",
                },
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _post_message(self, payload: dict[str, Any]) -> str:
        session = await self._get_session()
        try:
            async with session.post(f"{SLACK_API_URL}/chat.postMessage", json=payload) as resp:
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExternalUnavailable("slack", f"chat.postMessage failed: {e}", critical=False) from e

        if not body.get("ok"):
            raise ExternalUnavailable("slack", f"chat.postMessage error: {body.get('error')}", critical=False)
        return body.get("ts", "")

    async def send_approval_request(self, request: ApprovalRequest) -> str:
        text = request.to_text()
        blocks = [
            {"type": "section", "text": {"type": "mrkdwn", "text": text}},
            {
                "type": "actions",
                "block_id": f"approval_{request.approval_id}",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Approve"},
                        "style": "primary",
                        "action_id": "approve",
                        "value": request.approval_id,
                    },
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Request changes"},
                        "action_id": "changes_requested",
                        "value": request.approval_id,
                    },
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Reject"},
                        "style": "danger",
                        "action_id": "reject",
                        "value": request.approval_id,
                    },
                ],
            },
        ]
        ts = await self._post_message({"channel": self.config.channel, "text": text, "blocks": blocks})
        logger.info(f"Sent approval request {request.approval_id} to {self.config.channel}")
        return ts

    async def send_message(self, text: str) -> Optional[str]:
        return await self._post_message({"channel": self.config.channel, "text": text})
