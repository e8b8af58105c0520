"""
Pipeline logger.

Persists an append-only activity log for dashboards and mirrors every
entry through structlog.
"""

from datetime import timedelta
from typing import Optional

import structlog

from ..storage.models import LogLevel, PipelineLogEntry, utcnow
from ..storage.repository import ContentStore

logger = structlog.get_logger()

_STRUCTLOG_METHODS = {
    LogLevel.INFO: "info",
    LogLevel.WARN: "warning",
    LogLevel.ERROR: "error",
    LogLevel.SUCCESS: "info",
    LogLevel.AGENT: "info",
}


class PipelineLogger:
    """Append-only pipeline log with monotonic timestamps."""

    def __init__(self, store: ContentStore):
        self.store = store
        self._last_timestamp = None

    async def append(self, entry: PipelineLogEntry) -> PipelineLogEntry:
        """Persist an entry, clamping its timestamp so the log never goes backwards."""
        if self._last_timestamp is None:
            self._last_timestamp = await self.store.get_latest_log_timestamp()
        if self._last_timestamp is not None and entry.timestamp <= self._last_timestamp:
            entry.timestamp = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = entry.timestamp

        getattr(logger, _STRUCTLOG_METHODS[entry.level])(
            entry.message,
            level_tag=entry.level.value,
            topic_id=entry.topic_id,
            run_id=entry.run_id,
        )
        return await self.store.append_log(entry)

    async def query(self, topic_id: Optional[str] = None, limit: int = 50) -> list[PipelineLogEntry]:
        """Most recent entries first; the global tail when no topic is given."""
        return await self.store.query_logs(topic_id=topic_id, limit=limit)

    async def _log(
        self,
        level: LogLevel,
        message: str,
        topic_id: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> PipelineLogEntry:
        entry = PipelineLogEntry(
            timestamp=utcnow(),
            level=level,
            message=message,
            topic_id=topic_id,
            run_id=run_id,
        )
        return await self.append(entry)

    async def info(self, message: str, topic_id: Optional[str] = None, run_id: Optional[str] = None):
        return await self._log(LogLevel.INFO, message, topic_id, run_id)

    async def warn(self, message: str, topic_id: Optional[str] = None, run_id: Optional[str] = None):
        return await self._log(LogLevel.WARN, message, topic_id, run_id)

    async def error(self, message: str, topic_id: Optional[str] = None, run_id: Optional[str] = None):
        return await self._log(LogLevel.ERROR, message, topic_id, run_id)

    async def success(self, message: str, topic_id: Optional[str] = None, run_id: Optional[str] = None):
        return await self._log(LogLevel.SUCCESS, message, topic_id, run_id)

    async def agent(self, message: str, topic_id: Optional[str] = None, run_id: Optional[str] = None):
        return await self._log(LogLevel.AGENT, message, topic_id, run_id)
