"""
Repository pattern for pipeline state storage operations.
"""

import json
import sqlite3
from datetime import datetime, timedelta
from typing import Iterable, Optional

import structlog

from ..errors import RunConflictError
from .database import PipelineDatabase
from .models import (
    Approval,
    ApprovalStatus,
    ContentPiece,
    PipelineLogEntry,
    PipelineRun,
    RunStatus,
    Topic,
    TopicStatus,
    utcnow,
)

logger = structlog.get_logger()

RUNNING_INDEX_VIOLATION = "pipeline_runs.topic_id"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ContentStore:
    """Repository for topics, content pieces, runs, approvals and logs."""

    def __init__(self, db: PipelineDatabase):
        self.db = db

    # -- Topics ------------------------------------------------------------

    async def put_topic(self, topic: Topic) -> Topic:
        """Insert or update a topic."""
        topic.updated_at = utcnow()
        sql = """
        INSERT INTO topics (
            id, title_he, title_en, keywords, priority, status, last_used,
            source_topic_id, feedback, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            title_he = excluded.title_he,
            title_en = excluded.title_en,
            keywords = excluded.keywords,
            priority = excluded.priority,
            status = excluded.status,
            last_used = excluded.last_used,
            feedback = excluded.feedback,
            updated_at = excluded.updated_at
        """
        await self.db.connection.execute(sql, (
            topic.id,
            topic.title_he,
            topic.title_en,
            json.dumps(topic.keywords, ensure_ascii=False),
            topic.priority.value,
            topic.status.value,
            _ts(topic.last_used),
            topic.source_topic_id,
            topic.feedback,
            _ts(topic.created_at),
            _ts(topic.updated_at),
        ))
        await self.db.connection.commit()
        return topic

    async def get_topic(self, topic_id: str) -> Optional[Topic]:
        """Get a single topic by ID."""
        async with self.db.connection.execute(
            "SELECT * FROM topics WHERE id = ?", (topic_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_topic(dict(row))
        return None

    async def list_topics(self, status: Optional[TopicStatus] = None, limit: int = 100) -> list[Topic]:
        """List topics, newest first."""
        sql = "SELECT * FROM topics"
        params: list = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        topics = []
        async with self.db.connection.execute(sql, params) as cursor:
            async for row in cursor:
                topics.append(self._row_to_topic(dict(row)))
        return topics

    async def get_available_topics(
        self,
        limit: int = 10,
        cooldown_days: int = 30,
        exclude_ids: Iterable[str] = (),
    ) -> list[Topic]:
        """
        Get topics eligible for a new content run, highest priority first.

        Eligible topics are approved or proposed, not used within the cooldown
        window, have no pending approval and no running pipeline run.
        """
        cutoff = utcnow() - timedelta(days=cooldown_days)
        sql = """
        SELECT * FROM topics
        WHERE status IN ('approved', 'proposed')
          AND (last_used IS NULL OR last_used < ?)
          AND id NOT IN (SELECT entity_id FROM approvals WHERE status = 'pending')
          AND id NOT IN (
              SELECT topic_id FROM pipeline_runs
              WHERE status = 'running' AND topic_id IS NOT NULL
          )
        ORDER BY CASE priority WHEN 'high' THEN 3 WHEN 'medium' THEN 2 ELSE 1 END DESC,
                 CASE status WHEN 'approved' THEN 1 ELSE 0 END DESC,
                 created_at ASC
        """
        excluded = set(exclude_ids)
        topics = []
        async with self.db.connection.execute(sql, (cutoff.isoformat(),)) as cursor:
            async for row in cursor:
                topic = self._row_to_topic(dict(row))
                if topic.id not in excluded:
                    topics.append(topic)
                if len(topics) >= limit:
                    break
        return topics

    # -- Content pieces ----------------------------------------------------

    async def put_content_piece(self, piece: ContentPiece) -> ContentPiece:
        """
        Insert or update a content piece.
        The healer marker columns are managed separately and never overwritten here.
        """
        piece.updated_at = utcnow()
        sql = """
        INSERT INTO content_pieces (
            id, topic_id, body_he, body_en, word_count, seo_score, focus_keyword,
            status, media, wp_post_id, wp_post_id_en, social_posts, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            body_he = excluded.body_he,
            body_en = excluded.body_en,
            word_count = excluded.word_count,
            seo_score = excluded.seo_score,
            focus_keyword = excluded.focus_keyword,
            status = excluded.status,
            media = excluded.media,
            wp_post_id = excluded.wp_post_id,
            wp_post_id_en = excluded.wp_post_id_en,
            social_posts = excluded.social_posts,
            updated_at = excluded.updated_at
        """
        await self.db.connection.execute(sql, (
            piece.id,
            piece.topic_id,
            piece.body_he,
            piece.body_en,
            piece.word_count,
            piece.seo_score,
            piece.focus_keyword,
            piece.status.value,
            piece.media.model_dump_json(),
            piece.wp_post_id,
            piece.wp_post_id_en,
            json.dumps(piece.social_posts, ensure_ascii=False),
            _ts(piece.created_at),
            _ts(piece.updated_at),
        ))
        await self.db.connection.commit()
        return piece

    async def get_content_piece(self, content_id: str) -> Optional[ContentPiece]:
        """Get a single content piece by ID."""
        async with self.db.connection.execute(
            "SELECT * FROM content_pieces WHERE id = ?", (content_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_content(dict(row))
        return None

    async def get_content_for_topic(self, topic_id: str) -> Optional[ContentPiece]:
        """Get the most recent content piece for a topic."""
        sql = """
        SELECT * FROM content_pieces
        WHERE topic_id = ?
        ORDER BY created_at DESC
        LIMIT 1
        """
        async with self.db.connection.execute(sql, (topic_id,)) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_content(dict(row))
        return None

    async def get_recent_content_pieces(self, limit: int = 50) -> list[ContentPiece]:
        """Get the most recently updated content pieces."""
        sql = "SELECT * FROM content_pieces ORDER BY updated_at DESC LIMIT ?"
        pieces = []
        async with self.db.connection.execute(sql, (limit,)) as cursor:
            async for row in cursor:
                pieces.append(self._row_to_content(dict(row)))
        return pieces

    async def get_published_below_seo(self, threshold: int, limit: int = 20) -> list[ContentPiece]:
        """Get published pieces under the SEO threshold, lowest score first."""
        sql = """
        SELECT * FROM content_pieces
        WHERE status = 'published' AND seo_score < ?
        ORDER BY seo_score ASC, updated_at DESC
        LIMIT ?
        """
        pieces = []
        async with self.db.connection.execute(sql, (threshold, limit)) as cursor:
            async for row in cursor:
                pieces.append(self._row_to_content(dict(row)))
        return pieces

    async def get_published_without_podcast(self, limit: int = 5) -> list[ContentPiece]:
        """Get published pieces whose episode is not on the podcast host yet, newest first."""
        sql = """
        SELECT * FROM content_pieces
        WHERE status = 'published'
          AND json_extract(media, '$.podcast_episode') IS NULL
        ORDER BY updated_at DESC
        LIMIT ?
        """
        pieces = []
        async with self.db.connection.execute(sql, (limit,)) as cursor:
            async for row in cursor:
                pieces.append(self._row_to_content(dict(row)))
        return pieces

    async def acquire_heal_marker(self, content_id: str, holder: str, stale_before: datetime) -> bool:
        """
        Set the healer marker unless another holder has a fresh one.
        Returns True if the marker is now held by *holder*.
        """
        sql = """
        UPDATE content_pieces
        SET heal_marker = ?, heal_marker_at = ?
        WHERE id = ?
          AND (heal_marker IS NULL OR heal_marker_at < ?)
        """
        cursor = await self.db.connection.execute(sql, (
            holder,
            utcnow().isoformat(),
            content_id,
            stale_before.isoformat(),
        ))
        await self.db.connection.commit()
        return cursor.rowcount == 1

    async def release_heal_marker(self, content_id: str, holder: str) -> None:
        """Clear the healer marker if *holder* still owns it."""
        sql = """
        UPDATE content_pieces
        SET heal_marker = NULL, heal_marker_at = NULL
        WHERE id = ? AND heal_marker = ?
        """
        await self.db.connection.execute(sql, (content_id, holder))
        await self.db.connection.commit()

    # -- Pipeline runs -----------------------------------------------------

    async def create_pipeline_run(self, run: PipelineRun) -> PipelineRun:
        """Insert a new pipeline run. Raises RunConflictError if the topic is busy."""
        sql = """
        INSERT INTO pipeline_runs (
            id, trigger_type, kind, status, current_stage, stages_completed,
            stages_failed, topic_id, content_id, retry_of, started_at, completed_at, logs
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        try:
            await self.db.connection.execute(sql, self._run_params(run))
            await self.db.connection.commit()
        except sqlite3.IntegrityError as e:
            await self.db.connection.rollback()
            if RUNNING_INDEX_VIOLATION in str(e):
                raise RunConflictError(run.topic_id or "") from e
            raise
        return run

    async def update_pipeline_run(self, run: PipelineRun) -> PipelineRun:
        """Persist a pipeline run's full state. Raises RunConflictError if the topic is busy."""
        sql = """
        UPDATE pipeline_runs
        SET status = ?, current_stage = ?, stages_completed = ?, stages_failed = ?,
            topic_id = ?, content_id = ?, completed_at = ?, logs = ?
        WHERE id = ?
        """
        try:
            await self.db.connection.execute(sql, (
                run.status.value,
                run.current_stage,
                json.dumps(run.stages_completed),
                json.dumps(run.stages_failed),
                run.topic_id,
                run.content_id,
                _ts(run.completed_at),
                json.dumps([entry.model_dump(mode="json") for entry in run.logs], ensure_ascii=False),
                run.id,
            ))
            await self.db.connection.commit()
        except sqlite3.IntegrityError as e:
            await self.db.connection.rollback()
            if RUNNING_INDEX_VIOLATION in str(e):
                raise RunConflictError(run.topic_id or "") from e
            raise
        return run

    async def get_pipeline_run(self, run_id: str) -> Optional[PipelineRun]:
        """Get a single pipeline run by ID."""
        async with self.db.connection.execute(
            "SELECT * FROM pipeline_runs WHERE id = ?", (run_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_run(dict(row))
        return None

    async def get_active_run_for_topic(self, topic_id: str) -> Optional[PipelineRun]:
        """Get the running pipeline run for a topic, if any."""
        sql = "SELECT * FROM pipeline_runs WHERE topic_id = ? AND status = 'running'"
        async with self.db.connection.execute(sql, (topic_id,)) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_run(dict(row))
        return None

    async def list_pipeline_runs(self, status: Optional[RunStatus] = None, limit: int = 20) -> list[PipelineRun]:
        """List pipeline runs, newest first."""
        sql = "SELECT * FROM pipeline_runs"
        params: list = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY started_at DESC LIMIT ?"
        params.append(limit)

        runs = []
        async with self.db.connection.execute(sql, params) as cursor:
            async for row in cursor:
                runs.append(self._row_to_run(dict(row)))
        return runs

    # -- Approvals ---------------------------------------------------------

    async def create_approval(self, approval: Approval) -> Approval:
        """Insert a new approval."""
        sql = """
        INSERT INTO approvals (
            id, type, entity_id, run_id, title, status, feedback,
            responder_id, responded_at, external_message_id, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        await self.db.connection.execute(sql, (
            approval.id,
            approval.type.value,
            approval.entity_id,
            approval.run_id,
            approval.title,
            approval.status.value,
            approval.feedback,
            approval.responder_id,
            _ts(approval.responded_at),
            approval.external_message_id,
            _ts(approval.created_at),
        ))
        await self.db.connection.commit()
        return approval

    async def update_approval(
        self,
        approval: Approval,
        expected_status: Optional[ApprovalStatus] = None,
    ) -> bool:
        """
        Persist an approval's mutable fields.
        With *expected_status* the write only applies if the stored status still
        matches, giving a single-record compare-and-set. Returns True if applied.
        """
        sql = """
        UPDATE approvals
        SET status = ?, feedback = ?, responder_id = ?, responded_at = ?, external_message_id = ?
        WHERE id = ?
        """
        params = [
            approval.status.value,
            approval.feedback,
            approval.responder_id,
            _ts(approval.responded_at),
            approval.external_message_id,
            approval.id,
        ]
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status.value)

        cursor = await self.db.connection.execute(sql, params)
        await self.db.connection.commit()
        return cursor.rowcount == 1

    async def get_approval(self, approval_id: str) -> Optional[Approval]:
        """Get a single approval by ID."""
        async with self.db.connection.execute(
            "SELECT * FROM approvals WHERE id = ?", (approval_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return Approval.model_validate(dict(row))
        return None

    async def get_latest_approval_for_run(self, run_id: str) -> Optional[Approval]:
        """Get the most recent approval attached to a run."""
        sql = """
        SELECT * FROM approvals
        WHERE run_id = ?
        ORDER BY created_at DESC
        LIMIT 1
        """
        async with self.db.connection.execute(sql, (run_id,)) as cursor:
            row = await cursor.fetchone()
            if row:
                return Approval.model_validate(dict(row))
        return None

    async def list_pending_approvals(self) -> list[Approval]:
        """Get all approvals awaiting a decision, oldest first."""
        sql = "SELECT * FROM approvals WHERE status = 'pending' ORDER BY created_at ASC"
        approvals = []
        async with self.db.connection.execute(sql) as cursor:
            async for row in cursor:
                approvals.append(Approval.model_validate(dict(row)))
        return approvals

    # -- Logs --------------------------------------------------------------

    async def append_log(self, entry: PipelineLogEntry) -> PipelineLogEntry:
        """Append a log entry and return it with its assigned ID."""
        sql = """
        INSERT INTO pipeline_logs (timestamp, level, message, topic_id, run_id)
        VALUES (?, ?, ?, ?, ?)
        """
        cursor = await self.db.connection.execute(sql, (
            entry.timestamp.isoformat(),
            entry.level.value,
            entry.message,
            entry.topic_id,
            entry.run_id,
        ))
        await self.db.connection.commit()
        entry.id = cursor.lastrowid
        return entry

    async def get_latest_log_timestamp(self) -> Optional[datetime]:
        """Get the timestamp of the most recent log entry."""
        async with self.db.connection.execute("SELECT MAX(timestamp) FROM pipeline_logs") as cursor:
            value = (await cursor.fetchone())[0]
        return datetime.fromisoformat(value) if value else None

    async def query_logs(self, topic_id: Optional[str] = None, limit: int = 50) -> list[PipelineLogEntry]:
        """Get log entries, most recent first, optionally for one topic."""
        sql = "SELECT * FROM pipeline_logs"
        params: list = []
        if topic_id is not None:
            sql += " WHERE topic_id = ?"
            params.append(topic_id)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        entries = []
        async with self.db.connection.execute(sql, params) as cursor:
            async for row in cursor:
                entries.append(PipelineLogEntry.model_validate(dict(row)))
        return entries

    # -- Row mapping -------------------------------------------------------

    def _run_params(self, run: PipelineRun) -> tuple:
        return (
            run.id,
            run.trigger_type.value,
            run.kind.value,
            run.status.value,
            run.current_stage,
            json.dumps(run.stages_completed),
            json.dumps(run.stages_failed),
            run.topic_id,
            run.content_id,
            run.retry_of,
            _ts(run.started_at),
            _ts(run.completed_at),
            json.dumps([entry.model_dump(mode="json") for entry in run.logs], ensure_ascii=False),
        )

    def _row_to_topic(self, row: dict) -> Topic:
        """Convert database row to Topic model."""
        row["keywords"] = json.loads(row.get("keywords") or "[]")
        return Topic.model_validate(row)

    def _row_to_content(self, row: dict) -> ContentPiece:
        """Convert database row to ContentPiece model."""
        row["media"] = json.loads(row.get("media") or "{}")
        row["social_posts"] = json.loads(row.get("social_posts") or "{}")
        return ContentPiece.model_validate(row)

    def _row_to_run(self, row: dict) -> PipelineRun:
        """Convert database row to PipelineRun model."""
        row["stages_completed"] = json.loads(row.get("stages_completed") or "[]")
        row["stages_failed"] = json.loads(row.get("stages_failed") or "[]")
        row["logs"] = json.loads(row.get("logs") or "[]")
        return PipelineRun.model_validate(row)


