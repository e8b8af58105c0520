"""
SQLite database for topics, content pieces, pipeline runs, approvals and logs.

Each record write is a single statement, so the store is atomic per record but
not transactional across records.
"""

import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite
import structlog

from ..errors import StoreUnavailable

logger = structlog.get_logger()

# SQL Schema
SCHEMA = """
-- Topics: candidate content subjects, never hard-deleted
CREATE TABLE IF NOT EXISTS topics (
    id TEXT PRIMARY KEY,
    title_he TEXT NOT NULL DEFAULT '',
    title_en TEXT NOT NULL,
    keywords TEXT NOT NULL DEFAULT '[]',  -- JSON array
    priority TEXT NOT NULL DEFAULT 'medium',
    status TEXT NOT NULL DEFAULT 'proposed',
    last_used TIMESTAMP,
    source_topic_id TEXT,
    feedback TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,

    CONSTRAINT valid_priority CHECK (priority IN ('low', 'medium', 'high')),
    CONSTRAINT valid_topic_status CHECK (status IN ('proposed', 'approved', 'rejected', 'changes_requested'))
);

-- Content pieces: generated artifacts for a topic
CREATE TABLE IF NOT EXISTS content_pieces (
    id TEXT PRIMARY KEY,
    topic_id TEXT NOT NULL REFERENCES topics(id),
    body_he TEXT NOT NULL DEFAULT '',
    body_en TEXT NOT NULL DEFAULT '',
    word_count INTEGER NOT NULL DEFAULT 0,
    seo_score INTEGER NOT NULL DEFAULT 0,
    focus_keyword TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'draft',
    media TEXT NOT NULL DEFAULT '{}',  -- JSON object
    wp_post_id INTEGER,
    wp_post_id_en INTEGER,
    social_posts TEXT NOT NULL DEFAULT '{}',  -- JSON object

    -- Healer exclusive marker
    heal_marker TEXT,
    heal_marker_at TIMESTAMP,

    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,

    CONSTRAINT valid_seo CHECK (seo_score >= 0 AND seo_score <= 100),
    CONSTRAINT valid_content_status CHECK (status IN ('draft', 'ready', 'published', 'error'))
);

-- Pipeline runs: the ledger
CREATE TABLE IF NOT EXISTS pipeline_runs (
    id TEXT PRIMARY KEY,
    trigger_type TEXT NOT NULL,
    kind TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'running',
    current_stage TEXT NOT NULL,
    stages_completed TEXT NOT NULL DEFAULT '[]',  -- JSON array
    stages_failed TEXT NOT NULL DEFAULT '[]',  -- JSON array
    topic_id TEXT,
    content_id TEXT,
    retry_of TEXT,
    started_at TIMESTAMP NOT NULL,
    completed_at TIMESTAMP,
    logs TEXT NOT NULL DEFAULT '[]',  -- JSON array of run log entries

    CONSTRAINT valid_run_status CHECK (status IN ('running', 'completed', 'failed'))
);

-- Approvals: resolved exactly once
CREATE TABLE IF NOT EXISTS approvals (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    run_id TEXT,
    title TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'pending',
    feedback TEXT,
    responder_id TEXT,
    responded_at TIMESTAMP,
    external_message_id TEXT,
    created_at TIMESTAMP NOT NULL
);

-- Pipeline logs: append-only dashboard tail
CREATE TABLE IF NOT EXISTS pipeline_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TIMESTAMP NOT NULL,
    level TEXT NOT NULL,
    message TEXT NOT NULL,
    topic_id TEXT,
    run_id TEXT
);

-- At most one running run per topic
CREATE UNIQUE INDEX IF NOT EXISTS idx_runs_one_running_per_topic
    ON pipeline_runs(topic_id) WHERE status = 'running' AND topic_id IS NOT NULL;

-- Indexes for performance
CREATE INDEX IF NOT EXISTS idx_topics_status ON topics(status);
CREATE INDEX IF NOT EXISTS idx_content_topic ON content_pieces(topic_id);
CREATE INDEX IF NOT EXISTS idx_content_updated ON content_pieces(updated_at DESC);
CREATE INDEX IF NOT EXISTS idx_runs_status ON pipeline_runs(status);
CREATE INDEX IF NOT EXISTS idx_approvals_status ON approvals(status);
CREATE INDEX IF NOT EXISTS idx_approvals_run ON approvals(run_id);
CREATE INDEX IF NOT EXISTS idx_approvals_entity ON approvals(entity_id);
CREATE INDEX IF NOT EXISTS idx_logs_topic ON pipeline_logs(topic_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON pipeline_logs(timestamp DESC);
"""


class PipelineDatabase:
    """Async SQLite database wrapper for pipeline state."""

    def __init__(self, db_path: Path | str = "data/pressline.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Open database connection."""
        try:
            self._connection = await aiosqlite.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open database {self.db_path}: {e}") from e
        self._connection.row_factory = aiosqlite.Row
        # Enable foreign keys and WAL mode for concurrent readers
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute("PRAGMA journal_mode = WAL")
        logger.info(f"Connected to database: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def initialize(self) -> None:
        """Create tables and indexes."""
        if not self._connection:
            await self.connect()
        await self._connection.executescript(SCHEMA)
        await self._connection.commit()
        logger.info("Database schema initialized")

    @property
    def connection(self) -> aiosqlite.Connection:
        if not self._connection:
            raise StoreUnavailable("Database not connected. Call connect() first.")
        return self._connection

    async def __aenter__(self) -> "PipelineDatabase":
        await self.connect()
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


async def init_database(db_path: Path | str = "data/pressline.db") -> PipelineDatabase:
    """Initialize and return a database instance."""
    db = PipelineDatabase(db_path)
    await db.connect()
    await db.initialize()
    return db
