# Copyright (c) Syntropy Systems
"""SQLite results store with WAL mode and explicit commit points."""
from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING, TypeVar

from resultflow.models.results import (
    AnomalyRecord,
    Bucket,
    CategoryDefinition,
    Influencer,
    ModelDebugOutput,
    ModelSizeStats,
    ModelSnapshot,
    Quantiles,
)

if TYPE_CHECKING:
    from pathlib import Path

    from pydantic import BaseModel

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound="BaseModel")

# SQL schema for the results store
SCHEMA = """
-- One row per bucket; finalized results replace interim ones for the same time
CREATE TABLE IF NOT EXISTS buckets (
    job_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    is_interim INTEGER NOT NULL DEFAULT 0,
    anomaly_score REAL,
    doc TEXT NOT NULL,  -- JSON
    PRIMARY KEY (job_id, timestamp)
);

CREATE TABLE IF NOT EXISTS records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    is_interim INTEGER NOT NULL DEFAULT 0,
    normalized_probability REAL,
    doc TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS influencers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    is_interim INTEGER NOT NULL DEFAULT 0,
    doc TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS category_definitions (
    job_id TEXT NOT NULL,
    category_id INTEGER NOT NULL,
    doc TEXT NOT NULL,
    PRIMARY KEY (job_id, category_id)
);

CREATE TABLE IF NOT EXISTS model_debug_output (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    doc TEXT NOT NULL
);

-- Latest stats only
CREATE TABLE IF NOT EXISTS model_size_stats (
    job_id TEXT PRIMARY KEY,
    doc TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS model_snapshots (
    job_id TEXT NOT NULL,
    snapshot_id TEXT NOT NULL,
    timestamp INTEGER,
    doc TEXT NOT NULL,
    PRIMARY KEY (job_id, snapshot_id)
);

-- Latest quantiles only
CREATE TABLE IF NOT EXISTS quantiles (
    job_id TEXT PRIMARY KEY,
    timestamp INTEGER,
    doc TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_job_time ON records(job_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_influencers_job_time ON influencers(job_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_debug_job_time ON model_debug_output(job_id, timestamp);
"""


def get_connection(db_path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """
    Get a database connection with proper settings for concurrent access.

    - isolation_level=None for explicit transaction control
    - WAL mode so readers see committed results while a job is writing
    - busy_timeout to wait for locks instead of failing immediately
    - Row factory for dict-like access
    """
    conn = sqlite3.connect(
        str(db_path),
        timeout=5.0,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    """Initialize the database with the schema."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()


class JobResultsPersister:
    """Writes engine results to the store.

    Writes are buffered in a transaction that is opened by the first write
    and only becomes visible to other connections on ``commit_writes``.
    The connection may be handed to the processing thread, but must only be
    used by one thread at a time.
    """

    conn: sqlite3.Connection

    def __init__(self, db_path: Path) -> None:
        self.conn = get_connection(db_path, check_same_thread=False)
        self.conn.executescript(SCHEMA)

    def _begin(self) -> None:
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")

    def delete_interim_results(self, job_id: str) -> None:
        """Delete interim buckets, records and influencers for a job."""
        self._begin()
        deleted = 0
        for table in ("buckets", "records", "influencers"):
            cursor = self.conn.execute(
                f"DELETE FROM {table} WHERE job_id = ? AND is_interim = 1",  # noqa: S608
                (job_id,),
            )
            deleted += cursor.rowcount
        logger.debug("[%s] Deleted %d interim result(s)", job_id, deleted)

    def persist_bucket(self, bucket: Bucket) -> None:
        """Insert or replace the bucket for its timestamp."""
        self._begin()
        self.conn.execute(
            """
            INSERT OR REPLACE INTO buckets (job_id, timestamp, is_interim, anomaly_score, doc)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                bucket.job_id,
                bucket.timestamp,
                int(bucket.is_interim),
                bucket.anomaly_score,
                bucket.model_dump_json(),
            ),
        )

    def persist_records(self, records: list[AnomalyRecord]) -> None:
        """Insert a batch of anomaly records."""
        self._begin()
        self.conn.executemany(
            """
            INSERT INTO records (job_id, timestamp, is_interim, normalized_probability, doc)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (
                    record.job_id,
                    record.timestamp,
                    int(record.is_interim),
                    record.normalized_probability,
                    record.model_dump_json(),
                )
                for record in records
            ],
        )

    def persist_influencers(self, influencers: list[Influencer]) -> None:
        """Insert a batch of influencers."""
        self._begin()
        self.conn.executemany(
            """
            INSERT INTO influencers (job_id, timestamp, is_interim, doc)
            VALUES (?, ?, ?, ?)
            """,
            [
                (
                    influencer.job_id,
                    influencer.timestamp,
                    int(influencer.is_interim),
                    influencer.model_dump_json(),
                )
                for influencer in influencers
            ],
        )

    def persist_category_definition(self, category: CategoryDefinition) -> None:
        """Insert or replace a category definition."""
        self._begin()
        self.conn.execute(
            """
            INSERT OR REPLACE INTO category_definitions (job_id, category_id, doc)
            VALUES (?, ?, ?)
            """,
            (category.job_id, category.category_id, category.model_dump_json()),
        )

    def persist_model_debug_output(self, output: ModelDebugOutput) -> None:
        """Insert a model debug output document."""
        self._begin()
        self.conn.execute(
            "INSERT INTO model_debug_output (job_id, timestamp, doc) VALUES (?, ?, ?)",
            (output.job_id, output.timestamp, output.model_dump_json()),
        )

    def persist_model_size_stats(self, stats: ModelSizeStats) -> None:
        """Store the job's latest model size stats."""
        self._begin()
        self.conn.execute(
            "INSERT OR REPLACE INTO model_size_stats (job_id, doc) VALUES (?, ?)",
            (stats.job_id, stats.model_dump_json()),
        )

    def persist_model_snapshot(self, snapshot: ModelSnapshot) -> None:
        """Insert or replace a model snapshot."""
        self._begin()
        self.conn.execute(
            """
            INSERT OR REPLACE INTO model_snapshots (job_id, snapshot_id, timestamp, doc)
            VALUES (?, ?, ?, ?)
            """,
            (
                snapshot.job_id,
                snapshot.snapshot_id,
                snapshot.timestamp,
                snapshot.model_dump_json(),
            ),
        )

    def persist_quantiles(self, quantiles: Quantiles) -> None:
        """Store the job's latest quantiles."""
        self._begin()
        self.conn.execute(
            "INSERT OR REPLACE INTO quantiles (job_id, timestamp, doc) VALUES (?, ?, ?)",
            (quantiles.job_id, quantiles.timestamp, quantiles.model_dump_json()),
        )

    def commit_writes(self, job_id: str) -> None:
        """Make every write so far durable and visible to readers."""
        if self.conn.in_transaction:
            self.conn.execute("COMMIT")
            logger.debug("[%s] Committed result writes", job_id)

    def close(self) -> None:
        """Roll back anything uncommitted and close the connection."""
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")
        self.conn.close()


# --- Read Operations ---

def _load_all(model: type[ModelT], rows: list[sqlite3.Row]) -> list[ModelT]:
    return [model.model_validate_json(row["doc"]) for row in rows]


def get_buckets(
    conn: sqlite3.Connection,
    job_id: str,
    include_interim: bool = True,  # noqa: FBT001, FBT002
    limit: int | None = None,
) -> list[Bucket]:
    """Get a job's buckets ordered by timestamp."""
    query = "SELECT doc FROM buckets WHERE job_id = ?"
    params: list[object] = [job_id]
    if not include_interim:
        query += " AND is_interim = 0"
    query += " ORDER BY timestamp"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    return _load_all(Bucket, conn.execute(query, params).fetchall())


def get_records(conn: sqlite3.Connection, job_id: str) -> list[AnomalyRecord]:
    """Get a job's anomaly records ordered by timestamp."""
    rows = conn.execute(
        "SELECT doc FROM records WHERE job_id = ? ORDER BY timestamp, id",
        (job_id,),
    ).fetchall()
    return _load_all(AnomalyRecord, rows)


def get_influencers(conn: sqlite3.Connection, job_id: str) -> list[Influencer]:
    """Get a job's influencers ordered by timestamp."""
    rows = conn.execute(
        "SELECT doc FROM influencers WHERE job_id = ? ORDER BY timestamp, id",
        (job_id,),
    ).fetchall()
    return _load_all(Influencer, rows)


def get_category_definitions(
    conn: sqlite3.Connection,
    job_id: str,
) -> list[CategoryDefinition]:
    """Get a job's category definitions ordered by id."""
    rows = conn.execute(
        "SELECT doc FROM category_definitions WHERE job_id = ? ORDER BY category_id",
        (job_id,),
    ).fetchall()
    return _load_all(CategoryDefinition, rows)


def get_model_snapshots(conn: sqlite3.Connection, job_id: str) -> list[ModelSnapshot]:
    """Get a job's model snapshots, newest first."""
    rows = conn.execute(
        "SELECT doc FROM model_snapshots WHERE job_id = ? ORDER BY timestamp DESC",
        (job_id,),
    ).fetchall()
    return _load_all(ModelSnapshot, rows)


def get_model_size_stats(conn: sqlite3.Connection, job_id: str) -> ModelSizeStats | None:
    """Get a job's latest model size stats."""
    row = conn.execute(
        "SELECT doc FROM model_size_stats WHERE job_id = ?",
        (job_id,),
    ).fetchone()
    if row is None:
        return None
    return ModelSizeStats.model_validate_json(row["doc"])


def get_quantiles(conn: sqlite3.Connection, job_id: str) -> Quantiles | None:
    """Get a job's latest quantiles."""
    row = conn.execute(
        "SELECT doc FROM quantiles WHERE job_id = ?",
        (job_id,),
    ).fetchone()
    if row is None:
        return None
    return Quantiles.model_validate_json(row["doc"])


def get_job_ids(conn: sqlite3.Connection) -> list[str]:
    """Get every job id with stored buckets."""
    rows = conn.execute("SELECT DISTINCT job_id FROM buckets ORDER BY job_id").fetchall()
    return [row["job_id"] for row in rows]
