"""
SQLite metadata store.
Holds artifact records, quota pool usage counters and daily usage counters.
"""

import sqlite3
import logging
from contextlib import contextmanager, closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from shared.constants import DEFAULT_DATA_DIR, DEFAULT_DATABASE_FILENAME
from shared.models import ArtifactRecord, PoolEntry, utc_now_iso

logger = logging.getLogger(__name__)


class DatabaseManager:
    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            db_dir = Path(DEFAULT_DATA_DIR).expanduser()
            db_dir.mkdir(parents=True, exist_ok=True)
            self.db_path = db_dir / DEFAULT_DATABASE_FILENAME
        else:
            self.db_path = Path(db_path).expanduser()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        # Autocommit mode; writes open their own BEGIN IMMEDIATE transaction.
        conn = sqlite3.connect(self.db_path, timeout=20, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding SQLite's write lock from the first statement."""
        with closing(self._get_connection()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _init_db(self):
        """Initialize the database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS artifacts (
                    external_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    artist TEXT NOT NULL,
                    album TEXT,
                    duration INTEGER,
                    cover_url TEXT,
                    storage_key TEXT NOT NULL,
                    storage_url TEXT NOT NULL,
                    source TEXT NOT NULL,
                    size_bytes INTEGER,
                    content_type TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS pool_usage (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    api_key_hash TEXT NOT NULL,
                    host TEXT NOT NULL,
                    endpoint TEXT NOT NULL,
                    method TEXT NOT NULL,
                    requests_used INTEGER NOT NULL DEFAULT 0,
                    max_requests INTEGER,
                    is_unlimited BOOLEAN NOT NULL DEFAULT 0,
                    is_active BOOLEAN NOT NULL DEFAULT 1,
                    key_index INTEGER NOT NULL,
                    endpoint_index INTEGER NOT NULL,
                    failure_count INTEGER NOT NULL DEFAULT 0,
                    last_status TEXT,
                    last_used_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (api_key_hash, host)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS daily_usage (
                    api_name TEXT NOT NULL,
                    date TEXT NOT NULL,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (api_name, date)
                )
            """)

    # --- Artifacts ---

    def get_artifact(self, external_id: str) -> Optional[ArtifactRecord]:
        with closing(self._get_connection()) as conn:
            row = conn.execute(
                "SELECT * FROM artifacts WHERE external_id = ?", (external_id,)
            ).fetchone()
            return ArtifactRecord.from_dict(dict(row)) if row else None

    def insert_artifact(self, record: ArtifactRecord) -> Tuple[ArtifactRecord, bool]:
        """
        Insert a record unless one already exists for the external id.

        Returns:
            (stored record, created) where created is False when an earlier
            writer won and its row is returned instead
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO artifacts (
                    external_id, title, artist, album, duration, cover_url,
                    storage_key, storage_url, source, size_bytes, content_type, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_id) DO NOTHING
            """, (
                record.external_id, record.title, record.artist, record.album,
                record.duration, record.cover_url, record.storage_key,
                record.storage_url, record.source, record.size_bytes,
                record.content_type, record.created_at,
            ))
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM artifacts WHERE external_id = ?", (record.external_id,)
            ).fetchone()
        return ArtifactRecord.from_dict(dict(row)), created

    def delete_artifact(self, external_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM artifacts WHERE external_id = ?", (external_id,))
            return cursor.rowcount > 0

    def count_artifacts(self) -> int:
        with closing(self._get_connection()) as conn:
            return conn.execute("SELECT COUNT(*) FROM artifacts").fetchone()[0]

    # --- Pool usage ---

    def ensure_pool_rows(self, entries: List[PoolEntry]) -> None:
        """
        Create missing usage rows; configuration stays authoritative for caps and routing.

        `is_active` is re-derived from the stored count against the current cap,
        so raising a cap (or lifting it) reactivates an exhausted row.
        """
        now = utc_now_iso()
        with self._transaction() as conn:
            for entry in entries:
                conn.execute("""
                    INSERT INTO pool_usage (
                        api_key_hash, host, endpoint, method, requests_used,
                        max_requests, is_unlimited, is_active, key_index,
                        endpoint_index, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, 0, ?, ?, 1, ?, ?, ?, ?)
                    ON CONFLICT(api_key_hash, host) DO UPDATE SET
                        endpoint=excluded.endpoint,
                        method=excluded.method,
                        max_requests=excluded.max_requests,
                        is_unlimited=excluded.is_unlimited,
                        is_active=CASE
                            WHEN excluded.is_unlimited = 1
                              OR pool_usage.requests_used < excluded.max_requests THEN 1
                            ELSE 0 END,
                        key_index=excluded.key_index,
                        endpoint_index=excluded.endpoint_index
                """, (
                    entry.key_hash, entry.host, entry.endpoint, entry.method,
                    entry.max_requests, entry.is_unlimited, entry.key_index,
                    entry.endpoint_index, now, now,
                ))

    def load_pool_usage(self) -> Dict[Tuple[str, str], Dict[str, Any]]:
        """All usage rows keyed by (api_key_hash, host)."""
        with closing(self._get_connection()) as conn:
            rows = conn.execute("SELECT * FROM pool_usage").fetchall()
            return {(row["api_key_hash"], row["host"]): dict(row) for row in rows}

    def increment_pool_usage(self, key_hash: str, host: str) -> Tuple[bool, int, bool]:
        """
        Atomically count one successful request, never past the cap.

        Returns:
            (applied, requests_used, is_active) as stored after the update
        """
        now = utc_now_iso()
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE pool_usage SET
                    requests_used = requests_used + 1,
                    is_active = CASE
                        WHEN is_unlimited = 0 AND requests_used + 1 >= max_requests THEN 0
                        ELSE is_active END,
                    last_status = 'ok',
                    last_used_at = ?,
                    updated_at = ?
                WHERE api_key_hash = ? AND host = ?
                  AND (is_unlimited = 1 OR requests_used < max_requests)
            """, (now, now, key_hash, host))
            applied = cursor.rowcount == 1
            if not applied:
                conn.execute("""
                    UPDATE pool_usage SET is_active = 0, last_used_at = ?, updated_at = ?
                    WHERE api_key_hash = ? AND host = ?
                """, (now, now, key_hash, host))
            row = conn.execute(
                "SELECT requests_used, is_active FROM pool_usage WHERE api_key_hash = ? AND host = ?",
                (key_hash, host),
            ).fetchone()
        if row is None:
            return False, 0, False
        return applied, row["requests_used"], bool(row["is_active"])

    def record_pool_failure(self, key_hash: str, host: str) -> None:
        now = utc_now_iso()
        with self._transaction() as conn:
            conn.execute("""
                UPDATE pool_usage SET
                    failure_count = failure_count + 1,
                    last_status = 'error',
                    last_used_at = ?,
                    updated_at = ?
                WHERE api_key_hash = ? AND host = ?
            """, (now, now, key_hash, host))

    def reset_pool_usage(self, host: Optional[str] = None) -> int:
        """Zero counters and reactivate rows (all, or one host). Returns rows touched."""
        now = utc_now_iso()
        with self._transaction() as conn:
            if host:
                cursor = conn.execute("""
                    UPDATE pool_usage SET requests_used = 0, is_active = 1, updated_at = ?
                    WHERE host = ?
                """, (now, host))
            else:
                cursor = conn.execute(
                    "UPDATE pool_usage SET requests_used = 0, is_active = 1, updated_at = ?", (now,)
                )
            return cursor.rowcount

    # --- Daily usage ---

    @staticmethod
    def today() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d")

    def try_increment_daily_usage(self, api_name: str, daily_limit: int,
                                  date: Optional[str] = None) -> Tuple[bool, int]:
        """
        Consume one unit of a daily budget if any is left.

        Returns:
            (allowed, usage_count after the call)
        """
        date = date or self.today()
        now = utc_now_iso()
        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO daily_usage (api_name, date, usage_count, updated_at)
                VALUES (?, ?, 0, ?)
                ON CONFLICT(api_name, date) DO NOTHING
            """, (api_name, date, now))
            cursor = conn.execute("""
                UPDATE daily_usage SET usage_count = usage_count + 1, updated_at = ?
                WHERE api_name = ? AND date = ? AND usage_count < ?
            """, (now, api_name, date, daily_limit))
            allowed = cursor.rowcount == 1
            row = conn.execute(
                "SELECT usage_count FROM daily_usage WHERE api_name = ? AND date = ?",
                (api_name, date),
            ).fetchone()
        return allowed, row["usage_count"]

    def get_daily_usage(self, api_name: str, date: Optional[str] = None) -> int:
        date = date or self.today()
        with closing(self._get_connection()) as conn:
            row = conn.execute(
                "SELECT usage_count FROM daily_usage WHERE api_name = ? AND date = ?",
                (api_name, date),
            ).fetchone()
            return row["usage_count"] if row else 0
