"""Durable key/value storage backed by SQLite.

Plays the role of the browser's local storage: string values under string
keys, written synchronously, with an optional total-size quota. Failures
surface as StorageError so callers can degrade at their own boundary.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class LocalStorage:
    """String key/value store in a single SQLite database."""

    def __init__(self, db_path: Path, quota_bytes: int | None = None):
        """Initialize storage.

        Args:
            db_path: Path to storyforge.db
            quota_bytes: Maximum total size of all values, or None for no limit
        """
        self.db_path = db_path
        self.quota_bytes = quota_bytes
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(str(self.db_path), timeout=30.0)
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._conn.execute("PRAGMA busy_timeout=30000")
            except sqlite3.Error as e:
                self._conn = None
                raise StorageError(f"Cannot open {self.db_path}: {e}") from e
        return self._conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_conn()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    created_at TEXT DEFAULT (datetime('now'))
                )
            """)
            version = conn.execute("SELECT version FROM schema_version").fetchone()
            if version is None:
                conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
            elif version[0] > SCHEMA_VERSION:
                logger.warning(
                    f"Storage schema version {version[0]} is newer than {SCHEMA_VERSION}"
                )

            conn.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT (datetime('now'))
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot initialize {self.db_path}: {e}") from e

    def get_item(self, key: str) -> str | None:
        """Read a value; None when the key is absent."""
        try:
            row = self._get_conn().execute(
                "SELECT value FROM items WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read '{key}': {e}") from e
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        """Write a value, committing immediately.

        Raises:
            StorageError: If the quota would be exceeded or SQLite fails
        """
        if self.quota_bytes is not None:
            projected = self.size_bytes(exclude=key) + len(value.encode("utf-8"))
            if projected > self.quota_bytes:
                raise StorageError(
                    f"Quota exceeded writing '{key}' "
                    f"({projected} > {self.quota_bytes} bytes)"
                )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO items (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot write '{key}': {e}") from e

    def remove_item(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM items WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot remove '{key}': {e}") from e

    def keys(self) -> list[str]:
        try:
            rows = self._get_conn().execute("SELECT key FROM items ORDER BY key")
            return [row[0] for row in rows]
        except sqlite3.Error as e:
            raise StorageError(f"Cannot list keys: {e}") from e

    def size_bytes(self, exclude: str | None = None) -> int:
        """Total size of stored values, optionally ignoring one key."""
        try:
            row = self._get_conn().execute(
                "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) FROM items "
                "WHERE key IS NOT ?",
                (exclude,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot measure storage: {e}") from e
        return int(row[0])

    def close(self) -> None:
        """Close database connection.

        Forces a WAL checkpoint before closing to ensure all changes
        are written to the main database file.
        """
        if self._conn is not None:
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            self._conn.close()
            self._conn = None
