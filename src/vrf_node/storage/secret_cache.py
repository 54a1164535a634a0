"""Secret cache — operator seeds held between commit and reveal.

The operator stores ``commit_id → operator_seed`` when it signs a commit
request, with a ttl equal to the signature's expiration window. The
relayer reads it back when the commitment shows up on the ledger. A
missing entry means the seed is gone and the commitment can never be
revealed.

Two backends:
  MemorySecretCache:  dict with per-entry expiry (tests, single process)
  SqliteSecretCache:  SQLite file shared by the commit API and the relayer

Schema (SQLite):
  secrets:   key, value, expires_at (unix seconds)
  metadata:  schema version
"""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class SecretCache(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl: float) -> None: ...


class MemorySecretCache:
    """In-memory cache with expiry checked on read."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: str, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._entries[key] = (value, self._clock() + ttl)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class SqliteSecretCache:
    """SQLite-backed secret cache.

    Safe to share between the commit API and the relayer in one process.
    WAL mode lets a second process read while one writes.
    """

    def __init__(self, db_path: str | Path, clock: Callable[[], float] = time.time) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._conn: sqlite3.Connection | None = None

    def open(self) -> None:
        """Open the database and create tables if needed."""
        self._conn = sqlite3.connect(
            str(self._db_path),
            isolation_level=None,  # Autocommit by default
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        logger.info("Secret cache opened: %s", self._db_path)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _create_tables(self) -> None:
        assert self._conn is not None
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS secrets (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_secrets_expiry ON secrets(expires_at);
        """)
        self._conn.execute(
            "INSERT OR IGNORE INTO metadata (key, value) VALUES (?, ?)",
            ("schema_version", str(SCHEMA_VERSION)),
        )

    @property
    def schema_version(self) -> int:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT value FROM metadata WHERE key = 'schema_version'"
        ).fetchone()
        return int(row["value"]) if row else 0

    def get(self, key: str) -> str | None:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT value, expires_at FROM secrets WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        if self._clock() >= row["expires_at"]:
            self._conn.execute("DELETE FROM secrets WHERE key = ?", (key,))
            return None
        return row["value"]

    def set(self, key: str, value: str, ttl: float) -> None:
        assert self._conn is not None
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._conn.execute(
            "INSERT OR REPLACE INTO secrets (key, value, expires_at) VALUES (?, ?, ?)",
            (key, value, self._clock() + ttl),
        )

    def purge_expired(self) -> int:
        """Delete expired entries. Returns count removed."""
        assert self._conn is not None
        cur = self._conn.execute("DELETE FROM secrets WHERE expires_at <= ?", (self._clock(),))
        removed = cur.rowcount
        if removed:
            logger.debug("Purged %d expired secrets", removed)
        return removed

    def count(self) -> int:
        assert self._conn is not None
        row = self._conn.execute("SELECT COUNT(*) AS n FROM secrets").fetchone()
        return row["n"]
