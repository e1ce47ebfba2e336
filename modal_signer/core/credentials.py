"""Credential records and the store the pipeline reads them from.

User records and API key pairs are written during onboarding by the login
front-end. The pipeline only ever reads them: one user record and the most
recent key pair per organization.
"""

from __future__ import annotations

import asyncio
import re
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

log = structlog.get_logger()

_ETH_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class UserRecord:
    """Custody organization and the on-chain address its wallet signs with."""

    org_id: str
    address: str


@dataclass(frozen=True)
class ApiKeyPair:
    """P-256 API key used to stamp custody requests (hex encoded)."""

    public_key: str
    private_key: str

    def __repr__(self) -> str:
        return f"ApiKeyPair(public_key={self.public_key!r}, private_key=<redacted>)"


class CredentialStore(Protocol):
    async def get_user(self, org_id: str) -> UserRecord | None: ...

    async def get_latest_api_key(self, org_id: str) -> ApiKeyPair | None: ...


class SqliteCredentialStore:
    """SQLite-backed credential store.

    Falls back to in-memory SQLite when no db_path is provided (useful for tests).
    Reads run in a worker thread so the event loop is never blocked.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._lock = threading.Lock()
        if db_path is not None:
            path = Path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
        else:
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                org_id      TEXT PRIMARY KEY,
                address     TEXT NOT NULL,
                created_at  REAL NOT NULL
            );
            CREATE TABLE IF NOT EXISTS api_keys (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                org_id      TEXT NOT NULL,
                public_key  TEXT NOT NULL,
                private_key TEXT NOT NULL,
                created_at  REAL NOT NULL,
                deleted     INTEGER NOT NULL DEFAULT 0
            );
            CREATE INDEX IF NOT EXISTS idx_api_keys_org_id ON api_keys(org_id);
        """)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Onboarding writes
    # ------------------------------------------------------------------

    def upsert_user(self, org_id: str, address: str) -> UserRecord:
        """Insert or replace the user record for an organization."""
        if not org_id:
            raise ValueError("org_id must be non-empty")
        if not _ETH_ADDRESS_RE.match(address):
            raise ValueError(f"address must be 0x + 40 hex chars, got {address!r}")
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO users (org_id, address, created_at) VALUES (?, ?, ?)",
                (org_id, address, time.time()),
            )
            self._conn.commit()
        log.info("user_upserted", org_id=org_id, address=address)
        return UserRecord(org_id=org_id, address=address)

    def add_api_key(self, org_id: str, public_key: str, private_key: str) -> ApiKeyPair:
        """Append a key pair; the newest non-deleted key wins on lookup."""
        with self._lock:
            self._conn.execute(
                "INSERT INTO api_keys (org_id, public_key, private_key, created_at) VALUES (?, ?, ?, ?)",
                (org_id, public_key, private_key, time.time()),
            )
            self._conn.commit()
        log.info("api_key_added", org_id=org_id, public_key=public_key)
        return ApiKeyPair(public_key=public_key, private_key=private_key)

    # ------------------------------------------------------------------
    # Pipeline reads
    # ------------------------------------------------------------------

    def _fetch_user(self, org_id: str) -> UserRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT org_id, address FROM users WHERE org_id = ?",
                (org_id,),
            ).fetchone()
        if row is None:
            return None
        return UserRecord(org_id=row[0], address=row[1])

    def _fetch_latest_api_key(self, org_id: str) -> ApiKeyPair | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT public_key, private_key FROM api_keys "
                "WHERE org_id = ? AND deleted = 0 ORDER BY created_at DESC, id DESC LIMIT 1",
                (org_id,),
            ).fetchone()
        if row is None:
            return None
        return ApiKeyPair(public_key=row[0], private_key=row[1])

    async def get_user(self, org_id: str) -> UserRecord | None:
        return await asyncio.to_thread(self._fetch_user, org_id)

    async def get_latest_api_key(self, org_id: str) -> ApiKeyPair | None:
        return await asyncio.to_thread(self._fetch_latest_api_key, org_id)

    def close(self) -> None:
        """Close the database connection."""
        try:
            self._conn.close()
        except sqlite3.Error as e:
            log.warning("credential_store_close_error", error=str(e))
