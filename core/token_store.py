"""
Persistence for per-user OAuth credentials.

The store is the only durable shared resource. Records are written by
upsert (connect) and update-by-user_id (refresh) with no version column,
so a concurrent connect and refresh for the same user can overwrite each
other; the last write wins.

Implementations:
- SQLiteTokenStore: stdlib sqlite3, one short-lived connection per call,
  blocking work moved off the event loop with asyncio.to_thread
- InMemoryTokenStore: dict-backed, for tests and local runs
"""
import asyncio
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

from core.config import config
from core.models import TokenRecord
from core.observability import get_logger

logger = get_logger(__name__)


class TokenStore(ABC):
    """Data-access interface for TokenRecord."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[TokenRecord]:
        """Return the record for user_id, or None."""

    @abstractmethod
    async def upsert(self, record: TokenRecord) -> TokenRecord:
        """Insert or replace the record for record.user_id."""

    @abstractmethod
    async def update_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        updated_at: Optional[datetime] = None,
    ) -> Optional[TokenRecord]:
        """Replace the mutable token fields; None if there is no record."""

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        """Delete the record; True if one existed."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# SQLITE
# ═══════════════════════════════════════════════════════════════════════════════

def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_record(row: sqlite3.Row) -> TokenRecord:
    return TokenRecord(
        user_id=row["user_id"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        meli_user_id=row["meli_user_id"],
        expires_at=_from_text(row["expires_at"]),
        created_at=_from_text(row["created_at"]),
        updated_at=_from_text(row["updated_at"]),
    )


class SQLiteTokenStore(TokenStore):
    """SQLite-backed token store (table meli_tokens, unique on user_id)."""

    def __init__(self, db_path: Union[str, Path] = None):
        self.db_path = Path(db_path or config.store.db_path)
        self._initialized = False

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        # Ensure data directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self) -> None:
        """Initialize database tables."""
        conn = self.get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS meli_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL UNIQUE,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT NOT NULL,
                    meli_user_id TEXT,
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()
        self._initialized = True
        logger.info(f"Token store initialized: {self.db_path}")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.init_database()

    # ─── Blocking implementations ─────────────────────────────────────────────

    def _get(self, user_id: str) -> Optional[TokenRecord]:
        self._ensure_initialized()
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM meli_tokens WHERE user_id = ?", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_record(row) if row else None

    def _upsert(self, record: TokenRecord) -> TokenRecord:
        self._ensure_initialized()
        now = _utcnow()
        conn = self.get_connection()
        try:
            conn.execute(
                """
                INSERT INTO meli_tokens
                    (user_id, access_token, refresh_token, meli_user_id,
                     expires_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    meli_user_id = excluded.meli_user_id,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    record.user_id,
                    record.access_token,
                    record.refresh_token,
                    record.meli_user_id,
                    _to_text(record.expires_at),
                    _to_text(record.created_at or now),
                    _to_text(record.updated_at or now),
                ),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM meli_tokens WHERE user_id = ?", (record.user_id,)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_record(row)

    def _update_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        updated_at: Optional[datetime] = None,
    ) -> Optional[TokenRecord]:
        self._ensure_initialized()
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE meli_tokens
                SET access_token = ?, refresh_token = ?, expires_at = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (access_token, refresh_token, _to_text(expires_at), _to_text(updated_at or _utcnow()), user_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM meli_tokens WHERE user_id = ?", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_record(row)

    def _delete(self, user_id: str) -> bool:
        self._ensure_initialized()
        conn = self.get_connection()
        try:
            cursor = conn.execute("DELETE FROM meli_tokens WHERE user_id = ?", (user_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # ─── Async interface ──────────────────────────────────────────────────────

    async def get(self, user_id: str) -> Optional[TokenRecord]:
        return await asyncio.to_thread(self._get, user_id)

    async def upsert(self, record: TokenRecord) -> TokenRecord:
        return await asyncio.to_thread(self._upsert, record)

    async def update_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        updated_at: Optional[datetime] = None,
    ) -> Optional[TokenRecord]:
        return await asyncio.to_thread(
            self._update_tokens, user_id, access_token, refresh_token, expires_at, updated_at
        )

    async def delete(self, user_id: str) -> bool:
        return await asyncio.to_thread(self._delete, user_id)


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryTokenStore(TokenStore):
    """Dict-backed token store."""

    def __init__(self):
        self._records: Dict[str, TokenRecord] = {}

    async def get(self, user_id: str) -> Optional[TokenRecord]:
        return self._records.get(user_id)

    async def upsert(self, record: TokenRecord) -> TokenRecord:
        now = _utcnow()
        existing = self._records.get(record.user_id)
        stored = replace(
            record,
            created_at=existing.created_at if existing else (record.created_at or now),
            updated_at=record.updated_at or now,
        )
        self._records[record.user_id] = stored
        return stored

    async def update_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        updated_at: Optional[datetime] = None,
    ) -> Optional[TokenRecord]:
        existing = self._records.get(user_id)
        if existing is None:
            return None
        updated = replace(
            existing,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            updated_at=updated_at or _utcnow(),
        )
        self._records[user_id] = updated
        return updated

    async def delete(self, user_id: str) -> bool:
        return self._records.pop(user_id, None) is not None
