"""
Persistence for the seller's product catalog.

Listings are refreshed from Mercado Libre by upsert on (user_id, item_id);
the unit cost is entered by the seller and survives every refresh.

Implementations:
- SQLiteProductStore: table products in the token database
- InMemoryProductStore: dict-backed, for tests and local runs
"""
import asyncio
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from core.config import config
from core.models import ProductRecord
from core.observability import get_logger

logger = get_logger(__name__)


class ProductStore(ABC):
    """Data-access interface for ProductRecord."""

    @abstractmethod
    async def list(self, user_id: str) -> List[ProductRecord]:
        """All products of user_id, ordered by title."""

    @abstractmethod
    async def upsert_many(
        self,
        user_id: str,
        records: Iterable[ProductRecord],
        updated_at: Optional[datetime] = None,
    ) -> int:
        """Insert or refresh listings, keeping stored costs. Returns the count written."""

    @abstractmethod
    async def update_cost(
        self,
        user_id: str,
        item_id: str,
        cost: Optional[float],
        updated_at: Optional[datetime] = None,
    ) -> Optional[ProductRecord]:
        """Set the unit cost; None if the product is unknown."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# SQLITE
# ═══════════════════════════════════════════════════════════════════════════════

def _row_to_record(row: sqlite3.Row) -> ProductRecord:
    updated_at = datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None
    if updated_at and updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return ProductRecord(
        user_id=row["user_id"],
        item_id=row["item_id"],
        title=row["title"],
        price=row["price"],
        available_quantity=row["available_quantity"],
        sold_quantity=row["sold_quantity"],
        thumbnail=row["thumbnail"],
        permalink=row["permalink"],
        cost=row["cost"],
        updated_at=updated_at,
    )


class SQLiteProductStore(ProductStore):
    """SQLite-backed product store (table products, unique on user_id + item_id)."""

    def __init__(self, db_path: Union[str, Path] = None):
        self.db_path = Path(db_path or config.store.db_path)
        self._initialized = False

    def get_connection(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self) -> None:
        conn = self.get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS products (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    price REAL NOT NULL DEFAULT 0,
                    available_quantity INTEGER NOT NULL DEFAULT 0,
                    sold_quantity INTEGER NOT NULL DEFAULT 0,
                    thumbnail TEXT,
                    permalink TEXT,
                    cost REAL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_id, item_id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_products_user ON products(user_id)")
            conn.commit()
        finally:
            conn.close()
        self._initialized = True
        logger.info(f"Product store initialized: {self.db_path}")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.init_database()

    # ─── Blocking implementations ─────────────────────────────────────────────

    def _list(self, user_id: str) -> List[ProductRecord]:
        self._ensure_initialized()
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM products WHERE user_id = ? ORDER BY title, item_id", (user_id,)
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_record(row) for row in rows]

    def _upsert_many(self, user_id: str, records: List[ProductRecord], updated_at: datetime) -> int:
        self._ensure_initialized()
        rows: List[Tuple] = [
            (
                user_id,
                record.item_id,
                record.title,
                record.price,
                record.available_quantity,
                record.sold_quantity,
                record.thumbnail,
                record.permalink,
                updated_at.isoformat(),
            )
            for record in records
        ]
        if not rows:
            return 0

        conn = self.get_connection()
        try:
            # cost is absent from the update list so a refresh never clears it
            conn.executemany(
                """
                INSERT INTO products
                    (user_id, item_id, title, price, available_quantity,
                     sold_quantity, thumbnail, permalink, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, item_id) DO UPDATE SET
                    title = excluded.title,
                    price = excluded.price,
                    available_quantity = excluded.available_quantity,
                    sold_quantity = excluded.sold_quantity,
                    thumbnail = excluded.thumbnail,
                    permalink = excluded.permalink,
                    updated_at = excluded.updated_at
                """,
                rows,
            )
            conn.commit()
        finally:
            conn.close()
        return len(rows)

    def _update_cost(
        self, user_id: str, item_id: str, cost: Optional[float], updated_at: datetime
    ) -> Optional[ProductRecord]:
        self._ensure_initialized()
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                "UPDATE products SET cost = ?, updated_at = ? WHERE user_id = ? AND item_id = ?",
                (cost, updated_at.isoformat(), user_id, item_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM products WHERE user_id = ? AND item_id = ?", (user_id, item_id)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_record(row)

    # ─── Async interface ──────────────────────────────────────────────────────

    async def list(self, user_id: str) -> List[ProductRecord]:
        return await asyncio.to_thread(self._list, user_id)

    async def upsert_many(
        self,
        user_id: str,
        records: Iterable[ProductRecord],
        updated_at: Optional[datetime] = None,
    ) -> int:
        return await asyncio.to_thread(
            self._upsert_many, user_id, list(records), updated_at or _utcnow()
        )

    async def update_cost(
        self,
        user_id: str,
        item_id: str,
        cost: Optional[float],
        updated_at: Optional[datetime] = None,
    ) -> Optional[ProductRecord]:
        return await asyncio.to_thread(
            self._update_cost, user_id, item_id, cost, updated_at or _utcnow()
        )


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryProductStore(ProductStore):
    """Dict-backed product store keyed by (user_id, item_id)."""

    def __init__(self):
        self._records: Dict[Tuple[str, str], ProductRecord] = {}

    async def list(self, user_id: str) -> List[ProductRecord]:
        records = [r for (owner, _), r in self._records.items() if owner == user_id]
        return sorted(records, key=lambda r: (r.title, r.item_id))

    async def upsert_many(
        self,
        user_id: str,
        records: Iterable[ProductRecord],
        updated_at: Optional[datetime] = None,
    ) -> int:
        now = updated_at or _utcnow()
        count = 0
        for record in records:
            key = (user_id, record.item_id)
            existing = self._records.get(key)
            self._records[key] = replace(
                record,
                user_id=user_id,
                cost=existing.cost if existing else None,
                updated_at=now,
            )
            count += 1
        return count

    async def update_cost(
        self,
        user_id: str,
        item_id: str,
        cost: Optional[float],
        updated_at: Optional[datetime] = None,
    ) -> Optional[ProductRecord]:
        key = (user_id, item_id)
        existing = self._records.get(key)
        if existing is None:
            return None
        updated = replace(existing, cost=cost, updated_at=updated_at or _utcnow())
        self._records[key] = updated
        return updated
