"""Line Matcher Database Operations.

SQLite reference implementation of the alias store boundary:
- Schema initialization
- Inventory item registration (the minimum the alias join needs)
- Store alias upsert and lookup
- Catalog loading for the in-memory fuzzy matcher

The receipt_item_alias table holds one row per
(business_id, google_place_id, alias_text); upserts only ever overwrite the
item and confidence of an existing key.
"""

import asyncio
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from core.observability.logging import get_logger
from line_matcher.models import (
    AliasKey,
    AliasUpsert,
    CatalogItem,
    ItemAlias,
    MatchCandidate,
    MatchConfidence,
    MatchSource,
)


logger = get_logger(__name__)

DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "line_matcher.db"


@contextmanager
def _connect(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_line_matcher_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize line matcher tables.

    Creates:
    - inventory_item: Items aliases may point at
    - receipt_item_alias: Store-scoped text/code aliases

    Args:
        db_path: Path to SQLite database file
    """
    with _connect(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS inventory_item (
                id TEXT PRIMARY KEY,
                business_id TEXT NOT NULL,
                name TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS receipt_item_alias (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                business_id TEXT NOT NULL,
                google_place_id TEXT NOT NULL,
                alias_text TEXT NOT NULL,
                inventory_item_id TEXT NOT NULL REFERENCES inventory_item(id),
                confidence TEXT NOT NULL DEFAULT 'high',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(business_id, google_place_id, alias_text)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_receipt_item_alias_item
            ON receipt_item_alias(inventory_item_id)
        """)

    logger.info("Line matcher tables initialized", extra_fields={"db_path": str(db_path)})


# =============================================================================
# Inventory Items
# =============================================================================

def add_inventory_item(
    item_id: str,
    business_id: str,
    name: str,
    is_active: bool = True,
    db_path: Path = DEFAULT_DB_PATH,
) -> None:
    """Insert or replace an inventory item."""
    with _connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO inventory_item (id, business_id, name, is_active)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                business_id = excluded.business_id,
                name = excluded.name,
                is_active = excluded.is_active
            """,
            (item_id, business_id, name, 1 if is_active else 0),
        )


def load_catalog(business_id: str, db_path: Path = DEFAULT_DB_PATH) -> List[CatalogItem]:
    """Load a business's active items for CatalogTextMatcher."""
    with _connect(db_path) as conn:
        rows = conn.execute(
            "SELECT id, name FROM inventory_item WHERE business_id = ? AND is_active = 1 ORDER BY name",
            (business_id,),
        ).fetchall()
    return [CatalogItem(id=row["id"], name=row["name"]) for row in rows]


# =============================================================================
# Aliases
# =============================================================================

def _row_to_alias(row: sqlite3.Row) -> ItemAlias:
    return ItemAlias(
        id=row["id"],
        business_id=row["business_id"],
        google_place_id=row["google_place_id"],
        alias_text=row["alias_text"],
        inventory_item_id=row["inventory_item_id"],
        confidence=MatchConfidence(row["confidence"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def get_item_alias(key: AliasKey, db_path: Path = DEFAULT_DB_PATH) -> Optional[ItemAlias]:
    """Fetch an alias row by its composite key (no item filtering)."""
    with _connect(db_path) as conn:
        row = conn.execute(
            """
            SELECT * FROM receipt_item_alias
            WHERE business_id = ? AND google_place_id = ? AND alias_text = ?
            """,
            (key.business_id, key.google_place_id, key.alias_text),
        ).fetchone()
    return _row_to_alias(row) if row else None


def upsert_item_alias(upsert: AliasUpsert, db_path: Path = DEFAULT_DB_PATH) -> ItemAlias:
    """Create an alias or overwrite item/confidence on key conflict.

    Args:
        upsert: Arguments from build_alias_upsert_args
        db_path: Path to database

    Returns:
        The alias row as stored
    """
    now = _now()
    create = upsert.create
    with _connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO receipt_item_alias
                (business_id, google_place_id, alias_text, inventory_item_id,
                 confidence, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(business_id, google_place_id, alias_text) DO UPDATE SET
                inventory_item_id = ?,
                confidence = ?,
                updated_at = ?
            """,
            (
                create.business_id,
                create.google_place_id,
                create.alias_text,
                create.inventory_item_id,
                create.confidence.value,
                now,
                now,
                upsert.update.inventory_item_id,
                upsert.update.confidence.value,
                now,
            ),
        )

    stored = get_item_alias(upsert.where, db_path=db_path)
    if stored is None:
        raise RuntimeError(f"Alias upsert did not persist: {upsert.where}")
    return stored


def find_alias_candidate(key: AliasKey, db_path: Path = DEFAULT_DB_PATH) -> Optional[MatchCandidate]:
    """Look up an alias whose item is active and owned by the same business.

    A confirmed alias is the strongest text signal, so hits are returned
    as score 1.0 / high regardless of the confidence recorded at learn time.
    """
    with _connect(db_path) as conn:
        row = conn.execute(
            """
            SELECT a.inventory_item_id, i.name
            FROM receipt_item_alias a
            JOIN inventory_item i ON i.id = a.inventory_item_id
            WHERE a.business_id = ?
              AND a.google_place_id = ?
              AND a.alias_text = ?
              AND i.business_id = a.business_id
              AND i.is_active = 1
            """,
            (key.business_id, key.google_place_id, key.alias_text),
        ).fetchone()

    if row is None:
        return None

    return MatchCandidate(
        inventory_item_id=row["inventory_item_id"],
        item_name=row["name"],
        score=1.0,
        confidence=MatchConfidence.HIGH,
        match_source=MatchSource.RECEIPT_PLACE_ALIAS,
    )


def get_aliases_for_place(
    business_id: str,
    google_place_id: str,
    db_path: Path = DEFAULT_DB_PATH,
) -> List[ItemAlias]:
    """All aliases learned at one store, ordered by text."""
    with _connect(db_path) as conn:
        rows = conn.execute(
            """
            SELECT * FROM receipt_item_alias
            WHERE business_id = ? AND google_place_id = ?
            ORDER BY alias_text
            """,
            (business_id, google_place_id),
        ).fetchall()
    return [_row_to_alias(row) for row in rows]


class SQLiteAliasStore:
    """AliasStore backed by the functions above.

    Each call opens its own connection and runs in a worker thread, so a
    locked database never stalls the event loop and the resolver's lookup
    timeout applies.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH, initialize: bool = True):
        self.db_path = Path(db_path)
        if initialize:
            init_line_matcher_db(self.db_path)

    async def find_alias(self, key: AliasKey) -> Optional[MatchCandidate]:
        return await asyncio.to_thread(find_alias_candidate, key, self.db_path)

    async def upsert_alias(self, upsert: AliasUpsert) -> ItemAlias:
        return await asyncio.to_thread(upsert_item_alias, upsert, self.db_path)
