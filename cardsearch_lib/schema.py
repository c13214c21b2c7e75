"""
Schema - SQLite tables and FTS5 indexes for card and document search.

Creates:
- cards / card_contents: base card rows and their 1:1 content sub-records
- card_derived_text (+ card_derived_text_fts): segmented text per card
- card_fts: per-column card index used for ranked, highlighted search
- document_page_content (+ fts): extracted document pages
- file_index (+ fts): files discovered by the filesystem indexer
- fts_meta: schema version of every FTS table

External-content FTS tables are kept in sync by triggers. card_fts is
written by the derived-text writer because its columns are computed in
Python.

A version bump in FTS_TABLES drops and recreates that FTS table, then
backfills it from its base table.
"""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

FTS_TOKENIZE = "tokenize='porter unicode61'"
FTS_PREFIX = "prefix='2 3 4'"

# Column order of card_fts. snippet() ordinals come from this tuple.
CARD_FTS_COLUMNS = (
    'name',
    'text',
    'description',
    'mark_text',
    'card_type',
    'mind_map_content',
    'drawboard_content',
    'file_content',
    'rich_text',
)
CARD_FTS_UNINDEXED = {'card_type'}

# Columns returned as highlight snippets
HIGHLIGHT_COLUMNS = (
    'name',
    'text',
    'description',
    'mind_map_content',
    'file_content',
    'drawboard_content',
    'rich_text',
)


def column_ordinal(column: str) -> int:
    """Position of a card_fts column, as snippet() expects it."""
    return CARD_FTS_COLUMNS.index(column)


@dataclass
class FtsTable:
    """An FTS5 table, its sync triggers and how to refill it."""
    name: str
    version: int
    base_table: Optional[str]
    create_sql: str
    triggers: list[str] = field(default_factory=list)
    trigger_names: list[str] = field(default_factory=list)

    @property
    def external_content(self) -> bool:
        return self.base_table is not None


def _card_fts_sql() -> str:
    columns = ', '.join(
        f"{column} UNINDEXED" if column in CARD_FTS_UNINDEXED else column
        for column in CARD_FTS_COLUMNS
    )
    return f"CREATE VIRTUAL TABLE card_fts USING fts5({columns}, {FTS_TOKENIZE}, {FTS_PREFIX})"


def _sync_triggers(table: str, fts: str, rowid: str, columns: list[str]) -> tuple[list[str], list[str]]:
    """Insert/delete/update triggers keeping an external-content FTS table in sync."""
    column_list = ', '.join(columns)
    new_values = ', '.join(f"COALESCE(NEW.{c}, '')" for c in columns)
    old_values = ', '.join(f"COALESCE(OLD.{c}, '')" for c in columns)
    names = [f"{table}_ai", f"{table}_ad", f"{table}_au"]
    triggers = [
        f"""
        CREATE TRIGGER IF NOT EXISTS {table}_ai AFTER INSERT ON {table} BEGIN
            INSERT INTO {fts}(rowid, {column_list})
            VALUES (NEW.{rowid}, {new_values});
        END
        """,
        f"""
        CREATE TRIGGER IF NOT EXISTS {table}_ad AFTER DELETE ON {table} BEGIN
            INSERT INTO {fts}({fts}, rowid, {column_list})
            VALUES ('delete', OLD.{rowid}, {old_values});
        END
        """,
        f"""
        CREATE TRIGGER IF NOT EXISTS {table}_au AFTER UPDATE ON {table} BEGIN
            INSERT INTO {fts}({fts}, rowid, {column_list})
            VALUES ('delete', OLD.{rowid}, {old_values});
            INSERT INTO {fts}(rowid, {column_list})
            VALUES (NEW.{rowid}, {new_values});
        END
        """,
    ]
    return triggers, names


def _external_fts(name: str, version: int, table: str, rowid: str, columns: list[str]) -> FtsTable:
    triggers, trigger_names = _sync_triggers(table, name, rowid, columns)
    return FtsTable(
        name=name,
        version=version,
        base_table=table,
        create_sql=(
            f"CREATE VIRTUAL TABLE {name} USING fts5({', '.join(columns)}, "
            f"content='{table}', content_rowid='{rowid}', {FTS_TOKENIZE}, {FTS_PREFIX})"
        ),
        triggers=triggers,
        trigger_names=trigger_names,
    )


FTS_TABLES = [
    _external_fts('card_derived_text_fts', 2, 'card_derived_text', 'row_id', ['name', 'text']),
    FtsTable(name='card_fts', version=2, base_table=None, create_sql=_card_fts_sql()),
    _external_fts(
        'document_page_content_fts', 1, 'document_page_content', 'id',
        ['file_name', 'content_segmented'],
    ),
    _external_fts('file_index_fts', 1, 'file_index', 'id', ['file_name_segmented', 'file_path']),
]

BASE_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS cards (
        row_id INTEGER PRIMARY KEY AUTOINCREMENT,
        card_id TEXT UNIQUE NOT NULL,
        card_type TEXT NOT NULL DEFAULT 'card',
        sub_type TEXT,
        name TEXT,
        text TEXT,
        description TEXT,
        mark_text TEXT,
        space_id TEXT,
        del_flag INTEGER NOT NULL DEFAULT 0,
        create_time TEXT NOT NULL,
        update_time TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS card_contents (
        card_id TEXT PRIMARY KEY,
        content TEXT,
        card_map TEXT,
        data TEXT,
        attr_list TEXT,
        view_list TEXT,
        FOREIGN KEY (card_id) REFERENCES cards(card_id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS card_derived_text (
        row_id INTEGER PRIMARY KEY AUTOINCREMENT,
        card_id TEXT UNIQUE NOT NULL,
        card_type TEXT,
        name TEXT,
        space_id TEXT,
        text TEXT,
        origin_text TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS document_page_content (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        document_id TEXT NOT NULL,
        space_id TEXT,
        card_id TEXT,
        file_name TEXT,
        file_type TEXT,
        file_path TEXT,
        page_number INTEGER NOT NULL,
        content TEXT,
        content_segmented TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_page_document ON document_page_content(document_id, page_number)",
    "CREATE INDEX IF NOT EXISTS idx_page_card ON document_page_content(card_id)",
    """
    CREATE TABLE IF NOT EXISTS file_index (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        file_path TEXT UNIQUE NOT NULL,
        file_name TEXT NOT NULL,
        file_name_segmented TEXT,
        file_type TEXT,
        file_size INTEGER,
        created_at REAL,
        modified_at REAL,
        indexed_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fts_meta (
        fts_name TEXT PRIMARY KEY,
        schema_version INTEGER NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
]


@contextmanager
def get_connection(db_path: Path):
    """Context manager for database connections."""
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone()
    return row is not None


def _stored_version(conn: sqlite3.Connection, fts_name: str) -> Optional[int]:
    row = conn.execute(
        "SELECT schema_version FROM fts_meta WHERE fts_name = ?", (fts_name,)
    ).fetchone()
    return row["schema_version"] if row else None


def _drop_fts(conn: sqlite3.Connection, fts: FtsTable) -> None:
    for trigger in fts.trigger_names:
        conn.execute(f"DROP TRIGGER IF EXISTS {trigger}")
    conn.execute(f"DROP TABLE IF EXISTS {fts.name}")


def _indexed_rows(conn: sqlite3.Connection, fts: FtsTable) -> int:
    return conn.execute(f"SELECT COUNT(*) FROM {fts.name}_docsize").fetchone()[0]


def ensure_fts_table(conn: sqlite3.Connection, fts: FtsTable) -> bool:
    """
    Create or upgrade one FTS table.

    Args:
        conn: Open connection (caller commits)
        fts: Table definition

    Returns:
        True if the table was (re)created and is empty or was backfilled;
        for card_fts this means cards must be reindexed
    """
    stored = _stored_version(conn, fts.name)
    exists = table_exists(conn, fts.name)
    created = False

    if exists and stored != fts.version:
        logger.info(f"Upgrading {fts.name} from version {stored} to {fts.version}")
        _drop_fts(conn, fts)
        exists = False

    if not exists:
        conn.execute(fts.create_sql)
        created = True

    for trigger in fts.triggers:
        conn.execute(trigger)

    if fts.external_content:
        base_rows = conn.execute(f"SELECT COUNT(*) FROM {fts.base_table}").fetchone()[0]
        if created or _indexed_rows(conn, fts) < base_rows:
            if base_rows:
                logger.info(f"Backfilling {fts.name} from {base_rows} {fts.base_table} rows")
            conn.execute(f"INSERT INTO {fts.name}({fts.name}) VALUES('rebuild')")

    conn.execute(
        """
        INSERT INTO fts_meta (fts_name, schema_version, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(fts_name) DO UPDATE SET
            schema_version = excluded.schema_version,
            updated_at = excluded.updated_at
        """,
        (fts.name, fts.version, datetime.now().isoformat()),
    )
    return created


def init_db(db_path: Path) -> dict:
    """
    Initialize the database schema.

    Safe to call on every start: existing tables are kept, outdated FTS
    tables are rebuilt.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        Dictionary with:
            - created_fts: list of FTS tables created or rebuilt
            - card_reindex_needed: True if card_fts was recreated while cards exist
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_connection(db_path) as conn:
        for statement in BASE_TABLES:
            conn.execute(statement)

        created = [fts.name for fts in FTS_TABLES if ensure_fts_table(conn, fts)]
        card_count = conn.execute("SELECT COUNT(*) FROM cards WHERE del_flag = 0").fetchone()[0]
        conn.commit()

    return {
        'created_fts': created,
        'card_reindex_needed': 'card_fts' in created and card_count > 0,
    }


def rebuild_fts(db_path: Path) -> list[str]:
    """
    Rebuild every trigger-synced FTS table from its base table.

    card_fts is not covered; use DerivedTextWriter.reindex_all() for it.

    Returns:
        Names of the rebuilt tables
    """
    rebuilt = []
    with get_connection(db_path) as conn:
        for fts in FTS_TABLES:
            if fts.external_content and table_exists(conn, fts.name):
                conn.execute(f"INSERT INTO {fts.name}({fts.name}) VALUES('rebuild')")
                rebuilt.append(fts.name)
        conn.commit()
    return rebuilt


def drop_all_fts(db_path: Path) -> None:
    """Drop every FTS table and trigger; init_db() recreates them."""
    with get_connection(db_path) as conn:
        for fts in FTS_TABLES:
            _drop_fts(conn, fts)
        conn.execute("DELETE FROM fts_meta")
        conn.commit()


def check_db_initialized(db_path: Path) -> dict:
    """
    Check if database is initialized with required tables.

    Returns:
        Dictionary with:
        - initialized: bool
        - missing_tables: list of missing table names
        - card_count: int
        - error: str or None
    """
    result = {
        "initialized": False,
        "missing_tables": [],
        "card_count": 0,
        "error": None,
    }

    db_path = Path(db_path)
    if not db_path.exists():
        result["error"] = f"Database not found: {db_path}"
        return result

    try:
        with get_connection(db_path) as conn:
            required = ['cards', 'card_derived_text'] + [fts.name for fts in FTS_TABLES]
            result["missing_tables"] = [name for name in required if not table_exists(conn, name)]
            if 'cards' not in result["missing_tables"]:
                result["card_count"] = conn.execute("SELECT COUNT(*) FROM cards").fetchone()[0]
    except sqlite3.Error as e:
        result["error"] = f"Database error: {e}"
        return result

    result["initialized"] = not result["missing_tables"]
    return result
