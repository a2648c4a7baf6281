import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Sequence, TypeVar

from .schema import SCHEMA_SQL, INDEXES_SQL, SCHEMA_VERSION

CONFIG_DIR = Path.home() / ".spares"
DB_PATH = CONFIG_DIR / "spares.db"
# SQLITE_MAX_VARIABLE_NUMBER for SQLite >= 3.32
MAX_SQL_VARIABLES = 32766

T = TypeVar("T")

logger = logging.getLogger(__name__)

def init_db():
    """Initialize the database by creating tables and indexes if they don't exist."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    with get_conn() as conn:
        conn.executescript(SCHEMA_SQL)
        conn.executescript(INDEXES_SQL)
        ensure_parsers(conn)
        ensure_schema_version(conn)
        conn.commit()
    logger.info("Database ready at %s", DB_PATH)

def ensure_parsers(conn: sqlite3.Connection) -> None:
    """Ensure every registered parser has a row in the parser table."""
    from parsers import get_all_parsers

    cursor = conn.cursor()
    cursor.executemany(
        "INSERT OR IGNORE INTO parser (name) VALUES (?)",
        [(parser.name,) for parser in get_all_parsers()],
    )

def get_schema_version(conn: sqlite3.Connection) -> int:
    """Read the SQLite schema version from PRAGMA user_version."""
    cursor = conn.cursor()
    cursor.execute("PRAGMA user_version")
    row = cursor.fetchone()
    return int(row[0]) if row else 0

def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Set the SQLite schema version via PRAGMA user_version."""
    conn.execute(f"PRAGMA user_version = {int(version)}")

def ensure_schema_version(conn: sqlite3.Connection) -> None:
    """Ensure the current schema version is written to the database."""
    current = get_schema_version(conn)
    if current != SCHEMA_VERSION:
        set_schema_version(conn, SCHEMA_VERSION)

def chunked(items: Sequence[T], params_per_item: int) -> Iterator[List[T]]:
    """Split bulk statements so no single statement binds more than MAX_SQL_VARIABLES."""
    size = max(1, MAX_SQL_VARIABLES // max(1, params_per_item))
    for start in range(0, len(items), size):
        yield list(items[start:start + size])

@contextmanager
def get_conn():
    """Context manager for SQLite connection, using row_factory for dict-like rows."""
    conn = sqlite3.connect(DB_PATH, detect_types=sqlite3.PARSE_DECLTYPES, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()
