import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

# Applied to every connection. WAL lets the results page keep reading while a merge writes.
_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys = ON;",
)


def connect(db_path: str, busy_timeout: float = 60.0) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=busy_timeout)
    for pragma in _PRAGMAS:
        conn.execute(pragma)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def db_session(db_path: str, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Connection that commits on success and rolls back on any error.

    ``immediate=True`` takes the write lock up front, so a multi-statement
    batch either runs entirely or waits; it never half-applies behind another
    writer.
    """
    conn: Optional[sqlite3.Connection] = None
    try:
        conn = connect(db_path)
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        if conn is not None:
            conn.rollback()
        raise
    finally:
        if conn is not None:
            conn.close()


def read_schema_sql() -> str:
    return SCHEMA_PATH.read_text(encoding="utf-8")
