# Core Module - Central SQLite Connection Helper
#
# Every Strongroom table lives in one SQLite file and every connection is
# opened through `connect()` instead of raw `sqlite3.connect()`. This ensures:
#
#   - WAL journal mode (concurrent readers + one writer)
#   - busy_timeout so contention fails after a bounded wait instead of hanging
#   - foreign_keys enforcement on every connection
#
# Connections are short-lived (one per operation) and closed on exit of the
# `session()` context manager.

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

BUSY_TIMEOUT_MS = 5000


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        check_same_thread: Passed to sqlite3.connect().

    Returns:
        sqlite3.Connection with WAL mode, busy_timeout, and foreign_keys.
    """
    conn = sqlite3.connect(
        str(db_path),
        timeout=BUSY_TIMEOUT_MS / 1000,
        check_same_thread=check_same_thread,
    )
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def session(db_path: Union[str, Path], *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success, roll back on error, always close.

    With ``immediate=True`` the write lock is taken up front (BEGIN IMMEDIATE)
    so a read-modify-write sequence cannot interleave with another writer.
    """
    conn = connect(db_path, row_factory=True)
    try:
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
