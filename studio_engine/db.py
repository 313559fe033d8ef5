"""SQLite connection helper; the path can be overridden for testing."""

import sqlite3

from .config import settings

_db_path_override = None


def get_db_path() -> str:
    return _db_path_override or settings.db_path


def get_db() -> sqlite3.Connection:
    """Open a connection with dict-like rows and foreign keys enforced."""
    conn = sqlite3.connect(get_db_path())
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def _set_db_path_for_testing(path: str) -> None:
    global _db_path_override
    _db_path_override = path


def _reset_db_path() -> None:
    global _db_path_override
    _db_path_override = None
