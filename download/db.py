# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Database connection and schema management.

This module provides database connection utilities, schema initialization,
and database health/repair operations for the updater state store.

Every function takes an optional ``db_path``; when omitted the global
``PATHS.db_path`` is used.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

from .config import PATHS
from .sql import CHECK_LOG_SCHEMA, PREFS_SCHEMA


# --- Paths --- #
def get_db_path() -> Path:
    """Return the default updater database location."""
    return PATHS.db_path


def _resolve(db_path: Optional[Path]) -> Path:
    return Path(db_path) if db_path is not None else PATHS.db_path


# --- Connection --- #
def connect(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Open the updater database.

    The orchestrator worker and the CLI open their own connections; WAL mode
    lets a reader see the last committed state while the worker writes.

    Args:
        db_path: Optional database file; defaults to ``PATHS.db_path``.

    Returns:
        sqlite3.Connection: Autocommit connection returning sqlite3.Row rows.

    Note:
        Multi-statement writes wrap themselves in BEGIN/COMMIT.
    """
    path = _resolve(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        path,
        timeout=10.0,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    _apply_pragmas(conn)
    return conn


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    """WAL journal, relaxed fsync and a busy timeout for concurrent writers."""
    cur = conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA synchronous=NORMAL;")
    cur.execute("PRAGMA foreign_keys=ON;")
    cur.execute("PRAGMA busy_timeout=5000;")
    cur.close()


SCHEMA_SQL = PREFS_SCHEMA + "\n\n" + CHECK_LOG_SCHEMA


def init_db(db_path: Optional[Path] = None) -> None:
    """Create the prefs and check_log tables if missing. Idempotent."""
    conn = connect(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
    finally:
        conn.close()


# --- Repair --- #
def is_healthy(db_path: Optional[Path] = None) -> bool:
    """Return True if ``PRAGMA integrity_check`` reports ok; unreadable files are unhealthy."""
    try:
        conn = sqlite3.connect(_resolve(db_path))
        try:
            cur = conn.cursor()
            cur.execute("PRAGMA integrity_check(1);")
            row = cur.fetchone()
            cur.close()
            return row is not None and row[0] == "ok"
        finally:
            conn.close()
    except sqlite3.DatabaseError:
        return False


def _dump_db(db_path: Path, path: Path) -> None:
    """Write every statement needed to recreate ``db_path`` into ``path``."""
    conn = connect(db_path)
    try:
        with open(path, "w", encoding="utf-8") as f:
            for line in conn.iterdump():
                f.write(f"{line}\n")
    finally:
        conn.close()


def _restore_db(db_path: Path, path: Path) -> None:
    """Replay a dump written by ``_dump_db`` into ``db_path``.

    The dump carries its own BEGIN TRANSACTION/COMMIT pair; a failed replay
    is rolled back.
    """
    conn = connect(db_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            sql = f.read()
        try:
            conn.executescript(sql)
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise
    finally:
        conn.close()


def repair_db(db_path: Optional[Path] = None) -> None:
    """Rebuild a corrupted updater database in place.

    A healthy database is left alone. Otherwise whatever SQLite can still
    read is dumped next to it, the file is recreated from the dump and the
    dump is removed. Rows in damaged pages are lost; the updater treats a
    missing key as its default value.
    """
    path = _resolve(db_path)
    if is_healthy(path):
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_dump_path = path.parent / "temp_dump.sql"
    _dump_db(path, temp_dump_path)

    try:
        path.unlink()
    except FileNotFoundError:
        pass

    _restore_db(path, temp_dump_path)

    try:
        temp_dump_path.unlink()
    except FileNotFoundError:
        pass
