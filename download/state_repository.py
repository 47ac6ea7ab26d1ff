# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Repository layer for durable updater state.

The updater keeps a small set of keys that must survive restarts: the latest
builds seen on the server, the ready artifact, the size of the pending
download and so on. They live in the ``prefs`` table as text values, one row
per key. Writes are last-writer-wins; there is no multi-key atomicity.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .db import connect, init_db

# Durable keys
LATEST_FULL_NAME = "latest_full_name"
LATEST_DELTA_NAME = "latest_delta_name"
READY_FILENAME = "ready_filename"
CURRENT_FILENAME = "current_filename"
CURRENT_AB_FILENAME = "current_ab_filename"
INITIAL_FILE = "initial_file"
DOWNLOAD_SIZE = "download_size"
DELTA_SIGNATURE = "delta_signature"
PENDING_REBOOT = "pending_reboot"
LAST_CHECK_TIME = "last_check_time"
LAST_SNOOZE_TIME = "last_snooze_time"
SNOOZED_BUILD_NAME = "snoozed_build_name"
FILE_FLASH = "file_flash"
LAST_DOWNLOAD_TIME = "last_download_time"
LATEST_CHANGELOG = "latest_changelog"
PAUSED_DELTA_NAME = "paused_delta_name"
PAUSED_BYTES = "paused_bytes"


class StateStore:
    """Typed key-value access to the ``prefs`` table.

    Args:
        db_path: Optional database file; defaults to ``PATHS.db_path``.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path
        init_db(db_path)

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def _get(self, key: str) -> Optional[str]:
        with self._conn() as conn:
            row = conn.execute("SELECT value FROM prefs WHERE key = ?", (key,)).fetchone()
        return None if row is None else row["value"]

    def get_str(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._get(key)
        return default if value is None else value

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._get(key)
        if value is None:
            return default
        return value == "1"

    def put(self, key: str, value: object) -> None:
        """Store ``value`` under ``key``; None removes the key.

        Booleans are stored as "1"/"0", everything else as ``str(value)``.
        """
        if value is None:
            self.delete(key)
            return
        if isinstance(value, bool):
            text = "1" if value else "0"
        else:
            text = str(value)
        sql = """
        INSERT INTO prefs (key, value) VALUES (:key, :value)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value;
        """
        with self._conn() as conn:
            conn.execute(sql, {"key": key, "value": text})

    def delete(self, key: str) -> None:
        with self._conn() as conn:
            conn.execute("DELETE FROM prefs WHERE key = ?", (key,))

    def snapshot(self) -> dict[str, str]:
        """Return every stored key and its raw text value."""
        with self._conn() as conn:
            return {row["key"]: row["value"] for row in conn.execute("SELECT key, value FROM prefs ORDER BY key")}

    def clear_state(self) -> None:
        """Forget the latest-build state after an error or a finished update.

        Resets the latest build names, the ready artifact, the changelog, the
        pending download size, the signature and user-file flags, the initial
        file and the paused delta download. Install progress keys are kept.
        """
        with self._conn() as conn:
            conn.execute("BEGIN;")
            try:
                conn.execute(
                    "DELETE FROM prefs WHERE key IN (?, ?, ?, ?, ?, ?, ?)",
                    (
                        LATEST_FULL_NAME,
                        LATEST_DELTA_NAME,
                        READY_FILENAME,
                        LATEST_CHANGELOG,
                        INITIAL_FILE,
                        PAUSED_DELTA_NAME,
                        PAUSED_BYTES,
                    ),
                )
                conn.executemany(
                    """
                    INSERT INTO prefs (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value;
                    """,
                    [(DOWNLOAD_SIZE, "-1"), (DELTA_SIGNATURE, "0"), (FILE_FLASH, "0")],
                )
                conn.execute("COMMIT;")
            except Exception:
                conn.execute("ROLLBACK;")
                raise
