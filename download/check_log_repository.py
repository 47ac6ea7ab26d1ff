# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""Repository layer for update check history.

Every check cycle is logged with its trigger, the chosen strategy and the
state it ended in, for traceability of background activity.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .db import connect, init_db

ISO_UTC = "%Y-%m-%dT%H:%M:%SZ"


def _iso_now() -> str:
    """Get current UTC time as ISO 8601 formatted string.

    Returns:
        str: Current UTC timestamp in ISO 8601 format (YYYY-MM-DDTHH:MM:SSZ).
    """
    return datetime.now(timezone.utc).strftime(ISO_UTC)


@dataclass
class CheckEvent:
    """Check cycle record.

    Attributes:
        id: Database record ID, or None for new records.
        session_id: Application session identifier (changes per app launch).
        user_initiated: True if the cycle was requested by the user.
        mode: "check" or "download".
        current_build: Build the device was running.
        latest_build: Latest full build announced by the server.
        strategy: delta, full, none, ready or unknown.
        state: State the cycle ended in.
        download_size: Bytes the chosen strategy needs to fetch, -1 if unknown.
        started_at: ISO 8601 UTC timestamp of cycle start.
        finished_at: ISO 8601 UTC timestamp of cycle end, or None while running.
    """

    id: int | None
    session_id: str
    user_initiated: bool
    mode: str
    current_build: str | None = None
    latest_build: str | None = None
    strategy: str = "unknown"
    state: str = "action_checking"
    download_size: int = -1
    started_at: str | None = None
    finished_at: str | None = None


def _row_to_event(row: sqlite3.Row) -> CheckEvent:
    return CheckEvent(
        id=row["id"],
        session_id=row["session_id"],
        user_initiated=bool(row["user_initiated"]),
        mode=row["mode"],
        current_build=row["current_build"],
        latest_build=row["latest_build"],
        strategy=row["strategy"],
        state=row["state"],
        download_size=row["download_size"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
    )


class CheckLog:
    """Access to the ``check_log`` table.

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

    def start(self, *, session_id: str, user_initiated: bool, mode: str, current_build: str | None = None) -> int:
        """Insert a new cycle record and return its ID."""
        sql = """
        INSERT INTO check_log (session_id, user_initiated, mode, current_build, started_at)
        VALUES (:session_id, :user_initiated, :mode, :current_build, :started_at);
        """
        params = {
            "session_id": session_id,
            "user_initiated": 1 if user_initiated else 0,
            "mode": mode,
            "current_build": current_build,
            "started_at": _iso_now(),
        }
        with self._conn() as conn:
            cur = conn.execute(sql, params)
            return int(cur.lastrowid)  # type: ignore

    def finish(
        self,
        id_: int,
        *,
        state: str,
        strategy: str = "unknown",
        latest_build: str | None = None,
        download_size: int = -1,
    ) -> None:
        """Record how a cycle ended.

        Args:
            id_: ID returned by start().
            state: Final state of the cycle.
            strategy: Chosen strategy, or "unknown" if the cycle ended before planning.
            latest_build: Latest full build announced by the server.
            download_size: Bytes the chosen strategy needs to fetch.
        """
        sql = """
        UPDATE check_log
           SET state = :state,
               strategy = :strategy,
               latest_build = COALESCE(:latest_build, latest_build),
               download_size = :download_size,
               finished_at = :finished_at
         WHERE id = :id
        """
        with self._conn() as conn:
            conn.execute(
                sql,
                {
                    "state": state,
                    "strategy": strategy,
                    "latest_build": latest_build,
                    "download_size": download_size,
                    "finished_at": _iso_now(),
                    "id": id_,
                },
            )

    def list_checks(self, *, limit: int = 50, offset: int = 0) -> Iterable[CheckEvent]:
        """List check cycles, newest first.

        Yields:
            CheckEvent: Cycle records ordered by started_at descending.
        """
        sql = """
        SELECT * FROM check_log
         ORDER BY started_at DESC, id DESC
         LIMIT ? OFFSET ?;
        """
        with self._conn() as conn:
            rows = conn.execute(sql, (limit, offset)).fetchall()
        for row in rows:
            yield _row_to_event(row)

    def last_check(self) -> CheckEvent | None:
        """Get the most recent check cycle, or None if none was logged."""
        for event in self.list_checks(limit=1):
            return event
        return None
