"""
Check cycle log and database maintenance tests.
"""

import sqlite3

import pytest

from download.check_log_repository import CheckLog
from download.db import connect, init_db, is_healthy, repair_db


def test_start_and_finish(paths):
    log = CheckLog(paths.db_path)

    id_ = log.start(session_id="s1", user_initiated=True, mode="download", current_build="a.zip")
    log.finish(id_, state="action_ready", strategy="delta", latest_build="c.zip", download_size=42)

    event = log.last_check()
    assert event.id == id_
    assert event.user_initiated is True
    assert event.mode == "download"
    assert event.current_build == "a.zip"
    assert event.latest_build == "c.zip"
    assert event.strategy == "delta"
    assert event.state == "action_ready"
    assert event.download_size == 42
    assert event.finished_at is not None


def test_unfinished_cycle_defaults(paths):
    log = CheckLog(paths.db_path)
    log.start(session_id="s1", user_initiated=False, mode="check")

    event = log.last_check()

    assert event.state == "action_checking"
    assert event.strategy == "unknown"
    assert event.finished_at is None


def test_list_checks_newest_first(paths):
    log = CheckLog(paths.db_path)
    ids = [log.start(session_id="s", user_initiated=False, mode="check") for _ in range(3)]

    listed = [event.id for event in log.list_checks(limit=2)]

    assert listed == [ids[2], ids[1]]
    assert [event.id for event in log.list_checks(limit=2, offset=2)] == [ids[0]]


def test_empty_log(paths):
    assert CheckLog(paths.db_path).last_check() is None


def test_strategy_is_constrained(paths):
    log = CheckLog(paths.db_path)
    id_ = log.start(session_id="s", user_initiated=False, mode="check")
    with pytest.raises(sqlite3.IntegrityError):
        log.finish(id_, state="action_none", strategy="sideways")


def test_connect_uses_wal(paths):
    init_db(paths.db_path)
    conn = connect(paths.db_path)
    try:
        assert conn.execute("PRAGMA journal_mode;").fetchone()[0] == "wal"
    finally:
        conn.close()


def test_repair_keeps_healthy_database(paths):
    log = CheckLog(paths.db_path)
    log.start(session_id="s", user_initiated=False, mode="check")

    assert is_healthy(paths.db_path)
    repair_db(paths.db_path)

    assert log.last_check() is not None
