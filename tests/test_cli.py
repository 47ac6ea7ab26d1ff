"""
Command-line front end tests.
"""

import io

import pytest

from app.cli import ConsoleView, UpdaterApp, describe
from app.states import State, StateUpdate
from download.check_log_repository import CheckLog
from download.config import Paths


@pytest.mark.parametrize(
    ("update", "expected"),
    [
        (StateUpdate(State.NONE), "System up to date"),
        (StateUpdate(State.READY, filename="rom.zip"), "Update ready to flash: rom.zip"),
        (StateUpdate(State.DOWNLOADING_PAUSED, 12.5, filename="rom.zip"), "Download paused: rom.zip (12.5%)"),
        (StateUpdate(State.ERROR_DISK_SPACE, current=1, total=2), "Not enough space: 1 bytes free, 2 bytes required"),
        (StateUpdate(State.ERROR_UNOFFICIAL, filename="rom-custom"), "Error: error_unofficial (rom-custom)"),
        (StateUpdate(State.ERROR_PERMISSIONS), "Error: error_permissions"),
        (StateUpdate(State.CHECKING), "Checking..."),
    ],
)
def test_describe(update, expected):
    assert describe(update) == expected


def test_console_view_prints_state_changes_once():
    out = io.StringIO()
    view = ConsoleView(out)

    view(StateUpdate(State.NONE))
    view(StateUpdate(State.NONE))
    view(StateUpdate(State.BUILD))
    view.close()

    assert out.getvalue().splitlines() == ["System up to date", "New build available"]


def test_console_view_draws_progress():
    out = io.StringIO()
    view = ConsoleView(out)

    view(StateUpdate(State.DOWNLOADING, 50.0, 1024, 2048, "rom.zip"))
    view.close()

    assert "Downloading rom.zip" in out.getvalue()


def test_subcommand_is_required():
    with pytest.raises(SystemExit):
        UpdaterApp().parser.parse_args([])


def test_flash_file_takes_a_path():
    args = UpdaterApp().parser.parse_args(["-d", "/tmp/x", "flash-file", "rom.zip"])
    assert args.command == "flash-file"
    assert args.path == "rom.zip"


def test_history_lists_logged_cycles(tmp_path, capsys):
    paths = Paths.under(tmp_path)
    log = CheckLog(paths.db_path)
    id_ = log.start(session_id="s", user_initiated=True, mode="check", current_build="old.zip")
    log.finish(id_, state=State.BUILD.value, strategy="delta", latest_build="new.zip")

    assert UpdaterApp().run(["-d", str(tmp_path), "history"]) == 0

    out = capsys.readouterr().out
    assert "new.zip" in out
    assert "delta" in out


def test_repair_db_on_healthy_database(tmp_path, capsys):
    CheckLog(Paths.under(tmp_path).db_path)

    assert UpdaterApp().run(["-d", str(tmp_path), "repair-db"]) == 0
    assert "healthy" in capsys.readouterr().out
