"""
Progress tracker tests.
"""

from app.progress_tracker import ProgressTracker, stage_for
from app.states import State


def test_stage_for_states():
    assert stage_for(State.DOWNLOADING) == "download"
    assert stage_for(State.APPLYING_PATCH) == "patch"
    assert stage_for(State.APPLYING_SUM) == "verify"
    assert stage_for(State.READY) is None


def test_first_and_final_updates_pass():
    calls = []
    tracker = ProgressTracker(lambda *a: calls.append(a))

    tracker.update_progress("download", 0, 1000, "rom.zip")
    tracker.update_progress("download", 1000, 1000, "rom.zip")

    assert [c[1] for c in calls] == [0, 1000]
    assert calls[-1][3].startswith("Downloading rom.zip:")


def test_small_steps_are_throttled(monkeypatch):
    now = [100.0]
    monkeypatch.setattr("app.progress_tracker.time.monotonic", lambda: now[0])
    calls = []
    tracker = ProgressTracker(lambda *a: calls.append(a))

    tracker.update_progress("patch", 0, 10_000)
    tracker.update_progress("patch", 10, 10_000)
    now[0] += 0.2
    tracker.update_progress("patch", 20, 10_000)

    assert [c[1] for c in calls] == [0, 20]


def test_label_contains_speed_and_eta(monkeypatch):
    now = [0.0]
    monkeypatch.setattr("app.progress_tracker.time.monotonic", lambda: now[0])
    calls = []
    tracker = ProgressTracker(lambda *a: calls.append(a))

    tracker.update_progress("download", 0, 4 * 1024 * 1024)
    now[0] = 2.0
    tracker.update_progress("download", 2 * 1024 * 1024, 4 * 1024 * 1024)

    label = calls[-1][3]
    assert "1.0 MB/s" in label
    assert "ETA 0:02" in label


def test_format_eta():
    assert ProgressTracker._format_eta(None) == "--:--"
    assert ProgressTracker._format_eta(65) == "1:05"
    assert ProgressTracker._format_eta(3661) == "1:01:01"
