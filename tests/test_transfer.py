"""
Resumable transfer tests.
"""

import threading

import requests

from delta.client import DeltaClient
from delta.config import ServerConfig
from download.transfer import ResumableTransfer, TransferResult

from fakes import SERVER, sha

URL = "https://ota.test/full/rom.zip"
BODY = bytes(range(256)) * 4


def _transfer(client):
    return ResumableTransfer(client)


def test_result_truthiness():
    assert TransferResult.OK
    assert not TransferResult.FAILED
    assert not TransferResult.INTEGRITY


def test_fresh_download(client, session, tmp_path):
    session.add(URL, BODY)
    dest = tmp_path / "rom.zip"
    progress = []

    result = _transfer(client).fetch(URL, dest, sha(BODY), progress_cb=lambda *a: progress.append(a))

    assert result == TransferResult.OK
    assert dest.read_bytes() == BODY
    assert progress[0] == (0.0, 0, len(BODY))
    assert progress[-1] == (100.0, len(BODY), len(BODY))


def test_resume_requests_missing_range(client, session, tmp_path):
    session.add(URL, BODY)
    dest = tmp_path / "rom.zip"
    dest.write_bytes(BODY[:300])
    hashed = []

    result = _transfer(client).fetch(URL, dest, sha(BODY), hash_progress_cb=lambda *a: hashed.append(a))

    assert result == TransferResult.OK
    assert dest.read_bytes() == BODY
    assert session.calls[-1][1]["Range"] == "bytes=300-"
    assert hashed, "resumed file is re-hashed from disk"


def test_resume_restarts_when_range_ignored(client, session, tmp_path):
    session.add(URL, BODY)
    session.ignore_range.add(URL)
    dest = tmp_path / "rom.zip"
    dest.write_bytes(b"garbage")

    result = _transfer(client).fetch(URL, dest, sha(BODY))

    assert result == TransferResult.OK
    assert dest.read_bytes() == BODY


def test_mismatch_deletes_destination(client, session, tmp_path):
    session.add(URL, BODY)
    dest = tmp_path / "rom.zip"

    result = _transfer(client).fetch(URL, dest, "0" * 64)

    assert result == TransferResult.INTEGRITY
    assert not dest.exists()


def test_corrupt_resumed_file_is_deleted(client, session, tmp_path):
    session.add(URL, BODY)
    dest = tmp_path / "rom.zip"
    dest.write_bytes(b"\xff" * 300)

    result = _transfer(client).fetch(URL, dest, sha(BODY))

    assert result == TransferResult.INTEGRITY
    assert not dest.exists()


def test_missing_content_length_fails(client, session, tmp_path):
    session.add(URL, BODY)
    session.no_length.add(URL)

    assert _transfer(client).fetch(URL, tmp_path / "rom.zip") == TransferResult.FAILED


def test_oversized_content_length_fails(session, tmp_path):
    client = DeltaClient(ServerConfig(max_download_size=100), session=session)
    session.add(URL, BODY)

    assert _transfer(client).fetch(URL, tmp_path / "rom.zip") == TransferResult.FAILED


def test_not_found_fails(client, tmp_path):
    assert _transfer(client).fetch(URL, tmp_path / "rom.zip") == TransferResult.FAILED


def test_connection_error_fails(client, session, tmp_path):
    session.errors[URL] = requests.ConnectionError("reset")
    assert _transfer(client).fetch(URL, tmp_path / "rom.zip") == TransferResult.FAILED


def test_no_space_writes_nothing(client, session, tmp_path):
    session.add(URL, BODY)
    dest = tmp_path / "rom.zip"

    result = _transfer(client).fetch(URL, dest, free_space=lambda: len(BODY) - 1)

    assert result == TransferResult.NO_SPACE
    assert not dest.exists()


def test_stop_keeps_partial_file(session, tmp_path):
    client = DeltaClient(SERVER, session=session)
    stop = threading.Event()
    session.add(URL, BODY)
    session.hooks[URL] = stop.set
    dest = tmp_path / "rom.zip"

    result = _transfer(client).fetch(URL, dest, sha(BODY), stop_event=stop)

    assert result == TransferResult.STOPPED
    assert 0 < dest.stat().st_size < len(BODY)


def test_complete_file_is_downloaded_again(client, session, tmp_path):
    session.add(URL, BODY)
    dest = tmp_path / "rom.zip"
    dest.write_bytes(BODY)

    assert _transfer(client).fetch(URL, dest, sha(BODY)) == TransferResult.OK
    assert "Range" not in session.calls[-1][1]
