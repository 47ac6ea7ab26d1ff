"""
Update server client tests.
"""

import requests

from delta.client import DeltaClient
from delta.config import ServerConfig

from fakes import SERVER, FakeSession


URL = "https://ota.test/file.bin"


def test_headers_carry_user_agent_and_token():
    client = DeltaClient(ServerConfig(auth_token="secret"), session=FakeSession())

    headers = client._headers(start=10)

    assert headers["User-Agent"] == "deltaota/1.0"
    assert headers["Authorization"] == "Bearer secret"
    assert headers["Range"] == "bytes=10-"
    assert "Range" not in client._headers()


def test_fetch_text(client, session):
    session.add(URL, "hello")
    assert client.fetch_text(URL) == "hello"


def test_fetch_missing_returns_none(client):
    assert client.fetch_bytes(URL) is None


def test_fetch_connection_error_returns_none(client, session):
    session.errors[URL] = requests.ConnectionError("boom")
    assert client.fetch_bytes(URL) is None


def test_fetch_refuses_oversized_document(session):
    client = DeltaClient(ServerConfig(max_metadata_size=8), session=session)
    session.add(URL, b"x" * 32)
    assert client.fetch_bytes(URL) is None


def test_fetch_without_content_length_is_capped(session):
    client = DeltaClient(ServerConfig(max_metadata_size=8), session=session)
    session.add(URL, b"x" * 32)
    session.no_length.add(URL)
    assert client.fetch_bytes(URL) is None


def test_content_length(client, session):
    session.add(URL, b"x" * 100)
    assert client.content_length(URL) == 100
    assert client.content_length(URL + ".missing") == 0


def test_open_sends_timeouts_and_range(session):
    seen = {}

    def get(url, headers=None, stream=False, timeout=None):
        seen.update(url=url, headers=headers, stream=stream, timeout=timeout)
        return FakeSession.get(session, url, headers=headers)

    session.add(URL, b"0123456789")
    session.get = get
    client = DeltaClient(SERVER, session=session)

    resp = client.open(URL, start=4)

    assert resp.status_code == 206
    assert seen["stream"] is True
    assert seen["timeout"] == (30, 30)
    assert seen["headers"]["Range"] == "bytes=4-"
    resp.close()
