"""
Shared fixtures: isolated data directory, fake server session and client.
"""

import pytest

from delta.client import DeltaClient
from download.config import Paths
from download.state_repository import StateStore

from fakes import SERVER, FakeSession


@pytest.fixture
def paths(tmp_path):
    """Data directory layout below a per-test temporary directory."""
    p = Paths.under(tmp_path / "data")
    p.downloads_dir.mkdir(parents=True)
    return p


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(session):
    return DeltaClient(SERVER, session=session)


@pytest.fixture
def store(paths):
    return StateStore(paths.db_path)
