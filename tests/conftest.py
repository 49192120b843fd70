"""Shared pytest fixtures."""

import pytest

from fakes import FakeClock, FakeServer


@pytest.fixture
def server():
    """Provide an empty in-memory FTP server."""
    return FakeServer()


@pytest.fixture
def clock():
    return FakeClock()
