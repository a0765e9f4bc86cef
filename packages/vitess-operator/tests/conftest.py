"""Shared fixtures for vitess-operator tests."""

import pytest

from vitess_fakes import (
    FakeBackend,
    FakeObjectStore,
    FakeTabletManager,
    FakeTopo,
    FakeWrangler,
    RecordingSink,
)
from vitess_operator.events import Recorder


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def topo():
    return FakeTopo()


@pytest.fixture
def tmc():
    return FakeTabletManager()


@pytest.fixture
def wrangler(topo, tmc):
    return FakeWrangler(topo, tmc)


@pytest.fixture
def backend(topo, tmc):
    return FakeBackend(topo, tmc)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def recorder(sink):
    """Recorder that mirrors events into sink."""
    return Recorder(sink)
