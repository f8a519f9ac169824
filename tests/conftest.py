import socket

import pytest

from common.protocol import EnvelopeStream
from relay.credentials import CredentialStore
from relay.registry import SessionRegistry
from relay.session import Session
from tests.fakes import FakeStream


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def online(registry):
    """Register fake sessions by name: online("alice", "bob") -> {name: Session}."""
    def _online(*names, fail=()):
        sessions = {}
        for name in names:
            s = Session(name, FakeStream(fail=name in fail))
            registry.register(name, s)
            sessions[name] = s
        return sessions
    return _online


@pytest.fixture
def credentials(tmp_path):
    return CredentialStore(str(tmp_path / "user_details.txt"))


@pytest.fixture
def stream_pair():
    """Two connected EnvelopeStreams over a socketpair."""
    a, b = socket.socketpair()
    left, right = EnvelopeStream(a), EnvelopeStream(b)
    yield left, right
    left.close()
    right.close()
