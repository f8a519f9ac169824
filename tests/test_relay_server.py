import threading
import time

import pytest

from peer.net import PeerConnection
from relay.main import RelayServer


@pytest.fixture
def server(credentials):
    srv = RelayServer(credentials, host="127.0.0.1", port=0)
    srv.start()
    yield srv
    srv.shutdown()


def _wait_for(cond, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if cond():
            return True
        time.sleep(0.01)
    return False


class Peer:
    def __init__(self, server, name, secret, accept_images=True):
        host, port = server.address
        self.texts, self.images, self.prompts, self.closed = [], [], [], []
        self.got_image = threading.Event()
        self.net = PeerConnection(host, port,
                                  on_text=lambda s, t, all_: self.texts.append((s, t, all_)),
                                  on_confirmation=self._confirm,
                                  on_image=self._image,
                                  on_closed=self.closed.append)
        self.accept_images = accept_images
        self.net.connect()
        assert self.net.login(name, secret)
        self.net.start()

    def _confirm(self, sender, prompt):
        self.prompts.append((sender, prompt))
        return self.accept_images

    def _image(self, sender, data):
        self.images.append((sender, data))
        self.got_image.set()


def test_end_to_end_scenario(server):
    alice = Peer(server, "alice", "pw1")
    bob = Peer(server, "bob", "pw2")

    assert alice.net.request_roster() == ["bob"]

    alice.net.send_text("bob", "hi")
    assert _wait_for(lambda: bob.texts)
    assert bob.texts == [("alice", "hi", False)]

    image = b"\x89PNG" + bytes(range(256)) * 64
    bob.net.send_image("alice", image)
    assert alice.got_image.wait(5)
    assert alice.prompts[0][0] == "bob"
    assert "Download it?" in alice.prompts[0][1]
    assert alice.images == [("bob", image)]

    alice.net.close()
    assert _wait_for(lambda: "alice" not in server.registry)
    assert bob.net.request_roster() == []
    bob.net.close()


def test_wrong_password_then_retry(server, credentials):
    credentials.check("alice", "pw1")
    host, port = server.address
    net = PeerConnection(host, port)
    net.connect()
    assert not net.login("alice", "bad")
    assert net.login("alice", "pw1")
    net.start()
    net.close()


def test_declined_image_is_not_delivered(server):
    alice = Peer(server, "alice", "pw1", accept_images=False)
    bob = Peer(server, "bob", "pw2")
    bob.net.send_image("alice", b"png-bytes")
    assert _wait_for(lambda: alice.prompts)
    # anything delivered would come before the roster answer on alice's stream
    alice.net.request_roster()
    assert alice.images == []
    alice.net.close()
    bob.net.close()


def test_broadcast_reaches_other_peers_only(server):
    alice, bob, carol = (Peer(server, n, "pw") for n in ("alice", "bob", "carol"))
    alice.net.broadcast_text("hello everyone")
    assert _wait_for(lambda: bob.texts and carol.texts)
    assert bob.texts == [("alice", "hello everyone", True)]
    assert carol.texts == [("alice", "hello everyone", True)]
    alice.net.request_roster()
    assert alice.texts == []
    for p in (alice, bob, carol):
        p.net.close()


def test_shutdown_closes_every_peer(credentials):
    srv = RelayServer(credentials, host="127.0.0.1", port=0)
    srv.start()
    alice = Peer(srv, "alice", "pw1")
    srv.shutdown()
    assert _wait_for(lambda: alice.closed)
    assert alice.closed[0] == "Shut Down"
    assert len(srv.registry) == 0
    assert not srv.accept_thread.is_alive()
