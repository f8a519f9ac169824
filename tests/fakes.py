import struct
import zlib


class FakeStream:
    """Records sent envelopes; optionally fails every write."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail
        self.closed = False

    def send(self, env):
        if self.fail or self.closed:
            raise ConnectionResetError("peer gone")
        self.sent.append(env)

    def close(self):
        self.closed = True

    def peer_name(self):
        return "fake:0"


def png_header(width: int, height: int) -> bytes:
    """A PNG that declares width x height RGB pixels but carries no pixel data."""
    def chunk(kind, data):
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", b"") + chunk(b"IEND", b"")
