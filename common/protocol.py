import json
import socket
import threading
from typing import Optional

from common.messages import Envelope, ProtocolError

ENC = "utf-8"
DELIM = b"\n"   # one envelope per line


def send_json(sock: socket.socket, obj: dict) -> None:
    ''' Write obj as a single line of UTF-8 JSON; non-ASCII text is sent as-is, not escaped '''
    data = (json.dumps(obj, ensure_ascii=False) + "\n").encode(ENC)
    sock.sendall(data)


def recv_json(sock: socket.socket, buf: bytearray) -> dict:
    '''
    Return the next line-delimited JSON object read from sock.

    buf belongs to one stream and carries bytes that arrived after the last
    complete line, so several envelopes landing in one recv() are handed out
    one call at a time. A line that is not UTF-8 JSON, or not an object, is
    consumed and reported as ProtocolError; the following line can still be
    read. ConnectionError means the peer closed its end.
    '''
    while True:
        nl = buf.find(DELIM)
        if nl != -1:
            line_bytes = bytes(buf[:nl])
            del buf[:nl+1]
            try:
                obj = json.loads(line_bytes.decode(ENC))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise ProtocolError(f"undecodable line: {e}") from e
            if not isinstance(obj, dict):
                raise ProtocolError("expected a JSON object")
            return obj

        chunk = sock.recv(4096)
        if not chunk:
            raise ConnectionError("socket closed")
        buf.extend(chunk)


class EnvelopeStream:
    '''
    Ordered, bidirectional envelope stream over one connected socket.

    Reads are done by a single owner thread. Writes may come from any thread
    (the relay forwards into other sessions' streams), so each send holds a
    write lock and whole envelopes never interleave on the wire.
    '''
    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._buf = bytearray()
        self._write_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def peer_name(self) -> Optional[str]:
        try:
            host, port = self.sock.getpeername()[:2]
            return f"{host}:{port}"
        except (OSError, ValueError, TypeError):
            return None

    def send(self, env: Envelope) -> None:
        ''' Write one envelope; raises OSError if the connection is gone '''
        with self._write_lock:
            if self._closed:
                raise ConnectionError("stream closed")
            send_json(self.sock, env.to_dict())

    def receive(self) -> Envelope:
        ''' Block until the next envelope arrives '''
        return Envelope.from_dict(recv_json(self.sock, self._buf))

    def close(self) -> None:
        ''' Release the socket; safe to call more than once '''
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected
        self.sock.close()
