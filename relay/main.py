import argparse
import socket
import sys
import threading
from typing import Optional, Set

from common.log import setup_logger
from common.protocol import EnvelopeStream
from relay.credentials import CredentialStore
from relay.dispatcher import Dispatcher
from relay.handler import SessionHandler
from relay.registry import SessionRegistry

HOST = "0.0.0.0"
PORT = 1337
USER_DETAILS = "server_data/user_details.txt"
EXIT_COMMAND = "Exit"

log = setup_logger("relay")


class RelayServer:
    '''
    Accepts peer connections and runs one SessionHandler thread per connection.
    The accept loop has its own thread so the caller stays free for operator input.
    '''
    def __init__(self, credentials: CredentialStore, host: str = HOST, port: int = PORT):
        self.host, self.port = host, port
        self.credentials = credentials
        self.registry = SessionRegistry()
        self.dispatcher = Dispatcher(self.registry)
        self.listener: Optional[socket.socket] = None
        self.accept_thread: Optional[threading.Thread] = None
        self._handlers: Set[SessionHandler] = set()
        self._handlers_lock = threading.Lock()
        self._stopping = threading.Event()

    @property
    def address(self):
        ''' (host, port) actually bound; useful when started on port 0 '''
        return self.listener.getsockname()[:2]

    def start(self) -> None:
        self.listener = socket.create_server((self.host, self.port))
        self.accept_thread = threading.Thread(target=self._accept_loop, name="relay-accept", daemon=True)
        self.accept_thread.start()
        log.info("relay started, waiting for connections on %s:%d", *self.address)

    def _accept_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                conn, addr = self.listener.accept()
            except OSError as e:
                if self._stopping.is_set():
                    break
                log.error("accept failed: %s", e)
                continue
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            handler = SessionHandler(EnvelopeStream(conn), self.registry, self.credentials, self.dispatcher)
            with self._handlers_lock:
                self._handlers.add(handler)
            log.debug("new connection from %s:%d", *addr[:2])
            threading.Thread(target=self._serve, args=(handler,), daemon=True).start()

    def _serve(self, handler: SessionHandler) -> None:
        try:
            handler.run()
        finally:
            with self._handlers_lock:
                self._handlers.discard(handler)

    def shutdown(self) -> None:
        ''' Stop accepting and send every connected peer a close-connection envelope '''
        if self._stopping.is_set():
            return
        self._stopping.set()
        if self.listener is not None:
            try:
                self.listener.shutdown(socket.SHUT_RDWR)  # wakes a blocked accept() on Linux
            except OSError:
                pass
            self.listener.close()
        with self._handlers_lock:
            handlers = list(self._handlers)
        for h in handlers:
            h.shutdown()
        if self.accept_thread is not None:
            self.accept_thread.join(timeout=2)
        log.info("relay has shut down and is no longer listening for connections")


def main(argv=None):
    ap = argparse.ArgumentParser(description="Text and image chat relay")
    ap.add_argument("--host", default=HOST, help="Address to listen on")
    ap.add_argument("--port", type=int, default=PORT, help="Port to listen on")
    ap.add_argument("--users", default=USER_DETAILS, help="File of username#password lines")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args(argv)
    log.setLevel(args.log_level.upper())

    server = RelayServer(CredentialStore(args.users), args.host, args.port)
    server.start()
    print(f"Please enter a relay command ({EXIT_COMMAND}):")
    try:
        for line in sys.stdin:
            if line.strip() == EXIT_COMMAND:
                break
    except KeyboardInterrupt:
        pass
    finally:
        server.shutdown()


if __name__ == "__main__":
    main()
