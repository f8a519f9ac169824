import logging
import socket
import threading
from typing import Callable, List, Optional

from common.messages import BROADCAST, Envelope, MessageKind, ProtocolError, RELAY_NAME
from common.protocol import EnvelopeStream

log = logging.getLogger("peer")

K = MessageKind


class PeerConnection:
    ''' Peer end of the relay connection: login, sends, and the receive loop '''

    def __init__(self, host: str, port: int,
                 on_text: Optional[Callable[[str, str, bool], None]] = None,
                 on_confirmation: Optional[Callable[[str, str], bool]] = None,
                 on_image: Optional[Callable[[str, bytes], None]] = None,
                 on_closed: Optional[Callable[[str], None]] = None):
        self.host, self.port = host, port
        self.username: Optional[str] = None
        self.stream: Optional[EnvelopeStream] = None
        # callbacks run on the receive thread
        self.on_text = on_text                  # (sender, text, to_everyone)
        self.on_confirmation = on_confirmation  # (sender, prompt) -> accept?
        self.on_image = on_image                # (sender, image bytes)
        self.on_closed = on_closed              # (reason)
        self._backlog: List[Envelope] = []   # envelopes that arrived before login finished
        self._roster: List[str] = []
        self._roster_version = 0
        self._roster_cond = threading.Condition()
        self.recv_thread: Optional[threading.Thread] = None
        self.running = False
        self._closed_notified = False
        self._confirming = False   # receive thread is waiting on on_confirmation

    def connect(self, sock: Optional[socket.socket] = None):
        ''' Open the TCP connection (or adopt an already connected socket) '''
        if sock is None:
            sock = socket.create_connection((self.host, self.port))
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)  # send envelopes immediately
        self.stream = EnvelopeStream(sock)

    def login(self, username: str, secret: str) -> bool:
        '''
        Send one registration request and wait for the relay's verdict.
        Must be called before start(); anything the relay sends ahead of the
        verdict is kept and handled once the receive loop starts.
        '''
        self.stream.send(Envelope(K.REGISTRATION_REQUEST, username, RELAY_NAME, secret))
        while True:
            try:
                env = self.stream.receive()
            except ProtocolError as e:
                log.warning("dropping bad envelope: %s", e)
                continue
            if env.kind is K.REGISTRATION_RESPONSE:
                if env.payload:
                    self.username = username
                return env.payload
            self._backlog.append(env)

    def start(self):
        self.running = True
        self.recv_thread = threading.Thread(target=self._recv_loop, name="peer-recv", daemon=True)
        self.recv_thread.start()

    def send(self, env: Envelope):
        self.stream.send(env)

    def send_text(self, to_user: str, text: str):
        self.send(Envelope(K.TEXT_TRANSFER_REQUEST, self.username, to_user, text))

    def send_image(self, to_user: str, data: bytes):
        self.send(Envelope(K.IMAGE_TRANSFER_REQUEST, self.username, to_user, data))

    def broadcast_text(self, text: str):
        self.send(Envelope(K.TEXT_SEND_TO_ALL_REQUEST, self.username, BROADCAST, text))

    def broadcast_image(self, data: bytes):
        self.send(Envelope(K.IMAGE_SEND_TO_ALL_REQUEST, self.username, BROADCAST, data))

    def answer_confirmation(self, sender: str, accept: bool):
        ''' Tell the relay whether to deliver the image sender offered us '''
        self.send(Envelope(K.IMAGE_TRANSFER_CONFIRMATION_RESPONSE, self.username, sender, bool(accept)))

    def request_roster(self, timeout: Optional[float] = 5.0) -> List[str]:
        '''
        Ask the relay who else is online and wait for the answer.
        Keeps waiting while the receive thread is held up by an image question.
        Output: the refreshed roster (the cached one if no answer came in time)
        '''
        with self._roster_cond:
            seen = self._roster_version
            self.send(Envelope(K.ONLINE_CLIENTS_REQUEST, self.username, RELAY_NAME, "update"))
            answered = lambda: self._roster_version != seen or not self.running
            while not self._roster_cond.wait_for(answered, timeout):
                # the response queues behind an image question the user has not answered yet
                if not self._confirming:
                    log.warning("no online clients response within %ss", timeout)
                    break
            return list(self._roster)

    def roster(self) -> List[str]:
        with self._roster_cond:
            return list(self._roster)

    def is_online(self, username: str) -> bool:
        with self._roster_cond:
            return username in self._roster

    def close(self, timeout: float = 2.0):
        ''' Ask the relay to close, wait briefly for its acknowledgement, release the socket '''
        if self.stream is None:
            return
        if self.running:
            try:
                self.send(Envelope(K.CLOSE_CONNECTION, self.username or "", RELAY_NAME, ""))
            except OSError:
                pass  # relay already gone
            if self.recv_thread is not None and self.recv_thread is not threading.current_thread():
                self.recv_thread.join(timeout)
        self.running = False
        self.stream.close()

    def _dispatch(self, env: Envelope):
        kind = env.kind
        if kind in (K.TEXT_TRANSFER_RECEIPT, K.TEXT_SEND_TO_ALL_RECEIPT):
            self._callback(self.on_text, env.sender, env.payload, kind is K.TEXT_SEND_TO_ALL_RECEIPT)
        elif kind is K.IMAGE_TRANSFER_CONFIRMATION_REQUEST:
            self._confirming = True
            try:
                accept = bool(self._callback(self.on_confirmation, env.sender, env.payload))
            finally:
                self._confirming = False
            self.answer_confirmation(env.sender, accept)
        elif kind is K.IMAGE_TRANSFER_RECEIPT:
            self._callback(self.on_image, env.sender, env.payload)
        elif kind is K.ONLINE_CLIENTS_RESPONSE:
            with self._roster_cond:
                self._roster = list(env.payload)
                self._roster_version += 1
                self._roster_cond.notify_all()
        elif kind is K.CLOSE_CONNECTION:
            self.running = False
            self._notify_closed(env.payload or "Connection closed.")
        else:
            log.warning("unknown message kind %s from %s", kind.value, env.sender)

    def _callback(self, cb, *args):
        ''' Run a user callback; its failure is logged and never ends the receive loop '''
        if cb is None:
            return None
        try:
            return cb(*args)
        except Exception:
            log.exception("callback %s failed", getattr(cb, "__name__", cb))
            return None

    def _notify_closed(self, reason: str):
        if self._closed_notified:
            return
        self._closed_notified = True
        with self._roster_cond:
            self._roster_cond.notify_all()  # release anyone waiting for a roster
        if self.on_closed:
            self.on_closed(reason)

    def _recv_loop(self):
        ''' Thread function to receive envelopes from the relay '''
        pending, self._backlog = self._backlog, []
        try:
            for env in pending:
                self._dispatch(env)
            while self.running:
                try:
                    env = self.stream.receive()
                except ProtocolError as e:
                    log.warning("dropping bad envelope: %s", e)
                    continue
                self._dispatch(env)
        except (ConnectionError, OSError) as e:
            if self.running:
                log.info("disconnected from relay: %s", e)
        finally:
            self.running = False
            self._notify_closed("Disconnected.")
            self.stream.close()
