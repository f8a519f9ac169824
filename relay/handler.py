import dataclasses
import logging
import threading
from typing import Optional

from common.messages import (CLIENT_TO_RELAY, Envelope, MessageKind, ProtocolError,
                             RELAY_NAME)
from common.protocol import EnvelopeStream
from relay.credentials import CredentialStore
from relay.dispatcher import Dispatcher
from relay.registry import DuplicateUserError, SessionRegistry
from relay.session import Session

log = logging.getLogger("relay.handler")

K = MessageKind


class SessionHandler:
    '''
    Serves one connected peer from login to disconnect.

    The handler thread is the only reader of its stream. It logs the peer in,
    then reacts to one envelope at a time until the peer asks to close, the
    connection drops, or the relay shuts down. Whatever ends the session,
    close() unregisters the username before the socket is released.
    '''

    def __init__(self, stream: EnvelopeStream, registry: SessionRegistry,
                 credentials: CredentialStore, dispatcher: Optional[Dispatcher] = None):
        self.stream = stream
        self.registry = registry
        self.credentials = credentials
        self.dispatcher = dispatcher or Dispatcher(registry)
        self.session: Optional[Session] = None
        self._close_lock = threading.Lock()
        self._closed = False

    @property
    def username(self) -> Optional[str]:
        return self.session.username if self.session else None

    @property
    def closed(self) -> bool:
        return self._closed

    def _next(self) -> Optional[Envelope]:
        ''' Read the next envelope; undecodable input is logged and yields None '''
        try:
            return self.stream.receive()
        except ProtocolError as e:
            log.warning("protocol violation from %s: %s",
                        self.username or self.stream.peer_name(), e)
            return None

    def authenticate(self) -> bool:
        '''
        Read registration requests until one is accepted.
        Output: True once the peer is registered, False if the handler was closed meanwhile
        Raises ConnectionError/OSError when the peer goes away.
        '''
        while not self._closed:
            env = self._next()
            if env is None:
                continue
            if env.kind is K.CLOSE_CONNECTION:
                self.stream.send(Envelope(K.CLOSE_CONNECTION, RELAY_NAME, env.sender, ""))
                return False
            if env.kind is not K.REGISTRATION_REQUEST:
                log.warning("ignoring %s before login from %s", env.kind.value, self.stream.peer_name())
                continue

            username = env.sender
            accepted = self.credentials.check(username, env.payload)
            if accepted:
                session = Session(username, self.stream)
                try:
                    self.registry.register(username, session)
                except DuplicateUserError:
                    log.warning("%s is already logged in elsewhere", username)
                    accepted = False
                else:
                    with self._close_lock:
                        closed = self._closed
                        if not closed:
                            self.session = session
                    if closed:
                        # close() ran before the session was attached and could not unregister it
                        self.registry.unregister(username, session)
                        return False
            else:
                log.warning("%s entered incorrect credentials", username)

            self.stream.send(Envelope(K.REGISTRATION_RESPONSE, RELAY_NAME, username, accepted))
            if accepted:
                log.info("%s logged in with correct credentials", username)
                return True
        return False

    def handle(self, env: Envelope) -> bool:
        '''
        This function performs the action one inbound envelope asks for.
        Input:
            - env: envelope read from this session's stream
        Output: False when the session should end, True otherwise
        '''
        if env.kind not in CLIENT_TO_RELAY or env.kind is K.REGISTRATION_REQUEST:
            log.warning("unexpected %s from %s, ignored", env.kind.value, self.username)
            return True
        if env.sender != self.username:
            # peers only ever speak for themselves
            env = dataclasses.replace(env, sender=self.username)

        kind = env.kind
        if kind is K.ONLINE_CLIENTS_REQUEST:
            self.session.send(self.dispatcher.roster(self.username))
            log.debug("sent online clients to %s", self.username)
        elif kind is K.TEXT_TRANSFER_REQUEST:
            self.dispatcher.forward_text(env)
        elif kind is K.IMAGE_TRANSFER_REQUEST:
            self.dispatcher.offer_image(env)
        elif kind is K.IMAGE_TRANSFER_CONFIRMATION_RESPONSE:
            self.dispatcher.resolve_confirmation(self.session, env)
        elif kind is K.TEXT_SEND_TO_ALL_REQUEST:
            self.dispatcher.broadcast_text(env)
        elif kind is K.IMAGE_SEND_TO_ALL_REQUEST:
            self.dispatcher.broadcast_image(env)
        elif kind is K.CLOSE_CONNECTION:
            self.session.send(Envelope(K.CLOSE_CONNECTION, RELAY_NAME, self.username, ""))
            log.info("%s closed the connection", self.username)
            return False
        return True

    def run(self) -> None:
        ''' Thread target: login, then the receive loop; always ends in close() '''
        try:
            if not self.authenticate():
                return
            while not self._closed:
                env = self._next()
                if env is not None and not self.handle(env):
                    break
        except (ConnectionError, OSError) as e:
            if not self._closed:
                log.info("connection to %s lost: %s", self.username or self.stream.peer_name(), e)
        except Exception:
            log.exception("session %s failed", self.username or self.stream.peer_name())
        finally:
            self.close()

    def close(self) -> None:
        ''' Unregister and release the connection; only the first call does anything '''
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            session = self.session
        if session is not None:
            self.registry.unregister(session.username, session)
            dropped = session.pending.clear()
            if dropped:
                log.debug("dropped %d unanswered image offers for %s", dropped, session.username)
        self.stream.close()

    def shutdown(self) -> None:
        ''' Tell the peer the relay is going away, then close '''
        if self._closed:
            return
        try:
            self.stream.send(Envelope(K.CLOSE_CONNECTION, RELAY_NAME, self.username or "", "Shut Down"))
        except OSError:
            pass  # peer already gone
        self.close()
