import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from relay.session import Session

log = logging.getLogger("relay.registry")


class DuplicateUserError(Exception):
    """Raised when a username is registered while it is already online."""
    pass


class ReadWriteLock:
    '''
    Readers share the lock, a writer holds it alone.
    Waiting writers block new readers so a steady stream of roster queries
    cannot starve connect/disconnect.
    '''
    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SessionRegistry:
    # Directory of every authenticated, connected session, keyed by username
    def __init__(self):
        self.lock = ReadWriteLock()
        self.sessions: Dict[str, Session] = {}

    def register(self, username: str, session: Session) -> None:
        ''' This function adds a session; raises DuplicateUserError if the name is online '''
        with self.lock.write():
            if username in self.sessions:
                raise DuplicateUserError(username)
            self.sessions[username] = session
        log.info("%s is online (%d connected)", username, len(self))

    def unregister(self, username: str, session: Optional[Session] = None) -> Optional[Session]:
        '''
        This function removes a session by username.
        Inputs:
            - username: name to remove
            - session: when given, only remove the entry if it is this session
        Output: the removed session, or None when nothing was removed
        '''
        with self.lock.write():
            current = self.sessions.get(username)
            if current is None or (session is not None and current is not session):
                return None
            session = self.sessions.pop(username)
        if session is not None:
            log.info("%s went offline", username)
        return session

    def lookup(self, username: str) -> Optional[Session]:
        with self.lock.read():
            return self.sessions.get(username)

    def snapshot_others(self, excluding: str) -> List[str]:
        ''' This function returns a copy of every online username except the given one '''
        with self.lock.read():
            return [u for u in self.sessions if u != excluding]

    def sessions_except(self, excluding: str) -> List[Session]:
        ''' Snapshot of broadcast targets; callers do their I/O after the lock is released '''
        with self.lock.read():
            return [s for u, s in self.sessions.items() if u != excluding]

    def all_sessions(self) -> List[Session]:
        with self.lock.read():
            return list(self.sessions.values())

    def __contains__(self, username: str) -> bool:
        with self.lock.read():
            return username in self.sessions

    def __len__(self) -> int:
        with self.lock.read():
            return len(self.sessions)
