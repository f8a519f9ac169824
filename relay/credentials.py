import logging
import threading
from pathlib import Path
from typing import Dict

log = logging.getLogger("relay.credentials")

SEP = "#"   # one "username#secret" entry per line


class CredentialStore:
    """
    Flat username -> secret file, read in full at startup and appended to
    when an unknown username logs in for the first time.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._known: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        known: Dict[str, str] = {}
        if not self.path.exists():
            log.warning("no user details at %s, starting empty", self.path)
            return known
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.rstrip("\r\n")
                if SEP not in line:
                    continue  # blank or malformed line
                username, secret = line.split(SEP, 1)
                known[username] = secret
        log.info("loaded %d known users from %s", len(known), self.path)
        return known

    @staticmethod
    def valid_name(name: str) -> bool:
        return bool(name) and SEP not in name and "\n" not in name and "\r" not in name

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._known

    def verify(self, name: str, secret: str) -> bool:
        with self._lock:
            return self._known.get(name) == secret

    def persist_new_user(self, name: str, secret: str) -> None:
        '''
        This function appends a new user to the file and to the in-memory map.
        Raises ValueError for names that cannot be stored and OSError on I/O failure.
        '''
        if not self.valid_name(name) or "\n" in secret or "\r" in secret:
            raise ValueError(f"cannot store user {name!r}")
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(f"{name}{SEP}{secret}\n")
            self._known[name] = secret
        log.info("%s's details added to %s", name, self.path)

    def check(self, name: str, secret: str) -> bool:
        '''
        This function decides a login attempt.
        Unknown names are registered on the spot; known names must match.
        Storage failures reject the attempt.
        '''
        if not self.valid_name(name):
            return False
        with self._lock:
            if name in self._known:
                return self._known[name] == secret
            try:
                self.persist_new_user(name, secret)
            except (OSError, ValueError) as e:
                log.error("could not save details for %s: %s", name, e)
                return False
            return True
