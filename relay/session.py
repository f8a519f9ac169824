import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from common.messages import Envelope
from common.protocol import EnvelopeStream

Pair = Tuple[str, str]   # (original sender, original recipient)


class PendingDeliveryQueue:
    '''
    Image envelopes held for one session until that session answers the
    confirmation request.

    Other sessions' handler threads enqueue here while the owner dequeues,
    so every operation holds this queue's own lock. Entries for the same
    (sender, recipient) pair are resolved oldest first.
    '''
    def __init__(self):
        self._lock = threading.Lock()
        self._by_pair: Dict[Pair, Deque[Envelope]] = {}
        self._count = 0

    def add(self, sender: str, recipient: str, env: Envelope) -> None:
        with self._lock:
            self._by_pair.setdefault((sender, recipient), deque()).append(env)
            self._count += 1

    def take(self, sender: str, recipient: str) -> Optional[Envelope]:
        ''' Remove and return the oldest envelope held for the pair, or None '''
        with self._lock:
            q = self._by_pair.get((sender, recipient))
            if not q:
                return None
            env = q.popleft()
            if not q:
                del self._by_pair[(sender, recipient)]
            self._count -= 1
            return env

    def discard(self, sender: str, recipient: str) -> bool:
        return self.take(sender, recipient) is not None

    def remove(self, sender: str, recipient: str, env: Envelope) -> bool:
        ''' Remove this exact envelope wherever it sits in its pair's queue '''
        with self._lock:
            q = self._by_pair.get((sender, recipient))
            if not q:
                return False
            for i, held in enumerate(q):
                if held is env:
                    del q[i]
                    break
            else:
                return False
            if not q:
                del self._by_pair[(sender, recipient)]
            self._count -= 1
            return True

    def entries(self) -> List[Tuple[str, str, Envelope]]:
        with self._lock:
            return [(s, r, env) for (s, r), q in self._by_pair.items() for env in q]

    def clear(self) -> int:
        with self._lock:
            dropped, self._count = self._count, 0
            self._by_pair.clear()
            return dropped

    def __len__(self) -> int:
        with self._lock:
            return self._count


@dataclass(eq=False)
class Session:   # server-side state of one authenticated connection
    username: str
    stream: EnvelopeStream
    pending: PendingDeliveryQueue = field(default_factory=PendingDeliveryQueue)

    def send(self, env: Envelope) -> None:
        self.stream.send(env)
