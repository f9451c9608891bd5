"""Per-scope locks (one per profile or bill id) shared by the whole process."""
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Dict, Iterator


class ScopeLocks:
    def __init__(self):
        self._lock = Lock()
        self._locks: Dict[str, RLock] = {}

    def get(self, scope_id: str) -> RLock:
        with self._lock:
            lk = self._locks.get(scope_id)
            if lk is None:
                lk = RLock()
                self._locks[scope_id] = lk
            return lk

    def discard(self, scope_id: str) -> None:
        with self._lock:
            self._locks.pop(scope_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._locks)


_registry = ScopeLocks()


@contextmanager
def scope_lock(scope_id: str) -> Iterator[None]:
    with _registry.get(str(scope_id)):
        yield


def forget_scope(scope_id: str) -> None:
    _registry.discard(str(scope_id))
