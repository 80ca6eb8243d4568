from __future__ import annotations

import contextlib
import threading
from concurrent.futures import Future
from typing import Dict, Iterator, Optional


class LockHold:
    """
    A held per-username lock.

    release_after() hands the release over to a future: the lock is freed when
    that future finishes instead of when the with-block exits.
    """

    def __init__(self, lock: threading.Lock):
        self._lock = lock
        self.pending: Optional[Future] = None

    def release_after(self, fut: Future) -> None:
        self.pending = fut

    def _exit(self) -> None:
        if self.pending is None:
            self._lock.release()
        else:
            self.pending.add_done_callback(lambda _f: self._lock.release())


class KeyedLocks:
    """
    One mutex per username, created on first use and kept for the process lifetime.

    The arena itself is guarded by a short-lived lock; the per-key lock is held
    for a whole lifecycle transition, and past it while a host call that timed
    out is still running.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lk = self._locks.get(key)
            if lk is None:
                lk = threading.Lock()
                self._locks[key] = lk
            return lk

    @contextlib.contextmanager
    def hold(self, key: str) -> Iterator[LockHold]:
        lk = self.lock_for(key)
        lk.acquire()
        h = LockHold(lk)
        try:
            yield h
        finally:
            h._exit()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
