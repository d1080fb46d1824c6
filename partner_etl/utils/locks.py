"""
Per-key locking.

Serializes work per job id, per batch id and per document key without a
single lock shared by unrelated keys. A key's lock exists only while some
thread holds or waits for it, so a long-running worker does not accumulate
one lock per file it has ever seen.
"""

import threading
from collections.abc import Hashable, Iterable, Iterator
from contextlib import ExitStack, contextmanager


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """Re-entrant lock per key, created on first use and dropped after the last release."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, _KeyLock] = {}

    def _checkout(self, key: Hashable) -> _KeyLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: Hashable, entry: _KeyLock) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        entry = self._checkout(key)
        try:
            with entry.lock:
                yield
        finally:
            self._checkin(key, entry)

    @contextmanager
    def hold_many(self, keys: Iterable[Hashable]) -> Iterator[None]:
        """Acquire several keys in sorted order so two holders never deadlock."""
        ordered = sorted(set(keys), key=repr)
        with ExitStack() as stack:
            for key in ordered:
                stack.enter_context(self.hold(key))
            yield

    def __len__(self) -> int:
        """Keys currently held or waited on."""
        with self._guard:
            return len(self._locks)
