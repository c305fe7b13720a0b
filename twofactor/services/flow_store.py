"""
In-process store for multi-step flows (enrollment wizards, login challenges).

Flows hold nothing durable: dropping one is the same as the user abandoning
it. Entries expire after a sliding TTL; expired entries are dropped on
lookup and swept on every insert, so flows that are never looked up again
do not pile up. A multi-worker deployment would back this with Redis instead.
"""

import threading
from datetime import datetime, timedelta
from typing import Generic, Hashable, TypeVar

from twofactor.utils.clock import Clock, system_clock

T = TypeVar("T")


class FlowStore(Generic[T]):
    def __init__(self, ttl: timedelta, clock: Clock = system_clock):
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[Hashable, tuple[T, datetime]] = {}
        self._lock = threading.Lock()

    def _sweep(self, now: datetime) -> int:
        # Caller holds the lock
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def put(self, key: Hashable, flow: T) -> T:
        now = self.clock.now()
        with self._lock:
            self._sweep(now)
            self._entries[key] = (flow, now + self.ttl)
        return flow

    def get(self, key: Hashable) -> T | None:
        """Return the flow and extend its lifetime, or None if absent or expired."""
        now = self.clock.now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            flow, expires_at = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            self._entries[key] = (flow, now + self.ttl)
            return flow

    def pop(self, key: Hashable) -> T | None:
        with self._lock:
            entry = self._entries.pop(key, None)
        return entry[0] if entry else None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
