"""
TTL-bounded, thread-safe key -> value store.

Every feature workflow keeps its per-user state in one of these, and the mode
manager keeps its ``ModeSession`` records in another. Keys are spread over a
fixed number of shards; each shard has its own lock, so unrelated users never
contend on a global lock. Locks are plain ``threading.Lock`` objects and are
never held across an ``await``: values are replaced whole, so a reader sees
either the old value or the new one, never something in between.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]


@dataclass(frozen=True)
class _Entry(Generic[V]):
    value: V
    touched_at: float


class _Shard(Generic[K, V]):
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: Dict[K, _Entry[V]] = {}


class SessionStore(Generic[K, V]):
    def __init__(
        self,
        ttl: float,
        *,
        clock: Optional[Clock] = None,
        shards: int = 16,
        name: str = "store",
    ) -> None:
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self.ttl = float(ttl)
        self.name = name
        self._clock: Clock = clock or time.time
        self._shards: List[_Shard[K, V]] = [_Shard() for _ in range(shards)]

    def _shard(self, key: K) -> _Shard[K, V]:
        return self._shards[hash(key) % len(self._shards)]

    def now(self) -> float:
        return self._clock()

    def get(self, key: K) -> Optional[V]:
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
        return entry.value if entry is not None else None

    def put(self, key: K, value: V) -> None:
        """Store ``value`` (replacing any previous one) and reset its touch time."""
        shard = self._shard(key)
        entry = _Entry(value, self._clock())
        with shard.lock:
            shard.entries[key] = entry

    def delete(self, key: K) -> Optional[V]:
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.pop(key, None)
        return entry.value if entry is not None else None

    def touch(self, key: K) -> bool:
        shard = self._shard(key)
        now = self._clock()
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None:
                return False
            shard.entries[key] = _Entry(entry.value, now)
            return True

    def last_touch(self, key: K) -> Optional[float]:
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
        return entry.touched_at if entry is not None else None

    def update(self, key: K, fn: Callable[[Optional[V]], Optional[V]]) -> Optional[V]:
        """Atomic read-modify-write of one key.

        ``fn`` receives the current value (or None) and returns the new value;
        returning None deletes the key. ``fn`` runs under the shard lock, so it
        must be a pure computation.
        """
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            new_value = fn(entry.value if entry is not None else None)
            if new_value is None:
                shard.entries.pop(key, None)
            else:
                shard.entries[key] = _Entry(new_value, self._clock())
            return new_value

    def is_expired(self, key: K, now: Optional[float] = None, ttl: Optional[float] = None) -> bool:
        touched = self.last_touch(key)
        if touched is None:
            return False
        now = self._clock() if now is None else now
        ttl = self.ttl if ttl is None else ttl
        return now - touched > ttl

    def delete_if_stale(self, key: K, now: float, ttl: float) -> Optional[V]:
        """Remove ``key`` only if it is still idle longer than ``ttl`` at ``now``."""
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None or now - entry.touched_at <= ttl:
                return None
            del shard.entries[key]
            return entry.value

    def sweep(self, now: Optional[float] = None, ttl: Optional[float] = None) -> List[Tuple[K, V]]:
        """Drop every entry idle for longer than ``ttl``; returns what was removed."""
        now = self._clock() if now is None else now
        ttl = self.ttl if ttl is None else ttl
        removed: List[Tuple[K, V]] = []
        for shard in self._shards:
            with shard.lock:
                stale = [k for k, e in shard.entries.items() if now - e.touched_at > ttl]
                for k in stale:
                    removed.append((k, shard.entries.pop(k).value))
        return removed

    def snapshot(self) -> List[Tuple[K, V, float]]:
        items: List[Tuple[K, V, float]] = []
        for shard in self._shards:
            with shard.lock:
                items.extend((k, e.value, e.touched_at) for k, e in shard.entries.items())
        return items

    def __contains__(self, key: object) -> bool:
        shard = self._shard(key)  # type: ignore[arg-type]
        with shard.lock:
            return key in shard.entries

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total
