"""
Key-value store for short-lived server state: refresh tokens, rate-limit
counters and per-user import locks.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis
from redis import exceptions as redis_exceptions

# Compare-and-delete, atomic on the server.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class KeyValueStore(Protocol):
    """Minimal expiring key-value interface."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def incr_window(self, key: str, window_seconds: int) -> int:
        """Increments a counter that expires `window_seconds` after its first hit."""
        ...

    def acquire_lock(self, key: str, ttl_seconds: int, token: str = "1") -> bool:
        """Sets `key` to `token` only if absent; returns whether this call took it."""
        ...

    def release_lock(self, key: str, token: str) -> bool:
        """Deletes `key` only while it still holds `token`."""
        ...


@dataclass
class InMemoryKeyValueStore:
    """Dictionary-backed store with lazy expiry."""

    clock: Callable[[], float] = time.monotonic
    entries: Dict[str, Tuple[str, float]] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[str, float]]:
        entry = self.entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self.clock():
            del self.entries[key]
            return None
        return entry

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self.entries[key] = (value, self.clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self.entries.pop(key, None)

    def incr_window(self, key: str, window_seconds: int) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self.entries[key] = ("1", self.clock() + window_seconds)
                return 1
            count = int(entry[0]) + 1
            self.entries[key] = (str(count), entry[1])
            return count

    def acquire_lock(self, key: str, ttl_seconds: int, token: str = "1") -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self.entries[key] = (token, self.clock() + ttl_seconds)
            return True

    def release_lock(self, key: str, token: str) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[0] != token:
                return False
            del self.entries[key]
            return True

    def reset(self) -> None:
        with self._lock:
            self.entries.clear()


@dataclass
class RedisKeyValueStore:
    """Redis-backed store; keys are namespaced with `key_prefix`."""

    url: str
    key_prefix: str = "schedule:"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _reconnect(self) -> None:
        # Connection resets can happen on managed Redis.
        self.client = redis.Redis.from_url(self.url, decode_responses=True)

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(self._key(key))
        except redis_exceptions.ConnectionError:
            self._reconnect()
            return self.client.get(self._key(key))

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.client.set(self._key(key), value, ex=ttl_seconds)

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))

    def incr_window(self, key: str, window_seconds: int) -> int:
        full_key = self._key(key)
        pipe = self.client.pipeline()
        pipe.incr(full_key)
        pipe.expire(full_key, window_seconds, nx=True)
        count, _ = pipe.execute()
        return int(count)

    def acquire_lock(self, key: str, ttl_seconds: int, token: str = "1") -> bool:
        return bool(self.client.set(self._key(key), token, nx=True, ex=ttl_seconds))

    def release_lock(self, key: str, token: str) -> bool:
        return bool(self.client.eval(_RELEASE_SCRIPT, 1, self._key(key), token))
