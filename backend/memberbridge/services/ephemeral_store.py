"""Key-value stores with TTL semantics for short-lived counters."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import redis
from redis.exceptions import RedisError

from memberbridge.core.exceptions import UpstreamUnavailableError


class KeyValueStore(Protocol):
    """
    Minimal counter store used by the login guard and rate limiter.

    ``increment`` MUST be atomic across every process sharing the store.
    """

    def increment(self, key: str, ttl_seconds: int) -> int: ...
    def get_count(self, key: str) -> int: ...
    def ttl(self, key: str) -> int: ...
    def delete(self, key: str) -> None: ...


@dataclass
class _Entry:
    count: int
    expires_at: float


class InMemoryKeyValueStore:
    """Process-local store. Counters are not shared between instances."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _live(self, key: str, now: float) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def increment(self, key: str, ttl_seconds: int) -> int:
        now = time.time()
        with self._lock:
            entry = self._live(key, now)
            if entry is None:
                # TTL starts with the first hit of a fresh window
                entry = _Entry(count=0, expires_at=now + ttl_seconds)
                self._entries[key] = entry
            entry.count += 1
            return entry.count

    def get_count(self, key: str) -> int:
        with self._lock:
            entry = self._live(key, time.time())
            return entry.count if entry else 0

    def ttl(self, key: str) -> int:
        now = time.time()
        with self._lock:
            entry = self._live(key, now)
            if entry is None:
                return 0
            return max(0, math.ceil(entry.expires_at - now))

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


class RedisKeyValueStore:
    """
    Redis-backed store shared by all instances.

    :param client: A connected ``redis.Redis`` client.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._r = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 2.0) -> "RedisKeyValueStore":
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )
        return cls(client)

    def increment(self, key: str, ttl_seconds: int) -> int:
        try:
            pipe = self._r.pipeline(transaction=True)
            # Only the first hit of a window creates the key and its expiry;
            # INCR keeps the existing TTL.
            pipe.set(key, 0, ex=ttl_seconds, nx=True)
            pipe.incr(key)
            _, count = pipe.execute()
        except RedisError as exc:
            raise UpstreamUnavailableError("redis", str(exc)) from exc
        return int(count)

    def get_count(self, key: str) -> int:
        try:
            raw = self._r.get(key)
        except RedisError as exc:
            raise UpstreamUnavailableError("redis", str(exc)) from exc
        return int(raw) if raw else 0

    def ttl(self, key: str) -> int:
        try:
            remaining = self._r.ttl(key)
        except RedisError as exc:
            raise UpstreamUnavailableError("redis", str(exc)) from exc
        return remaining if remaining and remaining > 0 else 0

    def delete(self, key: str) -> None:
        try:
            self._r.delete(key)
        except RedisError as exc:
            raise UpstreamUnavailableError("redis", str(exc)) from exc

    def ping(self) -> bool:
        try:
            return bool(self._r.ping())
        except RedisError:
            return False
