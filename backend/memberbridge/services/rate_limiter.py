"""Fixed-window request rate limiting over the ephemeral store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from memberbridge.core.exceptions import RateLimitExceededError, UpstreamUnavailableError
from memberbridge.services.ephemeral_store import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class RateLimiter:
    """
    Coarse per-key request caps (IP or user id).

    Fails open to the in-process fallback when the shared store is down, the
    same degradation the login guard uses.
    """

    KEY_PREFIX = "ratelimit:"

    def __init__(
        self,
        store: KeyValueStore,
        fallback: Optional[InMemoryKeyValueStore] = None,
    ) -> None:
        self._store = store
        self._fallback = fallback

    def check(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        full_key = f"{self.KEY_PREFIX}{window_seconds}:{key}"
        try:
            count = self._store.increment(full_key, window_seconds)
            store = self._store
        except UpstreamUnavailableError as exc:
            if self._fallback is None:
                raise
            logger.warning("Rate limit store unavailable, using in-process fallback: %s", exc.message)
            count = self._fallback.increment(full_key, window_seconds)
            store = self._fallback

        if count <= limit:
            return RateLimitDecision(allowed=True)
        return RateLimitDecision(allowed=False, retry_after=max(1, store.ttl(full_key)))

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        return self.check(key, limit, window_seconds).allowed

    def enforce(self, key: str, limit: int, window_seconds: int, message: str) -> None:
        """Raise RateLimitExceededError when ``key`` is over its limit."""
        decision = self.check(key, limit, window_seconds)
        if not decision.allowed:
            logger.warning("Rate limit hit for %s", key)
            raise RateLimitExceededError(message, retry_after=decision.retry_after)
