"""Per-username failed-login tracking and temporary lockout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from memberbridge.core.exceptions import UpstreamUnavailableError
from memberbridge.services.ephemeral_store import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    retry_after: int = 0


class LoginGuard:
    """
    Count failures per username (case-insensitive) within a window.

    Keyed by username rather than IP so credential stuffing from rotating
    addresses still trips the lock. When the shared store is unreachable the
    guard degrades to its in-process fallback, and lockout is then enforced
    per instance only.
    """

    KEY_PREFIX = "login_fail:"

    def __init__(
        self,
        store: KeyValueStore,
        fallback: Optional[InMemoryKeyValueStore] = None,
    ) -> None:
        self._store = store
        self._fallback = fallback

    @classmethod
    def key_for(cls, username: str) -> str:
        return f"{cls.KEY_PREFIX}{(username or '').strip().lower()}"

    def _call(self, op: Callable[[KeyValueStore], T]) -> T:
        try:
            return op(self._store)
        except UpstreamUnavailableError as exc:
            if self._fallback is None:
                raise
            logger.warning("Login guard store unavailable, using in-process fallback: %s", exc.message)
            return op(self._fallback)

    def record_failure(self, username: str, window_seconds: int) -> int:
        """Increment the failure counter; the first failure opens the window."""
        key = self.key_for(username)
        count = self._call(lambda s: s.increment(key, window_seconds))
        logger.info("Failed login %s for %s", count, key)
        return count

    def is_locked(self, username: str, max_attempts: int) -> LockStatus:
        key = self.key_for(username)

        def check(store: KeyValueStore) -> LockStatus:
            if store.get_count(key) < max_attempts:
                return LockStatus(locked=False)
            retry_after = store.ttl(key)
            if retry_after <= 0:
                return LockStatus(locked=False)
            return LockStatus(locked=True, retry_after=retry_after)

        return self._call(check)

    def reset(self, username: str) -> None:
        key = self.key_for(username)
        self._call(lambda s: s.delete(key))
