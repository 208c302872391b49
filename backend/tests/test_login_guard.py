import pytest

from memberbridge.core.exceptions import UpstreamUnavailableError
from memberbridge.services.ephemeral_store import InMemoryKeyValueStore
from memberbridge.services.login_guard import LoginGuard


class DownStore:
    """Shared store that is unreachable"""

    def increment(self, key, ttl_seconds):
        raise UpstreamUnavailableError("redis", "connection refused")

    def get_count(self, key):
        raise UpstreamUnavailableError("redis", "connection refused")

    def ttl(self, key):
        raise UpstreamUnavailableError("redis", "connection refused")

    def delete(self, key):
        raise UpstreamUnavailableError("redis", "connection refused")


def test_locks_after_threshold():
    guard = LoginGuard(InMemoryKeyValueStore())
    for _ in range(4):
        guard.record_failure("alice", 1800)
    assert guard.is_locked("alice", 5).locked is False

    guard.record_failure("alice", 1800)
    status = guard.is_locked("alice", 5)
    assert status.locked is True
    assert 0 < status.retry_after <= 1800


def test_username_is_case_insensitive():
    guard = LoginGuard(InMemoryKeyValueStore())
    for name in ("Alice", "ALICE", "alice ", "aLiCe", "alice"):
        guard.record_failure(name, 1800)
    assert guard.is_locked("alice", 5).locked is True
    assert guard.is_locked("bob", 5).locked is False


def test_reset_clears_failures():
    guard = LoginGuard(InMemoryKeyValueStore())
    for _ in range(5):
        guard.record_failure("alice", 1800)
    guard.reset("alice")
    assert guard.is_locked("alice", 5).locked is False


def test_window_expiry_unlocks(monkeypatch):
    clock = {"now": 1000.0}
    monkeypatch.setattr("memberbridge.services.ephemeral_store.time.time", lambda: clock["now"])
    guard = LoginGuard(InMemoryKeyValueStore())
    for _ in range(5):
        guard.record_failure("alice", 60)
    assert guard.is_locked("alice", 5).locked is True

    clock["now"] += 61
    assert guard.is_locked("alice", 5).locked is False


def test_falls_back_when_store_is_down():
    fallback = InMemoryKeyValueStore()
    guard = LoginGuard(DownStore(), fallback=fallback)
    for _ in range(5):
        guard.record_failure("alice", 1800)
    assert guard.is_locked("alice", 5).locked is True
    assert fallback.get_count(LoginGuard.key_for("alice")) == 5


def test_store_outage_without_fallback_propagates():
    guard = LoginGuard(DownStore())
    with pytest.raises(UpstreamUnavailableError):
        guard.record_failure("alice", 1800)
