"""Tests for the time-bounded permission cache."""

import pytest

from dictation.helper.permissions import PermissionCache


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_empty_cache_is_stale() -> None:
    cache = PermissionCache(ttl_seconds=10)

    assert cache.is_fresh() is False
    assert cache.get() is None


def test_value_expires_after_ttl() -> None:
    clock = _Clock()
    cache = PermissionCache(ttl_seconds=10, clock=clock)
    cache.set(True)

    clock.now += 9
    assert cache.get() is True

    clock.now += 1
    assert cache.is_fresh() is False
    assert cache.get() is None


def test_invalidate_forgets_value() -> None:
    cache = PermissionCache(ttl_seconds=10)
    cache.set(False)

    cache.invalidate()

    assert cache.value is None
    assert cache.checked_at is None
    assert cache.is_fresh() is False


@pytest.mark.asyncio
async def test_get_or_refresh_runs_check_only_when_stale() -> None:
    clock = _Clock()
    cache = PermissionCache(ttl_seconds=10, clock=clock)
    answers = [True, False]
    calls = []

    async def check() -> bool:
        calls.append(clock.now)
        return answers[len(calls) - 1]

    assert await cache.get_or_refresh(check) is True
    assert await cache.get_or_refresh(check) is True
    assert len(calls) == 1

    clock.now += 11
    assert await cache.get_or_refresh(check) is False
    assert len(calls) == 2
