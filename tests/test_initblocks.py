from __future__ import annotations

import threading
import time
from dataclasses import dataclass

import allure
import pytest

from slowquery.engine.initblocks import InitBlockCache
from slowquery.engine.registry import InitializerRegistry
from slowquery.errors import InitializationError

from conftest import CountingInitializer, RecordingInitBlock

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("Shared Resources"),
]


@dataclass
class GatedInitializer(CountingInitializer):
    """Holds every initializer call until the test releases the gate."""

    gate: threading.Event | None = None

    def init(self, app: str) -> RecordingInitBlock:
        assert self.gate is not None
        self.gate.wait(timeout=5)
        return CountingInitializer.init(self, app)


def _resolve_concurrently(cache: InitBlockCache, app: str, workers: int, gate: threading.Event):
    results: list[object] = []
    lock = threading.Lock()

    def _resolve() -> None:
        try:
            value: object = cache.resolve(app)
        except InitializationError as error:
            value = error
        with lock:
            results.append(value)

    threads = [threading.Thread(target=_resolve) for _ in range(workers)]
    for thread in threads:
        thread.start()
    time.sleep(0.3)
    gate.set()
    for thread in threads:
        thread.join(timeout=5)
    return results


def test_resolve_invokes_initializer_once_and_caches_block() -> None:
    registry = InitializerRegistry()
    initializer = CountingInitializer()
    registry.register("broadside", initializer)
    cache = InitBlockCache(registry)

    first = cache.resolve("broadside")
    second = cache.resolve("broadside")

    assert first is second
    assert initializer.calls == 1
    assert cache.cached("broadside") is True


def test_concurrent_first_resolution_is_single_flight() -> None:
    gate = threading.Event()
    registry = InitializerRegistry()
    initializer = GatedInitializer(gate=gate)
    registry.register("broadside", initializer)
    cache = InitBlockCache(registry)

    results = _resolve_concurrently(cache, "broadside", workers=8, gate=gate)

    assert initializer.calls == 1
    assert len(results) == 8
    assert all(result is initializer.blocks[0] for result in results)


def test_waiters_share_leader_failure_and_failure_is_not_cached() -> None:
    gate = threading.Event()
    registry = InitializerRegistry()
    initializer = GatedInitializer(gate=gate, fail_times=1)
    registry.register("broadside", initializer)
    cache = InitBlockCache(registry)

    results = _resolve_concurrently(cache, "broadside", workers=6, gate=gate)

    assert initializer.calls == 1
    assert len(results) == 6
    assert all(isinstance(result, InitializationError) for result in results)
    assert "backend for broadside is down" in str(results[0])
    assert cache.cached("broadside") is False

    block = cache.resolve("broadside")
    assert initializer.calls == 2
    assert block is initializer.blocks[0]


def test_resolve_without_registered_initializer_is_initialization_error() -> None:
    cache = InitBlockCache(InitializerRegistry())

    with pytest.raises(InitializationError, match="no initializer registered for app=ghost"):
        cache.resolve("ghost")


def test_initializer_without_shared_resources_is_cached_as_none() -> None:
    calls: list[str] = []

    class _NoneInitializer:
        def init(self, app: str) -> None:
            calls.append(app)

    registry = InitializerRegistry()
    registry.register("empty", _NoneInitializer())
    cache = InitBlockCache(registry)

    assert cache.resolve("empty") is None
    assert cache.resolve("empty") is None
    assert calls == ["empty"]
    assert cache.cached("empty") is True

    assert cache.close_all() == {}
    assert cache.cached("empty") is False
    assert cache.evict("empty") is False


def test_close_all_collects_failures_and_closes_remaining_blocks() -> None:
    class _BrokenBlock:
        def close(self) -> None:
            raise OSError("socket already gone")

    class _BrokenInitializer:
        def init(self, app: str) -> _BrokenBlock:
            return _BrokenBlock()

    registry = InitializerRegistry()
    healthy = CountingInitializer()
    registry.register("a-broken", _BrokenInitializer())
    registry.register("b-healthy", healthy)
    cache = InitBlockCache(registry)
    cache.resolve("a-broken")
    cache.resolve("b-healthy")

    failures = cache.close_all()

    assert list(failures) == ["a-broken"]
    assert isinstance(failures["a-broken"], OSError)
    assert healthy.blocks[0].closed is True
    assert cache.cached("a-broken") is False
    assert cache.cached("b-healthy") is False


def test_evict_closes_block_and_next_resolve_reinitializes() -> None:
    registry = InitializerRegistry()
    initializer = CountingInitializer()
    registry.register("broadside", initializer)
    cache = InitBlockCache(registry)
    first = cache.resolve("broadside")

    assert cache.evict("broadside") is True
    assert first.closed is True
    assert cache.evict("broadside") is False

    second = cache.resolve("broadside")
    assert second is not first
    assert initializer.calls == 2
