"""
Unit tests for toolmount.core.tools.registry - Mount Cache.
"""

import threading
from datetime import UTC, datetime

import pytest


@pytest.fixture
def echo(snapshot_factory):
    return snapshot_factory(name="echo")


# ============================================================================
# Mount / evict
# ============================================================================


class TestMountCache:
    def test_starts_empty(self, cache):
        assert len(cache) == 0
        assert cache.list() == []
        assert cache.generation == 0

    def test_mount_and_lookup(self, cache, echo):
        entry = cache.mount(echo)

        assert entry.id == echo.id
        assert entry.invocation_count == 0
        assert cache.get(echo.id) is entry
        assert cache.get_by_name("echo") is entry
        assert cache.is_mounted(echo.id)
        assert "echo" in cache
        assert cache.generation == 1

    def test_mount_is_idempotent(self, cache, echo):
        cache.mount(echo)
        cache.record_invocation(echo.id)
        entry = cache.mount(echo)

        assert len(cache) == 1
        assert entry.invocation_count == 1

    def test_evict(self, cache, echo):
        cache.mount(echo)
        assert cache.evict(echo.id) is True
        assert cache.get(echo.id) is None
        assert cache.get_by_name("echo") is None
        assert "echo" not in cache

    def test_evict_unknown(self, cache, echo):
        generation = cache.generation
        assert cache.evict(echo.id) is False
        assert cache.generation == generation

    def test_list_is_sorted_by_name(self, cache, snapshot_factory):
        for name in ("zeta", "alpha", "mid"):
            cache.mount(snapshot_factory(name=name))
        assert [tool.name for tool in cache.list()] == ["alpha", "mid", "zeta"]

    def test_clear(self, cache, echo):
        cache.mount(echo)
        cache.clear()
        assert len(cache) == 0
        assert cache.get_by_name("echo") is None


# ============================================================================
# Replace / load
# ============================================================================


class TestReplaceAndLoad:
    def test_replace_keeps_counters(self, cache, echo):
        cache.mount(echo)
        cache.record_invocation(echo.id)

        updated = echo.model_copy(update={"handler": "return {'v': 2}", "version": 2})
        entry = cache.replace(updated)

        assert entry.primitive.version == 2
        assert entry.invocation_count == 1
        assert cache.get(echo.id).primitive.handler == "return {'v': 2}"

    def test_replace_renamed_primitive(self, cache, echo):
        cache.mount(echo)
        cache.replace(echo.model_copy(update={"name": "echo_v2"}))

        assert cache.get_by_name("echo") is None
        assert cache.get_by_name("echo_v2").id == echo.id

    def test_replace_unmounted_is_noop(self, cache, echo):
        assert cache.replace(echo) is None
        assert len(cache) == 0

    def test_load_rebuilds(self, cache, snapshot_factory):
        kept = snapshot_factory(name="kept")
        dropped = snapshot_factory(name="dropped")
        cache.mount(kept)
        cache.mount(dropped)
        cache.record_invocation(kept.id)

        count = cache.load([kept, snapshot_factory(name="fresh")])

        assert count == 2
        assert cache.get(dropped.id) is None
        assert cache.get(kept.id).invocation_count == 1
        assert cache.get_by_name("fresh") is not None

    def test_mount_with_older_snapshot_keeps_newer_entry(self, cache, echo):
        # mount() read v1, then an update published v2 before mount reached the cache
        cache.mount(echo)
        cache.replace(echo.model_copy(update={"handler": "return 2", "version": 2}))
        generation = cache.generation

        entry = cache.mount(echo)

        assert entry.primitive.version == 2
        assert cache.get(echo.id).primitive.handler == "return 2"
        assert cache.generation == generation

    def test_replace_with_older_snapshot_is_ignored(self, cache, echo):
        v3 = echo.model_copy(update={"handler": "return 3", "version": 3})
        cache.mount(v3)

        entry = cache.replace(echo.model_copy(update={"version": 2}))

        assert entry.primitive.version == 3
        assert cache.get_by_name("echo").primitive.handler == "return 3"

    def test_load_keeps_newer_entries(self, cache, echo):
        cache.mount(echo.model_copy(update={"version": 2, "handler": "return 2"}))

        cache.load([echo])

        assert cache.get(echo.id).primitive.version == 2


# ============================================================================
# Counters and listeners
# ============================================================================


class TestCountersAndListeners:
    def test_record_invocation(self, cache, echo):
        cache.mount(echo)
        generation = cache.generation
        at = datetime(2026, 1, 5, tzinfo=UTC)

        entry = cache.record_invocation(echo.id, at=at)

        assert entry.invocation_count == 1
        assert entry.last_invoked == at
        # Counters don't change what's exposed
        assert cache.generation == generation

    def test_record_invocation_after_evict(self, cache, echo):
        assert cache.record_invocation(echo.id) is None

    def test_listeners_receive_generation(self, cache, echo):
        seen: list[int] = []
        cache.add_listener(seen.append)

        cache.mount(echo)
        cache.evict(echo.id)
        cache.remove_listener(seen.append)
        cache.mount(echo)

        assert seen == [1, 2]

    def test_failing_listener_does_not_break_writes(self, cache, echo):
        def boom(generation: int) -> None:
            raise RuntimeError("listener failed")

        cache.add_listener(boom)
        cache.mount(echo)
        assert cache.is_mounted(echo.id)

    def test_concurrent_writers(self, cache, snapshot_factory):
        snapshots = [snapshot_factory(name=f"tool_{i}") for i in range(50)]

        def mount_all(chunk):
            for snapshot in chunk:
                cache.mount(snapshot)

        threads = [threading.Thread(target=mount_all, args=(snapshots[i::5],)) for i in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(cache) == 50
        assert cache.generation == 50
