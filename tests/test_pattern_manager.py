"""Tests for PatternManager."""

import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest
from conftest import CountingRecordStore

from bridge.config import PatternSettings
from bridge.exceptions import DiscoveryError, NotFoundError, StorageError
from bridge.models import CACHE_VERSION, PatternCache, PatternChange
from bridge.patterns import PatternManager
from bridge.patterns.incremental import UpdateResult
from bridge.patterns.manager import Idle, Pending
from bridge.storage import VectorStore

A_PATH = ["L1-1", "L1-1.1", "L1-1.1.1"]


class ReadOnlyRecordStore(CountingRecordStore):
    """Store that saves records but rejects every update."""

    async def update_record(self, record):
        self.updated.append(record.id)
        raise StorageError("store is read-only")


@pytest.fixture
async def manager(record_store, settings) -> PatternManager:
    manager = PatternManager(records=record_store, settings=settings)
    await manager.initialize()
    yield manager
    await manager.close()


def _read_cache(settings) -> dict:
    return json.loads(settings.pattern_cache_path.read_text())


async def _capture(store, make_record, record_id, vector=(1.0, 0.02, 0.02)):
    record = make_record(
        "Quiet morning walk by the river once more", id=record_id, embedding=list(vector)
    )
    await store.save_record(record)
    return record


class TestInitialize:
    """Tests for loading and first discovery."""

    async def test_discovers_and_persists(self, manager, settings):
        """A missing snapshot runs discovery and writes one."""
        assert [p.id for p in await manager.get_patterns()] == ["L1-1", "L1-2"]
        data = _read_cache(settings)
        assert data["version"] == CACHE_VERSION
        assert [p["id"] for p in data["patterns"]] == ["L1-1", "L1-2"]
        assert manager.last_updated is not None

    async def test_records_retagged(self, manager, record_store):
        """Records learn which patterns they belong to."""
        record = await record_store.get_record("exp_a0")
        assert record.pattern_ids == A_PATH
        assert record.pattern_tags[0] == "🌅 quiet-morning-river"
        assert record.pattern_confidence > 90

    async def test_loads_existing_snapshot(self, manager, settings, grouped_records):
        """A fresh snapshot is loaded without rediscovery or re-tagging."""
        store = CountingRecordStore(grouped_records)
        second = PatternManager(records=store, settings=settings)
        await second.initialize()
        assert [p.id for p in await second.get_patterns()] == ["L1-1", "L1-2"]
        assert store.updated == []

    async def test_wrong_version_rediscovers(self, record_store, settings):
        """A snapshot from another version is ignored."""
        settings.pattern_cache_path.write_text(json.dumps({"version": 1, "patterns": []}))
        manager = PatternManager(records=record_store, settings=settings)
        await manager.initialize()
        assert len(await manager.get_patterns()) == 2
        assert _read_cache(settings)["version"] == CACHE_VERSION

    async def test_corrupt_snapshot_rediscovers(self, record_store, settings):
        """An unreadable snapshot is treated as missing."""
        settings.pattern_cache_path.write_text("{not json")
        manager = PatternManager(records=record_store, settings=settings)
        await manager.initialize()
        assert len(await manager.get_patterns()) == 2

    async def test_undecodable_snapshot_rediscovers(self, record_store, settings):
        """A snapshot that is not valid UTF-8 is treated as missing."""
        settings.pattern_cache_path.write_bytes(b"\xff\xfe\x00garbage")
        manager = PatternManager(records=record_store, settings=settings)
        await manager.initialize()
        assert len(await manager.get_patterns()) == 2
        assert _read_cache(settings)["version"] == CACHE_VERSION

    async def test_concurrent_reads_wait_for_startup(self, record_store, settings):
        """Reads racing the first initialize see the discovered cache."""
        manager = PatternManager(records=record_store, settings=settings)
        first, second = await asyncio.gather(manager.get_patterns(), manager.get_patterns())
        assert [p.id for p in first] == ["L1-1", "L1-2"]
        assert [p.id for p in second] == ["L1-1", "L1-2"]

    async def test_stale_snapshot_rediscovers(self, record_store, settings):
        """A snapshot older than the max age is refreshed."""
        old = datetime.now(UTC) - timedelta(days=3)
        settings.pattern_cache_path.write_text(PatternCache(last_updated=old).model_dump_json())
        manager = PatternManager(records=record_store, settings=settings)
        await manager.initialize()
        assert len(await manager.get_patterns()) == 2
        assert manager.last_updated > old

    async def test_discovery_failure_at_start(self, record_store, settings, monkeypatch):
        """Without any cache, reads return empty results."""
        manager = PatternManager(records=record_store, settings=settings)

        def fail(*args, **kwargs):
            raise DiscoveryError("boom")

        monkeypatch.setattr(manager.discovery, "discover", fail)
        await manager.initialize()
        assert await manager.get_patterns() == []
        assert await manager.get_quality_patterns() == []
        stats = await manager.get_statistics()
        assert stats["total_patterns"] == 0
        assert stats["last_updated"] is None

    async def test_embeddings_from_vector_store(self, grouped_records, settings):
        """Records stored without embeddings use the vector store's copy."""
        vectors = VectorStore(dimension=3)
        bare = []
        for record in grouped_records:
            await vectors.add(record.id, record.embedding)
            bare.append(record.model_copy(update={"embedding": None}))
        manager = PatternManager(
            records=CountingRecordStore(bare), settings=settings, vector_store=vectors
        )
        await manager.initialize()
        assert len(await manager.get_patterns()) == 2


class TestReads:
    """Tests for browsing and statistics."""

    async def test_browse_roots(self, manager):
        """Depth 1 returns roots without children."""
        roots = await manager.browse(depth=1)
        assert [r.id for r in roots] == ["L1-1", "L1-2"]
        assert all(r.children == [] for r in roots)

    async def test_browse_deeper(self, manager):
        """Depth 2 includes one level of children."""
        roots = await manager.browse(depth=2)
        assert [c.id for c in roots[0].children] == ["L1-1.1"]
        assert roots[0].children[0].children == []

    async def test_browse_depth_zero(self, manager):
        """Depth 0 from the roots returns nothing."""
        assert await manager.browse(depth=0) == []

    async def test_browse_subtree(self, manager):
        """A subtree is returned with the requested levels of children."""
        [node] = await manager.browse("L1-1.1", depth=0)
        assert node.id == "L1-1.1"
        assert node.children == []
        [node] = await manager.browse("L1-1", depth=1)
        assert [c.id for c in node.children] == ["L1-1.1"]
        assert node.children[0].children == []

    async def test_browse_unknown(self, manager):
        """Unknown pattern ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await manager.browse("L9-9")

    async def test_browse_does_not_mutate_cache(self, manager):
        """Truncated views leave the cache intact."""
        await manager.browse(depth=1)
        roots = await manager.get_patterns()
        assert roots[0].children

    async def test_quality_patterns(self, manager):
        """Quality clusters can be read per dimension."""
        mood = await manager.get_quality_patterns("mood")
        assert sorted(q.cluster_name for q in mood) == ["mood_1", "mood_2"]
        assert len(await manager.get_quality_patterns()) == 4

    async def test_find_patterns_for(self, manager):
        """Membership is listed roots first."""
        assert await manager.find_patterns_for("exp_a1") == A_PATH
        assert await manager.find_patterns_for("missing") == []

    async def test_statistics(self, manager):
        """Statistics count patterns per level."""
        stats = await manager.get_statistics()
        assert stats["total_experiences"] == 12
        assert stats["total_patterns"] == 6
        assert stats["total_quality_patterns"] == 4
        assert stats["max_depth"] == 3
        assert stats["patterns_by_level"] == {1: 2, 2: 2, 3: 2}
        assert sum(stats["patterns_by_recency"].values()) == 6
        assert isinstance(stats["last_updated"], str)


class TestFreshness:
    """Tests for rediscovery on read after startup."""

    @staticmethod
    def _age(manager: PatternManager, hours: float) -> datetime:
        old = datetime.now(UTC) - timedelta(hours=hours)
        manager._cache = manager._cache.model_copy(update={"last_updated": old})
        return old

    async def test_stale_cache_refreshed_by_get_patterns(self, manager, settings):
        """A cache that ages past the max age is rediscovered on read."""
        old = self._age(manager, 25)
        assert len(await manager.get_patterns()) == 2
        assert manager.last_updated > old
        assert not manager._cache.is_stale(timedelta(days=1))
        assert datetime.fromisoformat(_read_cache(settings)["last_updated"]) > old

    async def test_stale_cache_refreshed_by_other_reads(self, manager):
        """Quality patterns and statistics refresh a stale cache too."""
        old = self._age(manager, 25)
        assert await manager.get_quality_patterns()
        assert manager.last_updated > old

        old = self._age(manager, 25)
        stats = await manager.get_statistics()
        assert datetime.fromisoformat(stats["last_updated"]) > old

    async def test_young_cache_not_rediscovered(self, manager, monkeypatch):
        """A cache within the max age is served as is."""
        old = self._age(manager, 23)
        calls = []
        monkeypatch.setattr(manager.discovery, "discover", lambda *a, **k: calls.append(1))
        await manager.get_patterns()
        assert calls == []
        assert manager.last_updated == old

    async def test_missing_cache_discovered_on_read(self, record_store, settings, monkeypatch):
        """A failed first discovery is retried by the next read."""
        manager = PatternManager(records=record_store, settings=settings)
        discover = manager.discovery.discover
        broken = [True]

        def flaky(*args, **kwargs):
            if broken[0]:
                raise DiscoveryError("boom")
            return discover(*args, **kwargs)

        monkeypatch.setattr(manager.discovery, "discover", flaky)
        assert await manager.get_patterns() == []
        broken[0] = False
        assert [p.id for p in await manager.get_patterns()] == ["L1-1", "L1-2"]


class TestDebounce:
    """Tests for batching mutation events."""

    async def test_capture_goes_pending(self, manager, record_store, make_record):
        """A capture waits for the debounce delay."""
        await _capture(record_store, make_record, "exp_new")
        await manager.on_capture("exp_new")
        assert isinstance(manager.state, Pending)
        assert manager.state.ids == frozenset({"exp_new"})
        assert await manager.find_patterns_for("exp_new") == []

    async def test_debounce_fires(self, manager, record_store, make_record):
        """After the quiet period the record is placed."""
        await _capture(record_store, make_record, "exp_new")
        await manager.on_capture("exp_new")
        await asyncio.sleep(0.3)
        assert isinstance(manager.state, Idle)
        assert await manager.find_patterns_for("exp_new") == A_PATH
        assert (await record_store.get_record("exp_new")).pattern_ids == A_PATH

    async def test_events_accumulate(self, manager, record_store, make_record):
        """Events inside the window share one pending batch."""
        await _capture(record_store, make_record, "exp_new1")
        await _capture(record_store, make_record, "exp_new2")
        await manager.on_capture("exp_new1")
        await manager.on_update("exp_new2")
        assert manager.state.ids == frozenset({"exp_new1", "exp_new2"})

    async def test_batch_threshold(self, grouped_records, settings, make_record):
        """Reaching the batch threshold applies the update immediately."""
        settings = settings.model_copy(
            update={"patterns": PatternSettings(debounce_seconds=60, batch_threshold=3)}
        )
        store = CountingRecordStore(grouped_records)
        manager = PatternManager(records=store, settings=settings)
        await manager.initialize()
        for i in range(3):
            await _capture(store, make_record, f"exp_new{i}")
            await manager.on_capture(f"exp_new{i}")
        assert isinstance(manager.state, Idle)
        assert await manager.find_patterns_for("exp_new2") == A_PATH
        await manager.close()

    async def test_flush(self, manager, record_store, make_record):
        """flush applies pending work without waiting."""
        await _capture(record_store, make_record, "exp_new")
        await manager.on_capture("exp_new")
        await manager.flush()
        assert isinstance(manager.state, Idle)
        assert await manager.find_patterns_for("exp_new") == A_PATH

    async def test_close_applies_pending(self, record_store, settings, make_record):
        """Closing does not lose pending work."""
        settings = settings.model_copy(update={"patterns": PatternSettings(debounce_seconds=60)})
        manager = PatternManager(records=record_store, settings=settings)
        await manager.initialize()
        await _capture(record_store, make_record, "exp_new")
        await manager.on_capture("exp_new")
        await manager.close()
        assert "exp_new" in _read_cache(settings)["patterns"][0]["experience_ids"]


class TestDelete:
    """Tests for on_delete."""

    async def test_membership_removed(self, manager, record_store, settings):
        """A deleted record leaves every pattern at once."""
        await record_store.delete_record("exp_a0")
        await manager.on_delete("exp_a0")
        assert await manager.find_patterns_for("exp_a0") == []
        assert all("exp_a0" not in q.experience_ids for q in await manager.get_quality_patterns())
        assert "exp_a0" not in settings.pattern_cache_path.read_text()
        assert (await manager.get_statistics())["total_experiences"] == 11

    async def test_pending_id_dropped(self, manager, record_store, make_record):
        """Deleting the only pending record returns to idle."""
        await _capture(record_store, make_record, "exp_new")
        await manager.on_capture("exp_new")
        await record_store.delete_record("exp_new")
        await manager.on_delete("exp_new")
        assert isinstance(manager.state, Idle)

    async def test_unknown_record(self, manager, settings):
        """Deleting a record in no pattern changes nothing."""
        before = settings.pattern_cache_path.read_text()
        await manager.on_delete("missing")
        assert settings.pattern_cache_path.read_text() == before


class TestFallbacks:
    """Tests for full discovery fallbacks and failures."""

    async def test_discovery_failure_keeps_cache(self, manager, monkeypatch):
        """A failed refresh keeps the previous cache."""
        before = await manager.get_patterns()

        def fail(*args, **kwargs):
            raise DiscoveryError("boom")

        monkeypatch.setattr(manager.discovery, "discover", fail)
        cache = await manager.refresh_patterns()
        assert cache is not None
        assert await manager.get_patterns() == before

    async def test_incremental_failure_rediscovers(
        self, manager, record_store, make_record, monkeypatch
    ):
        """An incremental failure falls back to full discovery."""
        calls = []
        discover = manager.discovery.discover

        def counting(*args, **kwargs):
            calls.append(1)
            return discover(*args, **kwargs)

        def fail(*args, **kwargs):
            raise RuntimeError("incremental broke")

        monkeypatch.setattr(manager.discovery, "discover", counting)
        monkeypatch.setattr(manager.incremental, "update", fail)
        await _capture(record_store, make_record, "exp_new")
        await manager.on_capture("exp_new")
        await manager.flush()
        assert calls == [1]
        assert "exp_new" in (await manager.get_patterns())[0].experience_ids

    async def test_structural_change_rediscovers(
        self, manager, record_store, make_record, monkeypatch
    ):
        """Split or merge proposals trigger full discovery."""
        calls = []
        discover = manager.discovery.discover

        def counting(*args, **kwargs):
            calls.append(1)
            return discover(*args, **kwargs)

        def structural(*args, **kwargs):
            return UpdateResult(changes=[PatternChange(type="merge", pattern_id="L1-1+L1-2")])

        monkeypatch.setattr(manager.discovery, "discover", counting)
        monkeypatch.setattr(manager.incremental, "update", structural)
        await _capture(record_store, make_record, "exp_new")
        await manager.on_capture("exp_new")
        await manager.flush()
        assert calls == [1]
        assert len(await manager.get_patterns()) == 2

    async def test_unchanged_records_not_rewritten(self, manager, record_store):
        """Re-tagging skips records whose memberships did not change."""
        record_store.updated.clear()
        await manager.refresh_patterns()
        assert record_store.updated == []

    async def test_write_failure_keeps_memory(self, record_store, settings, tmp_path):
        """A snapshot that cannot be written leaves the cache usable."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        manager = PatternManager(
            records=record_store, settings=settings, cache_path=blocker / "cache.json"
        )
        await manager.initialize()
        assert len(await manager.get_patterns()) == 2

    async def test_retag_failure_still_persists(self, grouped_records, settings, make_record):
        """A record store that cannot re-tag does not break capture batches."""
        settings = settings.model_copy(
            update={"patterns": PatternSettings(debounce_seconds=60, batch_threshold=3)}
        )
        store = ReadOnlyRecordStore(grouped_records)
        manager = PatternManager(records=store, settings=settings)
        await manager.initialize()
        assert len(await manager.get_patterns()) == 2

        for i in range(3):
            await _capture(store, make_record, f"exp_new{i}")
            await manager.on_capture(f"exp_new{i}")
        assert isinstance(manager.state, Idle)
        assert await manager.find_patterns_for("exp_new2") == A_PATH
        assert "exp_new2" in _read_cache(settings)["patterns"][0]["experience_ids"]
        assert (await store.get_record("exp_new2")).pattern_ids is None
        await manager.close()

    async def test_unreadable_records(self, record_store, settings, monkeypatch):
        """A failing record store leaves reads empty instead of raising."""

        async def fail():
            raise StorageError("records offline")

        monkeypatch.setattr(record_store, "get_all_records", fail)
        manager = PatternManager(records=record_store, settings=settings)
        await manager.initialize()
        assert await manager.get_patterns() == []
        assert not settings.pattern_cache_path.exists()
