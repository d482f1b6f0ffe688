"""Pattern cache ownership and maintenance.

The PatternManager keeps one PatternCache in memory and on disk. Record
mutations are batched by a debounce timer and folded in incrementally;
structural changes, a stale cache and incremental failures fall back to
full discovery.

State machine for pending work:

    Idle --on_capture/on_update--> Pending(deadline, ids)
    Pending --more ids--> Pending(new deadline, ids + id)   timer restarted
    Pending --deadline or batch threshold or flush--> Idle  update applied

Example:
    ```python
    manager = PatternManager(records=store, settings=settings)
    await manager.initialize()

    await manager.on_capture("exp_1a2b3c4d5e6f")
    roots = await manager.browse(depth=1)
    ```
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from bridge.config import Settings
from bridge.exceptions import BridgeError, NotFoundError, StorageError
from bridge.models import (
    CACHE_VERSION,
    ExperienceRecord,
    NavigablePattern,
    PatternCache,
    QualityPattern,
    build_stats,
)
from bridge.storage.snapshot import read_snapshot, write_snapshot

from .clustering import has_valid_embedding
from .discovery import DiscoveryConfig, PatternDiscovery
from .incremental import (
    IncrementalConfig,
    IncrementalPatternUpdate,
    strip_members,
    strip_quality_members,
)

if TYPE_CHECKING:
    from bridge.storage import RecordStore, VectorStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    """No update is pending."""


@dataclass(frozen=True)
class Pending:
    """Records waiting for the debounce deadline (event loop time)."""

    deadline: float
    ids: frozenset[str]


DebounceState = Idle | Pending

IDLE = Idle()


@dataclass
class PatternManager:
    """Owns the pattern cache and keeps it in step with the records.

    Attributes:
        records: Record storage, read for discovery and written for re-tagging.
        settings: Configuration (pattern thresholds, debounce, data dir).
        vector_store: Optional source of embeddings for records stored without one.
        discovery: Full discovery algorithm.
        incremental: Incremental update algorithm.
        cache_path: Snapshot file. Defaults to ``settings.pattern_cache_path``.
    """

    records: RecordStore
    settings: Settings = field(default_factory=Settings)
    vector_store: VectorStore | None = None
    discovery: PatternDiscovery | None = None
    incremental: IncrementalPatternUpdate | None = None
    cache_path: Path | None = None

    _cache: PatternCache | None = field(default=None, init=False, repr=False)
    _state: DebounceState = field(default=IDLE, init=False, repr=False)
    _timer: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _firing: asyncio.Task[Any] | None = field(default=None, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)
    _io_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)
    _init_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)
    _initialized: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.discovery is None:
            self.discovery = PatternDiscovery(DiscoveryConfig.from_settings(self.settings))
        if self.incremental is None:
            self.incremental = IncrementalPatternUpdate(
                IncrementalConfig.from_settings(self.settings)
            )
        if self.cache_path is None:
            self.cache_path = self.settings.pattern_cache_path

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the cache snapshot, rediscovering if it is unusable.

        A missing, corrupt, wrong-version or stale snapshot runs full
        discovery before returning.
        """
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            cache = await self._load()
            if cache is not None:
                self._cache = cache
                logger.info("Loaded pattern cache with %d patterns", cache.stats.total_patterns)
            await self._refresh(force=False)
            self._initialized = True

    async def _ensure_fresh(self) -> None:
        """Initialize, then rediscover if the cache is missing or stale."""
        await self.initialize()
        cache = self._cache
        if cache is None or cache.is_stale(self._max_age):
            await self._refresh(force=False)

    async def flush(self) -> None:
        """Apply pending updates now."""
        self._cancel_timer()
        state = self._state
        if not isinstance(state, Pending):
            return
        self._state = IDLE
        await self._apply_incremental(state.ids)

    async def close(self) -> None:
        """Cancel the debounce timer and apply anything still pending."""
        await self.flush()
        firing = self._firing
        if firing is not None and not firing.done():
            await firing

    @property
    def state(self) -> DebounceState:
        return self._state

    @property
    def _max_age(self) -> timedelta:
        return timedelta(hours=self.settings.patterns.cache_max_age_hours)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_patterns(self) -> list[NavigablePattern]:
        """Root patterns of the current cache."""
        await self._ensure_fresh()
        cache = self._cache
        return list(cache.patterns) if cache else []

    async def get_quality_patterns(self, dimension: str | None = None) -> list[QualityPattern]:
        """Quality clusters, optionally for one dimension."""
        await self._ensure_fresh()
        cache = self._cache
        if cache is None:
            return []
        if dimension is None:
            return list(cache.quality_patterns)
        return [q for q in cache.quality_patterns if q.dimension == dimension]

    async def browse(
        self, pattern_id: str | None = None, depth: int = 1
    ) -> list[NavigablePattern]:
        """Navigate the pattern hierarchy.

        Args:
            pattern_id: Subtree root. None browses from the roots.
            depth: Levels to include. For the roots, depth 1 returns them
                without children and depth 0 returns nothing. For a
                subtree, depth 0 returns the node without children.

        Raises:
            NotFoundError: If ``pattern_id`` is unknown.
        """
        patterns = await self.get_patterns()
        if pattern_id is None:
            if depth <= 0:
                return []
            return [p.truncated(depth - 1) for p in patterns]

        for root in patterns:
            for node in root.walk():
                if node.id == pattern_id:
                    return [node.truncated(max(0, depth))]
        raise NotFoundError("pattern", pattern_id)

    async def find_patterns_for(self, record_id: str) -> list[str]:
        """IDs of every pattern containing a record, roots first."""
        patterns = await self.get_patterns()
        return [
            node.id
            for root in patterns
            for node in root.walk()
            if record_id in node.experience_ids
        ]

    async def get_statistics(self) -> dict[str, Any]:
        """Cache statistics with per-level and per-recency counts."""
        await self._ensure_fresh()
        cache = self._cache
        if cache is None:
            return {
                "total_experiences": 0,
                "total_patterns": 0,
                "total_quality_patterns": 0,
                "max_depth": 0,
                "patterns_by_level": {},
                "patterns_by_recency": {},
                "last_updated": None,
            }
        nodes = list(cache.walk())
        return {
            **cache.stats.model_dump(),
            "patterns_by_level": dict(sorted(Counter(n.level for n in nodes).items())),
            "patterns_by_recency": dict(Counter(n.metadata.recency.value for n in nodes)),
            "last_updated": cache.last_updated.isoformat(),
        }

    # ------------------------------------------------------------------
    # Mutation events
    # ------------------------------------------------------------------

    async def on_capture(self, record_id: str) -> None:
        """Schedule a newly captured record for incremental placement."""
        await self._schedule(record_id)

    async def on_update(self, record_id: str) -> None:
        """Schedule an updated record to be re-placed."""
        await self._schedule(record_id)

    async def on_delete(self, record_id: str) -> None:
        """Remove a deleted record from every pattern right away.

        Patterns and quality clusters left empty are dropped.
        """
        if isinstance(self._state, Pending) and record_id in self._state.ids:
            remaining = self._state.ids - {record_id}
            if remaining:
                self._state = Pending(self._state.deadline, remaining)
            else:
                self._cancel_timer()
                self._state = IDLE

        async with self._lock:
            current = self._cache
            if current is None:
                return
            patterns = [p.model_copy(deep=True) for p in current.patterns]
            quality_patterns = [q.model_copy(deep=True) for q in current.quality_patterns]
            patterns, touched = strip_members(patterns, {record_id})
            quality_patterns, touched_quality = strip_quality_members(
                quality_patterns, {record_id}
            )
            if not touched and not touched_quality:
                return
            total = max(0, current.stats.total_experiences - 1)
            cache = PatternCache(
                patterns=patterns,
                quality_patterns=quality_patterns,
                stats=build_stats(patterns, quality_patterns, total),
            )
            self._cache = cache
            payload = cache.model_dump_json()
        logger.debug("Removed %s from %d patterns", record_id, len(touched) + len(touched_quality))
        await self._write(payload)

    async def refresh_patterns(self) -> PatternCache | None:
        """Run full discovery and replace the cache.

        Returns:
            The new cache, or the previous one if discovery failed.
        """
        return await self._refresh(force=True)

    async def _refresh(self, force: bool) -> PatternCache | None:
        """Full discovery; without ``force`` only for a missing or stale cache."""
        async with self._lock:
            current = self._cache
            if not force and current is not None and not current.is_stale(self._max_age):
                return current
            if current is not None and not force:
                logger.info("Pattern cache is stale, rediscovering")
            originals = await self._all_records()
            if originals is None:
                return current
            cache = await self._discover(self._embedded(originals))
            if cache is None:
                return current
            await self._install(cache, originals)
        return cache

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------

    async def _schedule(self, record_id: str) -> None:
        state = self._state
        ids = (state.ids if isinstance(state, Pending) else frozenset()) | {record_id}
        self._cancel_timer()

        if len(ids) >= self.settings.patterns.batch_threshold:
            self._state = IDLE
            await self._apply_incremental(ids)
            return

        delay = self.settings.patterns.debounce_seconds
        loop = asyncio.get_running_loop()
        self._state = Pending(deadline=loop.time() + delay, ids=ids)
        self._timer = asyncio.create_task(self._fire_after(delay))

    async def _fire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timer = None
        state = self._state
        if not isinstance(state, Pending):
            return
        self._state = IDLE
        self._firing = asyncio.current_task()
        try:
            await self._apply_incremental(state.ids)
        except Exception:
            logger.exception("Debounced pattern update failed")
        finally:
            self._firing = None

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def _apply_incremental(self, ids: frozenset[str]) -> None:
        async with self._lock:
            originals = await self._all_records()
            if originals is None:
                return
            embedded = self._embedded(originals)
            current = self._cache
            cache = None
            if current is not None and not current.is_stale(self._max_age):
                cache = self._incremental(ids, current, embedded)
            if cache is None:
                cache = await self._discover(embedded)
            if cache is None:
                return
            await self._install(cache, originals)

    async def _install(self, cache: PatternCache, originals: list[ExperienceRecord]) -> None:
        """Swap in a new cache, re-tag records and persist it.

        The snapshot is written even if re-tagging fails, so memory and disk
        hold the same cache.
        """
        self._cache = cache
        payload = cache.model_dump_json()
        try:
            await self._retag(originals, cache)
        finally:
            await self._write(payload)

    async def _all_records(self) -> list[ExperienceRecord] | None:
        try:
            return await self.records.get_all_records()
        except BridgeError:
            logger.exception("Could not read records for pattern maintenance")
            return None

    def _incremental(
        self,
        ids: frozenset[str],
        current: PatternCache,
        embedded: list[ExperienceRecord],
    ) -> PatternCache | None:
        """Incrementally updated cache, or None when full discovery is needed."""
        assert self.incremental is not None
        changed = [r for r in embedded if r.id in ids]
        try:
            result = self.incremental.update(changed, current, embedded)
        except Exception:
            logger.exception("Incremental pattern update failed, falling back to full discovery")
            return None
        if result.is_structural:
            logger.info(
                "Incremental update found structural changes (%s), rediscovering",
                ", ".join(c.type for c in result.changes if c.is_structural),
            )
            return None
        logger.debug(
            "Incremental update affected %d patterns in %.1fms",
            result.stats.patterns_affected,
            result.stats.time_ms,
        )
        return PatternCache(
            patterns=result.patterns,
            quality_patterns=result.quality_patterns,
            stats=build_stats(result.patterns, result.quality_patterns, len(embedded)),
        )

    async def _discover(self, embedded: list[ExperienceRecord]) -> PatternCache | None:
        """Full discovery in a worker thread. None if it failed."""
        assert self.discovery is not None
        try:
            result = await asyncio.to_thread(self.discovery.discover, embedded)
        except Exception:
            logger.exception("Pattern discovery failed, keeping the previous cache")
            return None
        return PatternCache(
            patterns=result.patterns,
            quality_patterns=result.quality_patterns,
            stats=build_stats(
                result.patterns, result.quality_patterns, result.statistics.total_experiences
            ),
        )

    def _embedded(self, records: list[ExperienceRecord]) -> list[ExperienceRecord]:
        """Records with a valid embedding, filling gaps from the vector store."""
        dimension = self.settings.vector_dimension
        embedded: list[ExperienceRecord] = []
        for record in records:
            if has_valid_embedding(record, dimension):
                embedded.append(record)
                continue
            vector = self.vector_store.get_vector(record.id) if self.vector_store else None
            if vector is not None:
                candidate = record.model_copy(update={"embedding": vector})
                if has_valid_embedding(candidate, dimension):
                    embedded.append(candidate)
        return embedded

    async def _retag(self, records: list[ExperienceRecord], cache: PatternCache) -> int:
        """Write pattern memberships back onto records that changed.

        Returns:
            Number of records rewritten.
        """
        ids: dict[str, list[str]] = {}
        names: dict[str, list[str]] = {}
        confidence: dict[str, float] = {}
        for node in cache.walk():
            for eid in node.experience_ids:
                ids.setdefault(eid, []).append(node.id)
                names.setdefault(eid, []).append(node.name)
                confidence[eid] = max(confidence.get(eid, 0.0), node.coherence)

        updated = 0
        for record in records:
            new_ids = ids.get(record.id)
            if (record.pattern_ids or None) == new_ids:
                continue
            tagged = record.model_copy(
                update={
                    "pattern_ids": new_ids,
                    "pattern_tags": names.get(record.id),
                    "pattern_confidence": confidence.get(record.id),
                }
            )
            try:
                await self.records.update_record(tagged)
            except NotFoundError:
                logger.debug("Record %s vanished before re-tagging", record.id)
                continue
            except BridgeError:
                logger.exception("Could not re-tag record %s", record.id)
                continue
            updated += 1
        if updated:
            logger.debug("Re-tagged %d records", updated)
        return updated

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _load(self) -> PatternCache | None:
        assert self.cache_path is not None
        data = await asyncio.to_thread(read_snapshot, self.cache_path)
        if not isinstance(data, dict):
            return None
        if data.get("version") != CACHE_VERSION:
            logger.info(
                "Ignoring pattern cache version %s (expected %d)",
                data.get("version"),
                CACHE_VERSION,
            )
            return None
        try:
            return PatternCache.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("Ignoring malformed pattern cache: %s", e)
            return None

    async def _write(self, payload: str) -> None:
        assert self.cache_path is not None
        async with self._io_lock:
            try:
                await asyncio.to_thread(write_snapshot, self.cache_path, payload)
            except StorageError:
                logger.exception("Failed to persist pattern cache, keeping it in memory")

    @property
    def last_updated(self) -> datetime | None:
        cache = self._cache
        return cache.last_updated if cache else None


__all__ = ["IDLE", "DebounceState", "Idle", "PatternManager", "Pending"]
