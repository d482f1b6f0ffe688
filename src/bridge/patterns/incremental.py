"""Incremental pattern maintenance.

Places changed records into the existing forest and quality clusters
without re-clustering. The update works on deep copies, so the caller's
cache is never touched. Structural problems (a root that has lost its
cohesion, two siblings that have converged) are reported as ``split``
and ``merge`` changes. The caller answers those with a full rediscovery.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from bridge.models import (
    ExperienceRecord,
    NavigablePattern,
    PatternCache,
    PatternChange,
    QualityPattern,
)
from bridge.storage.vectors import cosine_similarity

from .clustering import (
    build_metadata,
    centroid,
    coherence_score,
    cohesion,
    embedding_matrix,
    frequent_words,
    has_valid_embedding,
)

if TYPE_CHECKING:
    from bridge.config import Settings

logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_SIMILARITY = 0.7
DEFAULT_QUALITY_MATCH = 0.6
DEFAULT_SPLIT_MIN_SIZE = 6
DEFAULT_SPLIT_COHESION = 0.5
DEFAULT_MERGE_SIMILARITY = 0.8
DEFAULT_DIMENSION = 384
MAX_MATCHES = 3
THEME_LIMIT = 10


@dataclass
class IncrementalConfig:
    """Thresholds for incremental placement and structural checks.

    Attributes:
        similarity: Centroid similarity needed to join a pattern.
        quality_match: Centroid similarity needed to join a quality cluster.
        split_min_size: Roots at least this large are checked for a split.
        split_cohesion: Cohesion below which a root should split.
        merge_similarity: Sibling centroid similarity above which siblings should merge.
        dimension: Embedding dimension a record needs to take part.
    """

    similarity: float = DEFAULT_SIMILARITY
    quality_match: float = DEFAULT_QUALITY_MATCH
    split_min_size: int = DEFAULT_SPLIT_MIN_SIZE
    split_cohesion: float = DEFAULT_SPLIT_COHESION
    merge_similarity: float = DEFAULT_MERGE_SIMILARITY
    dimension: int = DEFAULT_DIMENSION

    @classmethod
    def from_settings(cls, settings: Settings) -> IncrementalConfig:
        patterns = settings.patterns
        return cls(
            similarity=patterns.incremental_similarity,
            quality_match=patterns.quality_match_threshold,
            split_min_size=patterns.split_min_size,
            split_cohesion=patterns.split_cohesion,
            merge_similarity=patterns.merge_similarity,
            dimension=settings.vector_dimension,
        )


class UpdateStats(BaseModel):
    """Counters for one incremental update."""

    model_config = ConfigDict(extra="forbid")

    patterns_affected: int = Field(default=0, ge=0)
    experiences_processed: int = Field(default=0, ge=0)
    time_ms: float = Field(default=0.0, ge=0.0)


class UpdateResult(BaseModel):
    """Updated copies of the forest and quality clusters plus the changes made."""

    model_config = ConfigDict(extra="forbid")

    patterns: list[NavigablePattern] = Field(default_factory=list)
    quality_patterns: list[QualityPattern] = Field(default_factory=list)
    changes: list[PatternChange] = Field(default_factory=list)
    stats: UpdateStats = Field(default_factory=UpdateStats)

    @property
    def is_structural(self) -> bool:
        return any(change.is_structural for change in self.changes)


def _similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return -1.0
    return cosine_similarity(a, b)


def strip_members(
    patterns: list[NavigablePattern], record_ids: set[str]
) -> tuple[list[NavigablePattern], set[str]]:
    """Remove records from every pattern in a forest.

    Patterns left without members are dropped together with their subtree.
    Mutates the given patterns; callers pass copies.

    Returns:
        The surviving patterns and the ids of the patterns that changed.
    """
    touched: set[str] = set()
    kept: list[NavigablePattern] = []
    for pattern in patterns:
        remaining = [eid for eid in pattern.experience_ids if eid not in record_ids]
        if len(remaining) != len(pattern.experience_ids):
            touched.add(pattern.id)
            pattern.experience_ids = remaining
        pattern.children, child_touched = strip_members(pattern.children, record_ids)
        touched |= child_touched
        if remaining:
            kept.append(pattern)
    return kept, touched


def strip_quality_members(
    quality_patterns: list[QualityPattern], record_ids: set[str]
) -> tuple[list[QualityPattern], set[str]]:
    """Remove records from quality clusters, dropping clusters left empty."""
    touched: set[str] = set()
    kept: list[QualityPattern] = []
    for cluster in quality_patterns:
        remaining = [eid for eid in cluster.experience_ids if eid not in record_ids]
        if len(remaining) != len(cluster.experience_ids):
            touched.add(cluster.key)
            cluster.experience_ids = remaining
            cluster.size = len(remaining)
        if remaining:
            kept.append(cluster)
    return kept, touched


class IncrementalPatternUpdate:
    """Add changed records to the patterns they fit best.

    Example:
        ```python
        updater = IncrementalPatternUpdate(IncrementalConfig(similarity=0.7))
        result = updater.update(changed, cache, all_records)
        if not result.is_structural:
            cache = cache.model_copy(update={"patterns": result.patterns})
        ```
    """

    def __init__(self, config: IncrementalConfig | None = None) -> None:
        self.config = config or IncrementalConfig()

    def update(
        self,
        changed: Sequence[ExperienceRecord],
        cache: PatternCache,
        all_records: Sequence[ExperienceRecord],
        now: datetime | None = None,
    ) -> UpdateResult:
        """Apply changed records to a copy of the cache.

        Changed records are first removed from wherever they were, then
        placed again from their current embedding and qualities. Records
        without a valid embedding are only removed.

        Args:
            changed: Records captured or updated since the last pass.
            cache: The current cache. Not modified.
            all_records: Every record, for refreshing pattern metadata.
            now: Reference time for recency buckets.

        Returns:
            UpdateResult with the new forest, clusters, changes and stats.
        """
        started = time.perf_counter()
        now = now or datetime.now(UTC)
        patterns = [p.model_copy(deep=True) for p in cache.patterns]
        quality_patterns = [q.model_copy(deep=True) for q in cache.quality_patterns]

        changed_ids = {r.id for r in changed}
        patterns, affected = strip_members(patterns, changed_ids)
        quality_patterns, affected_quality = strip_quality_members(quality_patterns, changed_ids)

        changes: list[PatternChange] = []
        for record in changed:
            if not has_valid_embedding(record, self.config.dimension):
                logger.debug("Skipping %s: no valid embedding", record.id)
                continue
            for pattern_id in self._place(record, patterns):
                affected.add(pattern_id)
                changes.append(
                    PatternChange(
                        type="add", pattern_id=pattern_id, affected_experiences=[record.id]
                    )
                )
            for key in self._place_quality(record, quality_patterns):
                affected_quality.add(key)
                changes.append(
                    PatternChange(type="add", pattern_id=key, affected_experiences=[record.id])
                )

        by_id = {r.id: r for r in all_records if has_valid_embedding(r, self.config.dimension)}
        self._refresh(patterns, affected, by_id, now)
        self._refresh_quality(quality_patterns, affected_quality, by_id)

        changes.extend(self._split_changes(patterns, affected, by_id))
        changes.extend(self._merge_changes(patterns, affected))

        elapsed = (time.perf_counter() - started) * 1000
        stats = UpdateStats(
            patterns_affected=len(affected) + len(affected_quality),
            experiences_processed=len(changed),
            time_ms=round(elapsed, 3),
        )
        logger.debug(
            "Incremental update placed %d records into %d patterns in %.1fms",
            stats.experiences_processed,
            stats.patterns_affected,
            stats.time_ms,
        )
        return UpdateResult(
            patterns=patterns,
            quality_patterns=quality_patterns,
            changes=changes,
            stats=stats,
        )

    def _matches(
        self,
        patterns: Iterable[NavigablePattern],
        vector: Sequence[float],
        ancestors: tuple[NavigablePattern, ...] = (),
    ) -> list[tuple[float, tuple[NavigablePattern, ...]]]:
        """Every matching pattern with its path from the root."""
        found: list[tuple[float, tuple[NavigablePattern, ...]]] = []
        for pattern in patterns:
            similarity = _similarity(pattern.metadata.centroid, vector)
            if similarity < self.config.similarity:
                continue
            path = (*ancestors, pattern)
            found.append((similarity, path))
            found.extend(self._matches(pattern.children, vector, path))
        return found

    def _place(self, record: ExperienceRecord, patterns: list[NavigablePattern]) -> list[str]:
        matches = self._matches(patterns, record.embedding or [])
        matches.sort(key=lambda m: m[0], reverse=True)
        placed: list[str] = []
        for _, path in matches[:MAX_MATCHES]:
            # Parents keep every member of their children
            for pattern in path:
                if record.id not in pattern.experience_ids:
                    pattern.experience_ids.append(record.id)
            placed.append(path[-1].id)
        return placed

    def _place_quality(
        self, record: ExperienceRecord, quality_patterns: list[QualityPattern]
    ) -> list[str]:
        placed: list[str] = []
        vector = record.embedding or []
        for dimension in sorted(record.signature.dimensions):
            candidates = [q for q in quality_patterns if q.dimension == dimension]
            if not candidates:
                continue
            best = max(candidates, key=lambda q: _similarity(q.centroid, vector))
            if _similarity(best.centroid, vector) < self.config.quality_match:
                continue
            best.experience_ids.append(record.id)
            best.size = len(best.experience_ids)
            placed.append(best.key)
        return placed

    @staticmethod
    def _refresh(
        patterns: list[NavigablePattern],
        affected: set[str],
        by_id: dict[str, ExperienceRecord],
        now: datetime,
    ) -> None:
        for root in patterns:
            for pattern in root.walk():
                if pattern.id not in affected:
                    continue
                members = [by_id[eid] for eid in pattern.experience_ids if eid in by_id]
                if not members:
                    continue
                matrix = embedding_matrix(members)
                pattern.coherence = coherence_score(cohesion(matrix))
                pattern.metadata = build_metadata(
                    members,
                    frequent_words([m.source for m in members], THEME_LIMIT),
                    pattern.metadata.semantic_meaning,
                    centroid(matrix),
                    now,
                )

    @staticmethod
    def _refresh_quality(
        quality_patterns: list[QualityPattern],
        affected: set[str],
        by_id: dict[str, ExperienceRecord],
    ) -> None:
        for cluster in quality_patterns:
            if cluster.key not in affected:
                continue
            members = [by_id[eid] for eid in cluster.experience_ids if eid in by_id]
            if not members:
                continue
            matrix = embedding_matrix(members)
            cluster.centroid = centroid(matrix)
            cluster.coherence = coherence_score(cohesion(matrix))

    def _split_changes(
        self,
        patterns: list[NavigablePattern],
        affected: set[str],
        by_id: dict[str, ExperienceRecord],
    ) -> list[PatternChange]:
        changes: list[PatternChange] = []
        for root in patterns:
            if root.id not in affected or root.size < self.config.split_min_size:
                continue
            members = [by_id[eid] for eid in root.experience_ids if eid in by_id]
            value = cohesion(embedding_matrix(members))
            if value < self.config.split_cohesion:
                changes.append(
                    PatternChange(
                        type="split",
                        pattern_id=root.id,
                        affected_experiences=list(root.experience_ids),
                        confidence=max(0.0, min(1.0, 1.0 - value)),
                    )
                )
        return changes

    def _merge_changes(
        self, siblings: list[NavigablePattern], affected: set[str]
    ) -> list[PatternChange]:
        changes: list[PatternChange] = []
        for i, first in enumerate(siblings):
            for second in siblings[i + 1 :]:
                if first.id not in affected and second.id not in affected:
                    continue
                similarity = _similarity(first.metadata.centroid, second.metadata.centroid)
                if similarity > self.config.merge_similarity:
                    members = list(dict.fromkeys(first.experience_ids + second.experience_ids))
                    changes.append(
                        PatternChange(
                            type="merge",
                            pattern_id=f"{first.id}+{second.id}",
                            affected_experiences=members,
                            confidence=max(0.0, min(1.0, similarity)),
                        )
                    )
        for pattern in siblings:
            changes.extend(self._merge_changes(pattern.children, affected))
        return changes
