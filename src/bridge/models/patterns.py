"""Pattern cache models.

Patterns form a forest: each NavigablePattern owns its children
exclusively. Records are linked to patterns only through the
denormalized ``pattern_ids`` field written back after discovery.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

CACHE_VERSION = 2


class Recency(str, Enum):
    """Age bucket of a pattern's most recent member."""

    ACTIVE = "active"  # < 7 days
    RECENT = "recent"  # < 30 days
    PAST = "past"  # < 90 days
    DORMANT = "dormant"


def recency_for(latest: datetime | None, now: datetime | None = None) -> Recency:
    """Bucket a timestamp by age. A missing timestamp is dormant."""
    if latest is None:
        return Recency.DORMANT
    now = now or datetime.now(UTC)
    age = now - latest
    if age < timedelta(days=7):
        return Recency.ACTIVE
    if age < timedelta(days=30):
        return Recency.RECENT
    if age < timedelta(days=90):
        return Recency.PAST
    return Recency.DORMANT


class PatternMetadata(BaseModel):
    """Descriptive metadata for a pattern."""

    model_config = ConfigDict(extra="forbid")

    emojis: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    qualities: dict[str, float] = Field(default_factory=dict)
    recency: Recency = Recency.DORMANT
    semantic_meaning: str = ""
    centroid: list[float] = Field(default_factory=list)


class NavigablePattern(BaseModel):
    """A node in the pattern hierarchy.

    Attributes:
        id: Stable path-like identifier (``L1-2``, ``L1-2.1``).
        name: Human-readable name.
        level: Depth in the hierarchy, 1 for roots.
        experience_ids: Member record IDs (unique).
        coherence: Cluster tightness from 0 to 100.
        children: Sub-patterns owned by this pattern.
        metadata: Emojis, themes, quality prominence, recency.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    level: int = Field(ge=1)
    experience_ids: list[str] = Field(default_factory=list)
    coherence: float = Field(default=0.0, ge=0.0, le=100.0)
    children: list[NavigablePattern] = Field(default_factory=list)
    metadata: PatternMetadata = Field(default_factory=PatternMetadata)

    @property
    def size(self) -> int:
        return len(self.experience_ids)

    def walk(self) -> Iterator[NavigablePattern]:
        """Yield this pattern and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def truncated(self, depth: int) -> NavigablePattern:
        """Copy of this pattern keeping ``depth`` levels of children."""
        children = [c.truncated(depth - 1) for c in self.children] if depth > 0 else []
        return self.model_copy(update={"children": children})


class QualityPattern(BaseModel):
    """A flat cluster within a single quality dimension."""

    model_config = ConfigDict(extra="forbid")

    dimension: str
    cluster_name: str
    semantic_meaning: str = ""
    experience_ids: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    coherence: float = Field(default=0.0, ge=0.0, le=100.0)
    size: int = Field(default=0, ge=0)
    centroid: list[float] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.dimension}-{self.cluster_name}"


class PatternStats(BaseModel):
    """Summary counters stored with the cache."""

    total_experiences: int = 0
    total_patterns: int = 0
    total_quality_patterns: int = 0
    max_depth: int = 0


class PatternCache(BaseModel):
    """Persisted snapshot of discovered patterns.

    The manager never mutates a published cache in place. Updates build
    a new instance and swap the reference.
    """

    model_config = ConfigDict(extra="forbid")

    version: int = CACHE_VERSION
    patterns: list[NavigablePattern] = Field(default_factory=list)
    quality_patterns: list[QualityPattern] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))
    stats: PatternStats = Field(default_factory=PatternStats)

    def walk(self) -> Iterator[NavigablePattern]:
        for pattern in self.patterns:
            yield from pattern.walk()

    def is_stale(self, max_age: timedelta, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return now - self.last_updated > max_age


def forest_depth(patterns: list[NavigablePattern]) -> int:
    """Depth of the deepest branch (0 for an empty forest)."""
    if not patterns:
        return 0
    return max(1 + forest_depth(p.children) for p in patterns)


def build_stats(
    patterns: list[NavigablePattern],
    quality_patterns: list[QualityPattern],
    total_experiences: int,
) -> PatternStats:
    return PatternStats(
        total_experiences=total_experiences,
        total_patterns=sum(1 for root in patterns for _ in root.walk()),
        total_quality_patterns=len(quality_patterns),
        max_depth=forest_depth(patterns),
    )


ChangeType = Literal["add", "modify", "remove", "merge", "split"]


class PatternChange(BaseModel):
    """One change proposed by an incremental update."""

    model_config = ConfigDict(extra="forbid")

    type: ChangeType
    pattern_id: str
    affected_experiences: list[str] = Field(default_factory=list)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    @property
    def is_structural(self) -> bool:
        return self.type in ("merge", "split")
