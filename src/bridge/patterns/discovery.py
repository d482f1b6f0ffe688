"""Full pattern discovery.

Builds two views over all embedded records:

1. A hierarchy of hard clusters. Each level re-clusters a parent's members
   with a slightly stricter threshold, producing ids like ``L1-2`` for
   roots and ``L1-2.1`` for their children.
2. Flat clusters per quality dimension, built only from records where the
   dimension is present and labelled with quality-aware keywords.

Discovery is pure CPU work over immutable records. The pattern manager
runs it in a worker thread.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from bridge.exceptions import DiscoveryError
from bridge.models import QUALITY_DIMENSIONS, ExperienceRecord, NavigablePattern, QualityPattern

from .clustering import (
    build_metadata,
    centroid,
    coherence_score,
    cohesion,
    embedding_matrix,
    frequent_words,
    hard_cluster,
    has_valid_embedding,
)
from .keywords import QualityAwareKeywordExtractor

if TYPE_CHECKING:
    from bridge.config import Settings

logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_SIMILARITY_THRESHOLD = 0.6
DEFAULT_MIN_CLUSTER_SIZE = 3
DEFAULT_MAX_DEPTH = 3
DEFAULT_QUALITY_THRESHOLD = 0.5
DEFAULT_DIMENSION = 384
LEVEL_THRESHOLD_STEP = 0.05  # each level down is slightly stricter
MAX_CLUSTERS_PER_LEVEL = 8
MAX_QUALITY_CLUSTERS = 5
PATTERN_KEYWORDS = 5
QUALITY_KEYWORDS = 10

LEVEL_DESCRIPTIONS = (
    "Broad experiential themes",
    "Specific pattern clusters",
    "Detailed sub-patterns",
    "Fine-grained variations",
)

QUALITY_TEMPLATES: dict[str, tuple[str, ...]] = {
    "embodied": ("Physical states", "Bodily sensations", "Energy levels", "Movement patterns"),
    "focus": ("Mental models", "Focus patterns", "Awareness styles", "Cognitive approaches"),
    "mood": ("Emotional states", "Feeling patterns", "Mood clusters", "Emotional responses"),
    "purpose": ("Goal orientations", "Intention patterns", "Purpose clusters", "Motivation types"),
    "space": ("Environmental contexts", "Location patterns", "Spatial relationships", "Place associations"),
    "time": ("Time patterns", "Temporal rhythms", "Timing clusters", "Chronological contexts"),
    "presence": ("Relationship patterns", "Social contexts", "Interpersonal dynamics", "Collaborative modes"),
}

# Keyword sets that name a quality cluster's meaning outright
QUALITY_KEYWORD_MEANINGS: tuple[tuple[frozenset[str], str], ...] = (
    (frozenset({"morning", "afternoon", "evening"}), "Time-of-day patterns"),
    (frozenset({"work", "office", "meeting"}), "Work context patterns"),
    (frozenset({"learning", "discovery", "insight"}), "Learning experience patterns"),
    (frozenset({"focus", "attention", "concentrate"}), "Attention management patterns"),
)

NATURAL_PHRASES = tuple(
    re.compile(p)
    for p in (
        r"we are (?:so )?(?:proud|excited|happy|grateful|amazed) (?:of|about|for|with) us",
        r"i am (?:so )?(?:proud|excited|happy|grateful|amazed) (?:of|about|for|with)",
        r"teaching \w+(?: \w+)? through \w+",
        r"learning \w+(?: \w+)? through \w+",
        r"feeling \w+ about \w+",
        r"working (?:on|with|through) \w+(?: \w+)?",
        r"connection (?:with|between|creates) \w+",
        r"from \w+ to \w+",
        r"did i just make \w+(?: \w+)?",
        r"this is (?:so|really) \w+",
    )
)

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
        "be", "have", "has", "had", "do", "does", "did", "will", "would",
        "could", "should", "may", "might", "must", "can", "this", "that",
        "these", "those", "then", "than", "so", "very", "just", "like",
        "really", "actually", "basically", "literally", "even", "also",
    }
)  # fmt: skip


@dataclass
class DiscoveryConfig:
    """Configuration for full pattern discovery.

    Attributes:
        similarity_threshold: Base clustering threshold for the root level.
        min_cluster_size: Smallest root cluster.
        max_depth: Maximum hierarchy depth.
        quality_analysis: Whether to build quality dimension clusters.
        quality_threshold: Clustering threshold within a dimension.
        dimension: Embedding dimension a record needs to take part.
    """

    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE
    max_depth: int = DEFAULT_MAX_DEPTH
    quality_analysis: bool = True
    quality_threshold: float = DEFAULT_QUALITY_THRESHOLD
    dimension: int = DEFAULT_DIMENSION

    @classmethod
    def from_settings(cls, settings: Settings) -> DiscoveryConfig:
        patterns = settings.patterns
        return cls(
            similarity_threshold=patterns.similarity_threshold,
            min_cluster_size=patterns.min_cluster_size,
            max_depth=patterns.max_depth,
            quality_analysis=patterns.quality_analysis,
            quality_threshold=patterns.quality_threshold,
            dimension=settings.vector_dimension,
        )


class DiscoveryStatistics(BaseModel):
    """Counters describing a discovery run."""

    model_config = ConfigDict(extra="forbid")

    total_experiences: int = Field(default=0, ge=0)
    hierarchical_patterns_found: int = Field(default=0, ge=0)
    quality_clusters_found: int = Field(default=0, ge=0)
    outliers_count: int = Field(default=0, ge=0)
    max_depth: int = Field(default=0, ge=0)
    avg_coherence: float = Field(default=0.0, ge=0.0, le=100.0)


class DiscoveryResult(BaseModel):
    """Output of a discovery run.

    Attributes:
        patterns: Root patterns with their subtrees.
        quality_patterns: Flat per-dimension clusters.
        outliers: IDs of embedded records in no pattern at all.
        statistics: Summary counters.
    """

    model_config = ConfigDict(extra="forbid")

    patterns: list[NavigablePattern] = Field(default_factory=list)
    quality_patterns: list[QualityPattern] = Field(default_factory=list)
    outliers: list[str] = Field(default_factory=list)
    statistics: DiscoveryStatistics = Field(default_factory=DiscoveryStatistics)


def emoji_prefix(records: Sequence[ExperienceRecord]) -> str:
    emojis: list[str] = []
    for record in records:
        if record.emoji and record.emoji not in emojis:
            emojis.append(record.emoji)
        if len(emojis) == 3:
            break
    return "".join(emojis) + " " if emojis else ""


def _kebab(text: str) -> str:
    slug = re.sub(r"[^a-z0-9-]", "", re.sub(r"\s+", "-", text))
    return re.sub(r"-+", "-", slug).strip("-")


def natural_phrases(records: Sequence[ExperienceRecord]) -> list[str]:
    """Most frequent recognizable phrases in member text, kebab-cased."""
    counts: Counter[str] = Counter()
    for record in records:
        content = record.source.lower()
        for pattern in NATURAL_PHRASES:
            for match in pattern.findall(content):
                phrase = _kebab(match)
                if len(phrase) > 5:
                    counts[phrase] += 1
    return [phrase for phrase, _ in counts.most_common(3)]


def keyword_phrase(keywords: Sequence[str]) -> str:
    meaningful = [k.lower() for k in keywords if len(k) > 2 and k.lower() not in STOP_WORDS]
    if not meaningful:
        return "emerging-pattern"
    ranked = [k for k, _ in Counter(meaningful).most_common(3)]
    return "-".join(ranked)


def pattern_name(records: Sequence[ExperienceRecord], keywords: Sequence[str], level: int) -> str:
    """Name a cluster from its members' phrases, keywords or level."""
    prefix = emoji_prefix(records)
    phrases = natural_phrases(records)
    if phrases:
        return f"{prefix}{phrases[0]}"
    if keywords:
        return f"{prefix}{keyword_phrase(keywords)}"
    return f"{prefix}pattern-{level + 1}"


def semantic_meaning(keywords: Sequence[str], level: int) -> str:
    base = LEVEL_DESCRIPTIONS[level] if level < len(LEVEL_DESCRIPTIONS) else "Pattern cluster"
    if keywords:
        return f"{base} around {', '.join(keywords[:3])}"
    return base


def quality_meaning(dimension: str, keywords: Sequence[str], index: int) -> str:
    """Describe a quality cluster, preferring keyword rules over templates."""
    present = set(keywords)
    for triggers, meaning in QUALITY_KEYWORD_MEANINGS:
        if present & triggers:
            return meaning
    templates = QUALITY_TEMPLATES.get(dimension, ("Experience clusters",))
    return templates[index % len(templates)]


class PatternDiscovery:
    """Hierarchical and quality-dimension clustering over embedded records.

    Example:
        ```python
        discovery = PatternDiscovery(DiscoveryConfig(similarity_threshold=0.6))
        result = discovery.discover(records)
        for root in result.patterns:
            print(root.id, root.name, root.size)
        ```
    """

    def __init__(
        self,
        config: DiscoveryConfig | None = None,
        keyword_extractor: QualityAwareKeywordExtractor | None = None,
    ) -> None:
        self.config = config or DiscoveryConfig()
        self.keywords = keyword_extractor or QualityAwareKeywordExtractor()

    def discover(
        self,
        records: Sequence[ExperienceRecord],
        now: datetime | None = None,
    ) -> DiscoveryResult:
        """Run hierarchical and quality clustering.

        Records without a valid embedding are ignored.

        Args:
            records: All candidate records.
            now: Reference time for recency buckets.

        Returns:
            DiscoveryResult with the pattern forest and quality clusters.

        Raises:
            DiscoveryError: If the embeddings cannot be clustered.
        """
        now = now or datetime.now(UTC)
        valid = [r for r in records if has_valid_embedding(r, self.config.dimension)]
        logger.info("Discovering patterns over %d embedded records", len(valid))

        try:
            patterns = self._build_level(valid, self.config.min_cluster_size, 0, None, now)
            quality_patterns = (
                self._quality_clusters(valid, now) if self.config.quality_analysis else []
            )
        except (ValueError, FloatingPointError) as e:
            raise DiscoveryError(f"Clustering failed: {e}") from e

        clustered = {
            eid for root in patterns for node in root.walk() for eid in node.experience_ids
        }
        clustered.update(eid for q in quality_patterns for eid in q.experience_ids)
        outliers = [r.id for r in valid if r.id not in clustered]

        coherences = [p.coherence for p in patterns] + [q.coherence for q in quality_patterns]
        statistics = DiscoveryStatistics(
            total_experiences=len(valid),
            hierarchical_patterns_found=sum(1 for root in patterns for _ in root.walk()),
            quality_clusters_found=len(quality_patterns),
            outliers_count=len(outliers),
            max_depth=max((max(n.level for n in root.walk()) for root in patterns), default=0),
            avg_coherence=round(sum(coherences) / len(coherences), 1) if coherences else 0.0,
        )
        logger.info(
            "Discovered %d patterns and %d quality clusters (%d outliers)",
            statistics.hierarchical_patterns_found,
            statistics.quality_clusters_found,
            statistics.outliers_count,
        )
        return DiscoveryResult(
            patterns=patterns,
            quality_patterns=quality_patterns,
            outliers=outliers,
            statistics=statistics,
        )

    def _build_level(
        self,
        records: Sequence[ExperienceRecord],
        min_size: int,
        level: int,
        parent_id: str | None,
        now: datetime,
    ) -> list[NavigablePattern]:
        if level >= self.config.max_depth or len(records) < min_size * 2:
            return []

        threshold = self.config.similarity_threshold + level * LEVEL_THRESHOLD_STEP
        clusters = hard_cluster(records, threshold, min_size, MAX_CLUSTERS_PER_LEVEL)

        patterns: list[NavigablePattern] = []
        for index, members in enumerate(clusters, start=1):
            pattern_id = f"{parent_id}.{index}" if parent_id else f"L{level + 1}-{index}"
            children = self._build_level(members, max(2, min_size - 1), level + 1, pattern_id, now)
            matrix = embedding_matrix(members)
            keywords = frequent_words([m.source for m in members], PATTERN_KEYWORDS)
            patterns.append(
                NavigablePattern(
                    id=pattern_id,
                    name=pattern_name(members, keywords, level),
                    level=level + 1,
                    experience_ids=[m.id for m in members],
                    coherence=coherence_score(cohesion(matrix)),
                    children=children,
                    metadata=build_metadata(
                        members, keywords, semantic_meaning(keywords, level), centroid(matrix), now
                    ),
                )
            )
        return patterns

    def _quality_clusters(
        self,
        records: Sequence[ExperienceRecord],
        now: datetime,
    ) -> list[QualityPattern]:
        min_size = self.config.min_cluster_size
        clusters: list[QualityPattern] = []
        for dimension in QUALITY_DIMENSIONS:
            relevant = [r for r in records if r.signature.has(dimension)]
            if len(relevant) < min_size:
                logger.debug("Skipping %s: only %d records", dimension, len(relevant))
                continue

            groups = hard_cluster(
                relevant, self.config.quality_threshold, min_size, MAX_QUALITY_CLUSTERS
            )
            for index, members in enumerate(groups):
                keywords = self.keywords.extract(members, records, dimension, QUALITY_KEYWORDS)
                matrix = embedding_matrix(members)
                clusters.append(
                    QualityPattern(
                        dimension=dimension,
                        cluster_name=f"{dimension}_{index + 1}",
                        semantic_meaning=quality_meaning(dimension, keywords, index),
                        experience_ids=[m.id for m in members],
                        keywords=keywords,
                        coherence=coherence_score(cohesion(matrix)),
                        size=len(members),
                        centroid=centroid(matrix),
                    )
                )
        return clusters
