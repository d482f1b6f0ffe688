"""Data models for Bridge.

Records:
    - ExperienceRecord: A captured experience with its qualities and embedding

Qualities:
    - QualityDimension: The seven experiential axes
    - LegacyQualities / QualityTokens: The two stored quality shapes
    - QualitySignature: Canonical (dimension, subtype) marks
    - normalize_qualities: Reduce either shape to a signature

Patterns:
    - NavigablePattern: Hierarchical cluster node
    - QualityPattern: Flat per-dimension cluster
    - PatternCache: Persisted snapshot of both
"""

from .experience import ExperienceRecord, generate_id, parse_timestamp
from .patterns import (
    CACHE_VERSION,
    NavigablePattern,
    PatternCache,
    PatternChange,
    PatternMetadata,
    PatternStats,
    QualityPattern,
    Recency,
    build_stats,
    forest_depth,
    recency_for,
)
from .qualities import (
    KNOWN_QUALITIES,
    QUALITY_DIMENSIONS,
    QUALITY_SUBTYPES,
    LegacyQualities,
    QualityDimension,
    QualityRepresentation,
    QualitySignature,
    QualityTokens,
    normalize_qualities,
)

__all__ = [
    # Records
    "ExperienceRecord",
    "generate_id",
    "parse_timestamp",
    # Qualities
    "KNOWN_QUALITIES",
    "QUALITY_DIMENSIONS",
    "QUALITY_SUBTYPES",
    "LegacyQualities",
    "QualityDimension",
    "QualityRepresentation",
    "QualitySignature",
    "QualityTokens",
    "normalize_qualities",
    # Patterns
    "CACHE_VERSION",
    "NavigablePattern",
    "PatternCache",
    "PatternChange",
    "PatternMetadata",
    "PatternStats",
    "QualityPattern",
    "Recency",
    "build_stats",
    "forest_depth",
    "recency_for",
]
