"""Configuration management for Bridge."""

import logging
import warnings
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class RecallWeights(BaseModel):
    """Weights for the multi-factor recall score.

    The score formula combines three signals:
        score = (
            text_match * text +
            filter_relevance * filter +
            semantic_similarity * semantic
        )

    With an empty text query the text term is replaced by a fixed base
    score equal to the text weight. Weights should sum to 1.0 so the
    score stays in [0, 1] before clamping.

    Attributes:
        text: Weight for free-text matching (0.5 default).
        filter: Weight for field-filter relevance (0.2 default).
        semantic: Weight for embedding similarity (0.3 default).
    """

    text: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Weight for free-text match score",
    )
    filter: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Weight for field-filter relevance",
    )
    semantic: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Weight for semantic similarity",
    )

    @model_validator(mode="after")
    def _warn_if_weights_not_normalized(self) -> "RecallWeights":
        """Warn if weights don't sum to approximately 1.0."""
        total = self.text + self.filter + self.semantic
        if abs(total - 1.0) > 0.01:
            warnings.warn(
                f"RecallWeights sum to {total:.3f}, expected ~1.0. "
                f"Scores will be clamped to [0, 1]. "
                f"Weights: text={self.text}, filter={self.filter}, semantic={self.semantic}",
                UserWarning,
                stacklevel=2,
            )
            logger.warning(
                "RecallWeights sum to %.3f (expected ~1.0): text=%.2f, filter=%.2f, semantic=%.2f",
                total,
                self.text,
                self.filter,
                self.semantic,
            )
        return self


class PatternSettings(BaseModel):
    """Tuning for pattern discovery and cache maintenance.

    Attributes:
        debounce_seconds: Quiet period before a pending incremental update runs.
        batch_threshold: Pending ids that force an immediate update.
        cache_max_age_hours: Age after which the cache is stale.
        similarity_threshold: Base cosine threshold for hierarchical clustering.
        min_cluster_size: Smallest cluster kept at the root level.
        max_depth: Maximum hierarchy depth.
        quality_analysis: Whether to build per-dimension quality clusters.
        quality_threshold: Cosine threshold for quality clustering.
        incremental_similarity: Centroid similarity needed to join a pattern.
        quality_match_threshold: Centroid similarity needed to join a quality cluster.
        split_min_size: Root patterns at least this large are checked for splits.
        split_cohesion: Cohesion below which a root pattern should split.
        merge_similarity: Sibling centroid similarity above which patterns should merge.
    """

    debounce_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Debounce delay for incremental updates",
    )
    batch_threshold: int = Field(
        default=10,
        ge=1,
        description="Pending updates that trigger an immediate run",
    )
    cache_max_age_hours: float = Field(
        default=24.0,
        gt=0.0,
        description="Hours before the pattern cache is considered stale",
    )
    similarity_threshold: float = Field(
        default=0.6,
        ge=-1.0,
        le=1.0,
        description="Base similarity threshold for hierarchical clustering",
    )
    min_cluster_size: int = Field(
        default=3,
        ge=2,
        description="Minimum members in a root cluster",
    )
    max_depth: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum pattern hierarchy depth",
    )
    quality_analysis: bool = Field(
        default=True,
        description="Build per-quality-dimension clusters",
    )
    quality_threshold: float = Field(
        default=0.5,
        ge=-1.0,
        le=1.0,
        description="Similarity threshold for quality dimension clustering",
    )
    incremental_similarity: float = Field(
        default=0.7,
        ge=-1.0,
        le=1.0,
        description="Centroid similarity required to join an existing pattern",
    )
    quality_match_threshold: float = Field(
        default=0.6,
        ge=-1.0,
        le=1.0,
        description="Centroid similarity required to join a quality cluster",
    )
    split_min_size: int = Field(
        default=6,
        ge=2,
        description="Minimum root pattern size considered for a split",
    )
    split_cohesion: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Cohesion below which a root pattern is flagged for split",
    )
    merge_similarity: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Sibling centroid similarity above which patterns are flagged for merge",
    )


class Settings(BaseSettings):
    """Bridge configuration.

    All settings can be overridden with environment variables using the
    ``BRIDGE_`` prefix. Nested settings use ``__`` as delimiter, for
    example ``BRIDGE_PATTERNS__DEBOUNCE_SECONDS=1``.
    """

    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the vector and pattern cache snapshots",
    )
    vector_dimension: int = Field(
        default=384,
        ge=1,
        description="Dimension every stored embedding must have",
    )

    # Embeddings
    embedding_provider: Literal["fastembed"] = Field(
        default="fastembed",
        description="Embedding provider",
    )
    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Embedding model name",
    )
    embedding_cache_enabled: bool = Field(
        default=True,
        description="Enable LRU cache for query embeddings",
    )
    embedding_cache_size: int = Field(
        default=1000,
        ge=0,
        le=100000,
        description="Maximum number of embeddings to cache (0 to disable cache)",
    )

    # Recall
    recall_default_limit: int = Field(
        default=20,
        ge=1,
        le=1000,
        description="Default page size for recall",
    )
    semantic_threshold: float = Field(
        default=0.7,
        ge=-1.0,
        le=1.0,
        description="Default similarity threshold for semantic recall",
    )
    recall_weights: RecallWeights = Field(
        default_factory=RecallWeights,
        description="Weights for the recall score",
    )
    debug: bool = Field(
        default=False,
        description="Attach debug information to recall responses",
    )

    # Patterns
    patterns: PatternSettings = Field(
        default_factory=PatternSettings,
        description="Pattern discovery settings",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    model_config = {
        "env_prefix": "BRIDGE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @property
    def vectors_path(self) -> Path:
        """Snapshot file for the vector store."""
        return self.data_dir / "vectors.json"

    @property
    def pattern_cache_path(self) -> Path:
        """Snapshot file for the pattern cache."""
        return self.data_dir / "pattern-cache.json"


# Global settings instance
settings = Settings()
