"""Unit tests for Bridge configuration."""

import os
import warnings
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from bridge.config import PatternSettings, RecallWeights, Settings


class TestRecallWeights:
    """Tests for RecallWeights model."""

    def test_default_weights(self):
        """Default weights should be 0.5 / 0.2 / 0.3."""
        weights = RecallWeights()
        assert weights.text == 0.5
        assert weights.filter == 0.2
        assert weights.semantic == 0.3

    def test_weight_bounds(self):
        """Weights must be between 0 and 1."""
        with pytest.raises(ValidationError):
            RecallWeights(text=1.5)
        with pytest.raises(ValidationError):
            RecallWeights(semantic=-0.1)

    def test_unnormalized_weights_warn(self):
        """Weights not summing to 1.0 should emit a UserWarning."""
        with pytest.warns(UserWarning, match="sum to"):
            RecallWeights(text=0.9, filter=0.9, semantic=0.9)

    def test_normalized_weights_do_not_warn(self):
        """Weights summing to 1.0 should not warn."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            RecallWeights(text=0.6, filter=0.2, semantic=0.2)


class TestPatternSettings:
    """Tests for PatternSettings model."""

    def test_defaults(self):
        """Defaults should match the documented pattern constants."""
        patterns = PatternSettings()
        assert patterns.debounce_seconds == 5.0
        assert patterns.batch_threshold == 10
        assert patterns.cache_max_age_hours == 24.0
        assert patterns.similarity_threshold == 0.6
        assert patterns.min_cluster_size == 3
        assert patterns.max_depth == 3
        assert patterns.quality_analysis is True
        assert patterns.quality_threshold == 0.5
        assert patterns.incremental_similarity == 0.7
        assert patterns.quality_match_threshold == 0.6

    def test_min_cluster_size_lower_bound(self):
        """A cluster needs at least two members."""
        with pytest.raises(ValidationError):
            PatternSettings(min_cluster_size=1)

    def test_batch_threshold_positive(self):
        """Batch threshold must be at least one."""
        with pytest.raises(ValidationError):
            PatternSettings(batch_threshold=0)


class TestSettings:
    """Tests for Settings model."""

    def test_default_settings(self):
        """Default settings should be reasonable."""
        settings = Settings(_env_file=None)
        assert settings.vector_dimension == 384
        assert settings.embedding_provider == "fastembed"
        assert settings.embedding_model == "sentence-transformers/all-MiniLM-L6-v2"
        assert settings.recall_default_limit == 20
        assert settings.semantic_threshold == 0.7
        assert settings.debug is False

    def test_snapshot_paths(self, tmp_path: Path):
        """Snapshot paths should live in the data directory."""
        settings = Settings(_env_file=None, data_dir=tmp_path)
        assert settings.vectors_path == tmp_path / "vectors.json"
        assert settings.pattern_cache_path == tmp_path / "pattern-cache.json"

    def test_env_override(self):
        """BRIDGE_ prefixed environment variables should override defaults."""
        with patch.dict(os.environ, {"BRIDGE_RECALL_DEFAULT_LIMIT": "7"}):
            settings = Settings(_env_file=None)
        assert settings.recall_default_limit == 7

    def test_nested_env_override(self):
        """Nested pattern settings should use the __ delimiter."""
        with patch.dict(os.environ, {"BRIDGE_PATTERNS__DEBOUNCE_SECONDS": "1.5"}):
            settings = Settings(_env_file=None)
        assert settings.patterns.debounce_seconds == 1.5

    def test_invalid_log_format(self):
        """Only json and text log formats are accepted."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_format="xml")

    def test_invalid_embedding_provider(self):
        """Only fastembed is a supported provider."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, embedding_provider="openai")
