"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from bridge.config import PatternSettings, Settings
from bridge.embeddings.base import Embedder
from bridge.exceptions import EmbeddingError
from bridge.models import ExperienceRecord
from bridge.storage import InMemoryRecordStore

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

# Two well separated groups of 3-dim embeddings
GROUP_A = [
    [1.0, 0.05, 0.0],
    [1.0, 0.0, 0.05],
    [0.98, 0.05, 0.05],
    [1.0, 0.02, 0.02],
    [0.99, 0.0, 0.0],
    [1.0, 0.04, 0.01],
]
GROUP_B = [
    [0.0, 1.0, 0.05],
    [0.05, 1.0, 0.0],
    [0.05, 0.98, 0.05],
    [0.02, 1.0, 0.02],
    [0.0, 0.99, 0.0],
    [0.01, 1.0, 0.04],
]


class KeywordEmbedder(Embedder):
    """Deterministic embedder mapping keywords in the text to fixed vectors."""

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        dimensions: int = 3,
        fail: bool = False,
    ) -> None:
        self.vectors = vectors or {}
        self._dimensions = dimensions
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("model unavailable")
        lowered = text.lower()
        for keyword, vector in self.vectors.items():
            if keyword in lowered:
                return list(vector)
        return [0.0] * (self._dimensions - 1) + [1.0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(text) for text in texts]

    @property
    def dimensions(self) -> int:
        return self._dimensions


class CountingRecordStore(InMemoryRecordStore):
    """In-memory store that records every update_record call."""

    def __init__(self, records: list[ExperienceRecord] | None = None) -> None:
        super().__init__(records)
        self.updated: list[str] = []

    async def update_record(self, record: ExperienceRecord) -> ExperienceRecord:
        self.updated.append(record.id)
        return await super().update_record(record)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings for 3-dim test vectors, writing snapshots under tmp_path."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        vector_dimension=3,
        log_format="text",
        patterns=PatternSettings(debounce_seconds=0.05),
    )


@pytest.fixture
def make_record() -> Callable[..., ExperienceRecord]:
    """Factory for records created relative to NOW."""

    def _make(
        source: str = "An ordinary moment",
        *,
        days_ago: float = 0,
        **kwargs: Any,
    ) -> ExperienceRecord:
        kwargs.setdefault("created", NOW - timedelta(days=days_ago))
        return ExperienceRecord(source=source, **kwargs)

    return _make


@pytest.fixture
def grouped_records(make_record: Callable[..., ExperienceRecord]) -> list[ExperienceRecord]:
    """Twelve embedded records in two tight groups, A older than B."""
    records = [
        make_record(
            f"Quiet morning walk by the river {i}",
            id=f"exp_a{i}",
            embedding=vector,
            emoji="🌅",
            experience=["mood.open", "time"],
            days_ago=20 - i,
        )
        for i, vector in enumerate(GROUP_A)
    ]
    records += [
        make_record(
            f"Debugging the parser late at night {i}",
            id=f"exp_b{i}",
            embedding=vector,
            emoji="🐛",
            experience=["focus.narrow", "mood.closed"],
            days_ago=10 - i,
        )
        for i, vector in enumerate(GROUP_B)
    ]
    return records


@pytest.fixture
def record_store(grouped_records: list[ExperienceRecord]) -> CountingRecordStore:
    return CountingRecordStore(grouped_records)
