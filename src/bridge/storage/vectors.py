"""Embedding vector store.

Keeps ``id -> vector`` associations of a fixed dimension in memory,
answers cosine k-nearest-neighbour queries, and persists the whole set
to a JSON snapshot after every mutation.

Mutations build a new mapping and swap it in, so readers iterate a
stable view without taking the lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from bridge.exceptions import NotFoundError, ValidationError

from .snapshot import read_snapshot, write_snapshot

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 384


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors.

    Args:
        a: First vector.
        b: Second vector, same length as ``a``.

    Returns:
        ``dot(a, b) / (|a| * |b|)`` in [-1, 1], or 0.0 if either norm is 0.
    """
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def is_zero_vector(vector: Sequence[float]) -> bool:
    return not any(vector)


@dataclass(frozen=True)
class VectorRecord:
    """A stored embedding with optional metadata."""

    id: str
    vector: tuple[float, ...]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "vector": list(self.vector), "metadata": self.metadata}


@dataclass(frozen=True)
class SimilarityResult:
    """A vector search hit.

    Attributes:
        id: ID of the matched vector.
        similarity: Cosine similarity to the query.
    """

    id: str
    similarity: float


@dataclass(frozen=True)
class BatchResult:
    added: int
    rejected: int


@dataclass(frozen=True)
class VectorValidation:
    """Outcome of an integrity check over all stored vectors."""

    valid: int
    invalid: int
    details: list[str]


class VectorStore:
    """In-memory vector store with JSON snapshot persistence.

    Args:
        path: Snapshot file. None keeps the store purely in memory.
        dimension: Required length of every vector.

    Example:
        ```python
        store = VectorStore(Path("data/vectors.json"))
        await store.initialize()
        await store.add("exp_1", vector)
        hits = store.find_similar(query, limit=5, threshold=0.7)
        ```
    """

    def __init__(self, path: Path | None = None, dimension: int = DEFAULT_DIMENSION) -> None:
        self.path = path
        self.dimension = dimension
        self._vectors: dict[str, VectorRecord] = {}
        # (mapping, ids, unit rows) for the mapping last searched
        self._matrix: tuple[dict[str, VectorRecord], list[str], np.ndarray] | None = None
        self._lock = asyncio.Lock()
        self._io_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Load the snapshot once."""
        if self._initialized:
            return
        await self.load_from_disk()
        self._initialized = True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _accepts(self, vector_id: str, vector: Sequence[float]) -> bool:
        if len(vector) != self.dimension:
            logger.warning(
                "Rejected vector %s: expected %d dimensions, got %d",
                vector_id,
                self.dimension,
                len(vector),
            )
            return False
        return True

    async def add(
        self,
        vector_id: str,
        vector: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Insert or overwrite a vector.

        Returns:
            False (and nothing changes) if the dimension is wrong, else True.
        """
        if not self._accepts(vector_id, vector):
            return False
        record = VectorRecord(vector_id, tuple(float(v) for v in vector), dict(metadata or {}))
        async with self._lock:
            updated = dict(self._vectors)
            updated[vector_id] = record
            self._vectors = updated
        await self.save_to_disk()
        return True

    async def add_batch(self, records: Iterable[VectorRecord]) -> BatchResult:
        """Insert many vectors with a single snapshot write.

        Items with the wrong dimension are rejected individually.
        """
        accepted: list[VectorRecord] = []
        rejected = 0
        for record in records:
            if self._accepts(record.id, record.vector):
                vector = tuple(float(v) for v in record.vector)
                accepted.append(VectorRecord(record.id, vector, dict(record.metadata)))
            else:
                rejected += 1

        if accepted:
            async with self._lock:
                updated = dict(self._vectors)
                updated.update((r.id, r) for r in accepted)
                self._vectors = updated
            await self.save_to_disk()

        if rejected:
            logger.warning(
                "Batch add rejected %d of %d vectors", rejected, rejected + len(accepted)
            )
        return BatchResult(added=len(accepted), rejected=rejected)

    async def remove(self, vector_id: str) -> None:
        """Remove a vector. Removing an unknown id is a no-op."""
        async with self._lock:
            if vector_id not in self._vectors:
                return
            updated = dict(self._vectors)
            del updated[vector_id]
            self._vectors = updated
        await self.save_to_disk()

    async def clear(self) -> None:
        async with self._lock:
            self._vectors = {}
        await self.save_to_disk()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_similar(
        self,
        query: Sequence[float],
        limit: int = 10,
        threshold: float = 0.0,
        exclude: str | None = None,
    ) -> list[SimilarityResult]:
        """Find the stored vectors most similar to ``query``.

        Stored vectors whose length differs from the query are skipped.

        Args:
            query: Query vector.
            limit: Maximum number of results.
            threshold: Minimum similarity to include.
            exclude: Optional id to leave out of the results.

        Returns:
            Up to ``limit`` results, highest similarity first, all >= threshold.

        Raises:
            ValidationError: If the query has the wrong dimension.
        """
        if len(query) != self.dimension:
            raise ValidationError(
                "query", f"expected {self.dimension} dimensions, got {len(query)}"
            )
        if limit <= 0:
            return []

        ids, unit = self._unit_rows()
        if not ids:
            return []
        q = np.asarray(query, dtype=np.float64)
        norm = np.linalg.norm(q)
        if norm == 0:
            similarities = np.zeros(len(ids))
        else:
            similarities = np.clip(unit @ (q / norm), -1.0, 1.0)

        hits = [
            SimilarityResult(vector_id, float(similarity))
            for vector_id, similarity in zip(ids, similarities, strict=True)
            if vector_id != exclude and similarity >= threshold
        ]
        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:limit]

    def _unit_rows(self) -> tuple[list[str], np.ndarray]:
        """Ids and unit-length rows of the vectors with the store's dimension.

        Rebuilt only when the mapping has been swapped since the last call.
        Zero vectors stay zero rows and score 0.0.
        """
        vectors = self._vectors
        cached = self._matrix
        if cached is not None and cached[0] is vectors:
            return cached[1], cached[2]
        records = [r for r in vectors.values() if len(r.vector) == self.dimension]
        ids = [r.id for r in records]
        if records:
            matrix = np.asarray([r.vector for r in records], dtype=np.float64)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            unit = matrix / norms
        else:
            unit = np.zeros((0, self.dimension))
        self._matrix = (vectors, ids, unit)
        return ids, unit

    def find_similar_by_id(
        self,
        vector_id: str,
        limit: int = 10,
        threshold: float = 0.0,
    ) -> list[SimilarityResult]:
        """Find vectors similar to a stored one, excluding itself.

        Raises:
            NotFoundError: If ``vector_id`` is not stored.
        """
        record = self._vectors.get(vector_id)
        if record is None:
            raise NotFoundError("vector", vector_id)
        return self.find_similar(record.vector, limit=limit, threshold=threshold, exclude=vector_id)

    def get_vector(self, vector_id: str) -> list[float] | None:
        record = self._vectors.get(vector_id)
        return list(record.vector) if record else None

    def has_vector(self, vector_id: str) -> bool:
        return vector_id in self._vectors

    def count(self) -> int:
        return len(self._vectors)

    def ids(self) -> list[str]:
        return list(self._vectors)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def validate(self, expected_dimension: int | None = None) -> VectorValidation:
        """Check every stored vector against a dimension.

        Args:
            expected_dimension: Dimension to check. Defaults to the store's.
        """
        expected = expected_dimension or self.dimension
        valid = 0
        details: list[str] = []
        for record in self._vectors.values():
            if len(record.vector) == expected:
                valid += 1
            else:
                details.append(
                    f"Vector {record.id}: expected {expected} dimensions, got {len(record.vector)}"
                )
        return VectorValidation(valid=valid, invalid=len(details), details=details)

    async def remove_invalid(self, expected_dimension: int | None = None) -> int:
        """Drop every vector whose dimension is wrong.

        Returns:
            Number of vectors removed.
        """
        expected = expected_dimension or self.dimension
        async with self._lock:
            kept = {k: r for k, r in self._vectors.items() if len(r.vector) == expected}
            removed = len(self._vectors) - len(kept)
            if removed:
                self._vectors = kept
        if removed:
            logger.info("Removed %d invalid vectors", removed)
            await self.save_to_disk()
        return removed

    def health_stats(self) -> dict[str, int]:
        result = self.validate()
        return {"total": self.count(), "valid": result.valid, "invalid": result.invalid}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save_to_disk(self) -> None:
        """Write the current vector set to the snapshot file."""
        if self.path is None:
            return
        snapshot = self._vectors
        payload = json.dumps([r.to_dict() for r in snapshot.values()])
        async with self._io_lock:
            await asyncio.to_thread(write_snapshot, self.path, payload)

    async def load_from_disk(self) -> None:
        """Replace the in-memory set with the snapshot contents.

        A missing or corrupt snapshot yields an empty store. Entries with
        the wrong dimension or a malformed shape are skipped. The older
        ``{id: vector}`` mapping layout is read as well.
        """
        if self.path is None:
            return
        data = await asyncio.to_thread(read_snapshot, self.path)
        if isinstance(data, dict):
            data = [{"id": k, "vector": v} for k, v in data.items()]
        if not isinstance(data, list):
            data = []

        loaded: dict[str, VectorRecord] = {}
        skipped = 0
        for item in data:
            try:
                vector = tuple(float(v) for v in item["vector"])
                record = VectorRecord(str(item["id"]), vector, dict(item.get("metadata") or {}))
            except (AttributeError, KeyError, TypeError, ValueError):
                skipped += 1
                continue
            if len(vector) != self.dimension:
                skipped += 1
                continue
            loaded[record.id] = record

        async with self._lock:
            self._vectors = loaded
        if skipped:
            logger.warning("Skipped %d invalid vectors while loading %s", skipped, self.path)
        logger.debug("Loaded %d vectors from %s", len(loaded), self.path)
