"""Embedding clustering primitives shared by discovery and incremental updates.

Hard clustering: every record belongs to at most one cluster at a level.
A seed gathers candidates whose *minimum* similarity to all current
members clears the threshold, which keeps clusters tight instead of
chaining loosely related records together.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime

import numpy as np

from bridge.models import (
    QUALITY_DIMENSIONS,
    ExperienceRecord,
    PatternMetadata,
    recency_for,
)

MAX_CLUSTER_MEMBERS = 20
THEME_MIN_LENGTH = 5  # words must be longer than four characters

_WORD_RE = re.compile(r"[a-z0-9']+")
_EARLIEST = datetime.min.replace(tzinfo=UTC)


def has_valid_embedding(record: ExperienceRecord, dimension: int) -> bool:
    """True if the record has a non-zero embedding of the right dimension."""
    embedding = record.embedding
    return bool(embedding) and len(embedding) == dimension and any(embedding)


def embedding_matrix(records: Sequence[ExperienceRecord]) -> np.ndarray:
    return np.asarray([r.embedding for r in records], dtype=np.float64)


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """Scale rows to unit length. Zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def similarity_matrix(matrix: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarities of the rows of ``matrix``."""
    unit = normalize_rows(matrix)
    return np.clip(unit @ unit.T, -1.0, 1.0)


def similarity_to(matrix: np.ndarray, vector: Sequence[float]) -> np.ndarray:
    """Cosine similarity of every row of ``matrix`` to ``vector``."""
    query = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(query)
    if norm == 0 or matrix.size == 0:
        return np.zeros(len(matrix))
    return np.clip(normalize_rows(matrix) @ (query / norm), -1.0, 1.0)


def centroid(matrix: np.ndarray) -> list[float]:
    if matrix.size == 0:
        return []
    return matrix.mean(axis=0).tolist()


def cohesion(matrix: np.ndarray) -> float:
    """Average pairwise cosine similarity (1.0 for fewer than two rows)."""
    n = len(matrix)
    if n < 2:
        return 1.0
    sims = similarity_matrix(matrix)
    upper = sims[np.triu_indices(n, k=1)]
    return float(upper.mean())


def coherence_score(value: float) -> float:
    """Map a similarity in [-1, 1] to a 0-100 coherence score."""
    return round(max(0.0, min(1.0, value)) * 100.0, 1)


def hard_cluster(
    records: Sequence[ExperienceRecord],
    threshold: float,
    min_size: int,
    max_clusters: int,
) -> list[list[ExperienceRecord]]:
    """Partition records into tight, disjoint clusters.

    Records are visited oldest first. A seed that cannot gather
    ``min_size`` members releases them for later seeds.

    Args:
        records: Records with valid embeddings.
        threshold: Minimum similarity between every pair of members.
        min_size: Smallest cluster kept.
        max_clusters: Stop after this many clusters.

    Returns:
        Clusters in creation order. Unclustered records are outliers.
    """
    if len(records) < min_size:
        return []

    order = sorted(
        range(len(records)),
        key=lambda i: records[i].created or _EARLIEST,
    )
    sims = similarity_matrix(embedding_matrix(records))
    assigned: set[int] = set()
    clusters: list[list[int]] = []

    for seed in order:
        if len(clusters) >= max_clusters:
            break
        if seed in assigned:
            continue
        members = [seed]
        for candidate in order:
            if candidate in assigned or candidate == seed:
                continue
            if sims[candidate, members].min() >= threshold:
                members.append(candidate)
                if len(members) >= MAX_CLUSTER_MEMBERS:
                    break
        if len(members) >= min_size:
            clusters.append(members)
            assigned.update(members)

    return [[records[i] for i in members] for members in clusters]


def frequent_words(texts: Sequence[str], limit: int) -> list[str]:
    """Words longer than four characters appearing more than once."""
    counts: Counter[str] = Counter()
    for text in texts:
        counts.update(w for w in _WORD_RE.findall(text.lower()) if len(w) >= THEME_MIN_LENGTH)
    ranked = [word for word, count in counts.most_common() if count > 1]
    return ranked[:limit]


def top_emojis(records: Sequence[ExperienceRecord], limit: int = 4) -> list[str]:
    counts = Counter(r.emoji for r in records if r.emoji)
    return [emoji for emoji, _ in counts.most_common(limit)]


def quality_prominence(records: Sequence[ExperienceRecord]) -> dict[str, float]:
    """Average per-dimension prominence across members."""
    if not records:
        return {}
    totals = dict.fromkeys(QUALITY_DIMENSIONS, 0.0)
    for record in records:
        for dimension, value in record.signature.prominence().items():
            totals[dimension] += value
    return {dim: round(total / len(records), 3) for dim, total in totals.items() if total > 0}


def latest_timestamp(records: Sequence[ExperienceRecord]) -> datetime | None:
    stamps = [r.last_seen for r in records if r.last_seen is not None]
    return max(stamps) if stamps else None


def build_metadata(
    records: Sequence[ExperienceRecord],
    themes: list[str],
    semantic_meaning: str,
    center: list[float],
    now: datetime | None = None,
) -> PatternMetadata:
    return PatternMetadata(
        emojis=top_emojis(records),
        themes=themes,
        qualities=quality_prominence(records),
        recency=recency_for(latest_timestamp(records), now),
        semantic_meaning=semantic_meaning,
        centroid=center,
    )
