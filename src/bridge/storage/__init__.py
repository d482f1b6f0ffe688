"""Storage for Bridge: embedding vectors, snapshots and the record collaborator."""

from .records import InMemoryRecordStore, RecordStore
from .snapshot import read_snapshot, write_snapshot
from .vectors import (
    BatchResult,
    SimilarityResult,
    VectorRecord,
    VectorStore,
    VectorValidation,
    cosine_similarity,
    is_zero_vector,
)

__all__ = [
    "BatchResult",
    "InMemoryRecordStore",
    "RecordStore",
    "SimilarityResult",
    "VectorRecord",
    "VectorStore",
    "VectorValidation",
    "cosine_similarity",
    "is_zero_vector",
    "read_snapshot",
    "write_snapshot",
]
