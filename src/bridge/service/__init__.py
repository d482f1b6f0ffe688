"""Bridge recall service.

Example:
    ```python
    from bridge.service import RecallInput, RecallService

    recall = RecallService(records=store, vector_store=vectors, embedder=embedder)
    response = await recall.search(RecallInput(query="morning walk", qualities={"mood": "open"}))
    ```
"""

from .models import (
    ClusterSummary,
    DateRange,
    RecallDebug,
    RecallInput,
    RecallResponse,
    RecallResult,
    RelevanceBreakdown,
)
from .recall import RecallService
from .scoring import best_text_match, combined_score, text_match

__all__ = [
    "ClusterSummary",
    "DateRange",
    "RecallDebug",
    "RecallInput",
    "RecallResponse",
    "RecallResult",
    "RecallService",
    "RelevanceBreakdown",
    "best_text_match",
    "combined_score",
    "text_match",
]
