"""Relevance scoring for recall.

Contains the pure functions behind the recall score:
- text_match: free-text relevance of a record's source
- combined_score: weighted blend of text, filter and semantic signals
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from bridge.config import RecallWeights

PHRASE_MATCH_SCORE = 0.9
WORD_MATCH_WEIGHT = 0.7
PARTIAL_MATCH_WEIGHT = 0.4

_WORD_RE = re.compile(r"[\w']+")


def _words(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


def text_match(query: str, content: str) -> float:
    """Score how well ``content`` matches a free-text ``query``.

    - An empty query matches everything (1.0).
    - The whole query appearing as a phrase scores 0.9.
    - Otherwise the score is the larger of the whole-word match ratio
      times 0.7 and the partial (substring-of-a-word) match ratio times 0.4.

    Only query words longer than two characters count, and only those
    longer than three characters may match partially.

    Args:
        query: Free-text query.
        content: Record text to score.

    Returns:
        Score in [0, 1]. Zero means no overlap at all.
    """
    phrase = query.strip().lower()
    if not phrase:
        return 1.0
    text = content.lower()
    if phrase in text:
        return PHRASE_MATCH_SCORE

    query_words = [w for w in _words(phrase) if len(w) > 2]
    if not query_words:
        return 0.0
    content_words = _words(text)
    vocabulary = set(content_words)

    whole = sum(1 for w in query_words if w in vocabulary)
    partial = sum(
        1 for w in query_words if len(w) > 3 and any(w in cw for cw in content_words)
    )
    return max(
        whole / len(query_words) * WORD_MATCH_WEIGHT,
        partial / len(query_words) * PARTIAL_MATCH_WEIGHT,
    )


def best_text_match(queries: Sequence[str], content: str) -> float:
    """Best text_match over several queries (1.0 when there are none)."""
    if not queries:
        return 1.0
    return max(text_match(q, content) for q in queries)


def combined_score(
    text: float,
    filter_relevance: float,
    semantic: float | None,
    *,
    has_query: bool,
    weights: RecallWeights | None = None,
) -> float:
    """Blend the recall signals into one score.

    With no text query the text term is a fixed base score equal to the
    text weight. A missing semantic similarity contributes nothing.

    Returns:
        Score clamped to [0, 1].
    """
    weights = weights or RecallWeights()
    text_term = text * weights.text if has_query else weights.text
    score = text_term + filter_relevance * weights.filter + (semantic or 0.0) * weights.semantic
    return max(0.0, min(1.0, score))
