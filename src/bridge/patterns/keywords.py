"""Quality-aware keyword extraction for quality dimension clusters.

Keywords for a cluster combine three signals:

- recurring words and phrases in the members' free-text descriptions of
  the dimension (strongest, rank-weighted x3);
- TF-IDF of the cluster text against every other record (rank-weighted x2);
- indicator words typical of the dimension found anywhere in the text (+5).
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Sequence

from bridge.models import ExperienceRecord

COMMON_WORDS = frozenset(
    {
        "through", "about", "would", "could", "should", "really", "where",
        "which", "their", "there", "these", "those", "feeling", "being",
        "having", "doing", "with", "from", "that", "this", "what", "when",
        "very", "much", "just", "like", "been", "have", "into", "then",
    }
)  # fmt: skip

COMMON_PHRASES = frozenset(
    {
        "with the", "in the", "of the", "and the", "to the",
        "from the", "on the", "at the", "for the", "by the",
    }
)  # fmt: skip

QUALITY_INDICATORS: dict[str, frozenset[str]] = {
    "embodied": frozenset(
        {"body", "physical", "sensation", "movement", "energy", "tension", "relaxation", "breath", "posture", "gesture"}
    ),
    "focus": frozenset(
        {"focus", "awareness", "attention", "notice", "observe", "concentrate", "mindful", "conscious", "alert", "perception"}
    ),
    "mood": frozenset(
        {"emotion", "mood", "joy", "sadness", "excitement", "calm", "tension", "warmth", "satisfaction", "curious"}
    ),
    "purpose": frozenset(
        {"goal", "intention", "purpose", "drive", "motivation", "desire", "objective", "mission", "aim", "target"}
    ),
    "space": frozenset(
        {"location", "space", "environment", "visual", "mapping", "structure", "layout", "position", "distance", "place"}
    ),
    "time": frozenset(
        {"time", "moment", "future", "past", "present", "sequence", "duration", "timing", "rhythm", "schedule"}
    ),
    "presence": frozenset(
        {"together", "relationship", "connection", "interaction", "communication", "understanding", "empathy", "collaboration", "dialogue", "social"}
    ),
}  # fmt: skip

MAX_CANDIDATES = 20

_TOKEN_RE = re.compile(r"[^a-z0-9]")


def tokens_and_phrases(text: str) -> list[str]:
    """Words longer than three characters plus adjacent two-word phrases."""
    words = [w for w in (_TOKEN_RE.sub("", raw) for raw in text.lower().split()) if w]
    tokens = [w for w in words if len(w) > 3]
    for first, second in zip(words, words[1:], strict=False):
        if len(first) > 2 and len(second) > 2:
            phrase = f"{first} {second}"
            if phrase not in COMMON_PHRASES:
                tokens.append(phrase)
    return tokens


class QualityAwareKeywordExtractor:
    """Rank keywords describing how a cluster expresses one dimension."""

    def extract(
        self,
        cluster: Sequence[ExperienceRecord],
        corpus: Sequence[ExperienceRecord],
        dimension: str,
        max_keywords: int = 10,
    ) -> list[str]:
        """Extract keywords for a quality cluster.

        Args:
            cluster: Members of the cluster.
            corpus: All records considered, for TF-IDF contrast.
            dimension: The quality dimension the cluster belongs to.
            max_keywords: Maximum keywords returned.

        Returns:
            Keywords ordered by combined score.
        """
        scores: Counter[str] = Counter()

        manifestation = self._manifestation_keywords(cluster, dimension)
        for rank, keyword in enumerate(manifestation):
            scores[keyword] += (len(manifestation) - rank) * 3

        tfidf = self._tfidf_keywords(cluster, corpus, dimension)
        for rank, keyword in enumerate(tfidf):
            scores[keyword] += (len(tfidf) - rank) * 2

        for keyword in self._indicators(cluster, dimension):
            scores[keyword] += 5

        ranked = [k for k, _ in scores.most_common() if k not in COMMON_WORDS]
        return ranked[:max_keywords]

    @staticmethod
    def _manifestation(record: ExperienceRecord, dimension: str) -> str:
        return record.signature.text_for(dimension) or ""

    def _manifestation_keywords(
        self, cluster: Sequence[ExperienceRecord], dimension: str
    ) -> list[str]:
        text = " ".join(self._manifestation(r, dimension) for r in cluster)
        counts = Counter(
            t for t in tokens_and_phrases(text) if t not in COMMON_WORDS and len(t) > 3
        )
        return [t for t, count in counts.most_common() if count > 1][:MAX_CANDIDATES]

    def _tfidf_keywords(
        self,
        cluster: Sequence[ExperienceRecord],
        corpus: Sequence[ExperienceRecord],
        dimension: str,
    ) -> list[str]:
        member_ids = {r.id for r in cluster}
        target = tokens_and_phrases(
            " ".join(f"{r.source} {self._manifestation(r, dimension)}" for r in cluster)
        )
        other = tokens_and_phrases(" ".join(r.source for r in corpus if r.id not in member_ids))
        if not target:
            return []

        target_counts = Counter(target)
        other_counts = Counter(other)
        other_total = max(1, len(other))

        scores: dict[str, float] = {}
        for token, count in target_counts.items():
            if token in COMMON_WORDS or len(token) <= 3:
                continue
            tf = count / len(target)
            df = other_counts.get(token, 0) / other_total
            idf = math.log(1 / (df + 0.01)) if df > 0 else 3.0
            scores[token] = tf * idf

        ranked = sorted(scores, key=lambda t: scores[t], reverse=True)
        return ranked[:MAX_CANDIDATES]

    def _indicators(self, cluster: Sequence[ExperienceRecord], dimension: str) -> list[str]:
        text = " ".join(
            f"{r.source} {self._manifestation(r, dimension)}" for r in cluster
        ).lower()
        return sorted(word for word in QUALITY_INDICATORS.get(dimension, ()) if word in text)
