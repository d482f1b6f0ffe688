"""Quality dimensions and the canonical quality representation.

Records carry qualities in one of two shapes:

- a legacy mapping of dimension to ``False``, ``True``, a subtype string
  or a free-text sentence;
- a flat list of ``"dimension"`` / ``"dimension.subtype"`` tokens.

Both shapes are wrapped in a small tagged union and reduced by
:func:`normalize_qualities` to a :class:`QualitySignature`. Every consumer
(filters, pattern discovery, recall metadata) works on the signature only.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum


class QualityDimension(str, Enum):
    """The seven experiential axes a record can be tagged with."""

    EMBODIED = "embodied"
    FOCUS = "focus"
    MOOD = "mood"
    PURPOSE = "purpose"
    SPACE = "space"
    TIME = "time"
    PRESENCE = "presence"


QUALITY_DIMENSIONS: tuple[str, ...] = tuple(d.value for d in QualityDimension)

QUALITY_SUBTYPES: dict[str, tuple[str, ...]] = {
    "embodied": ("thinking", "sensing"),
    "focus": ("narrow", "broad"),
    "mood": ("open", "closed"),
    "purpose": ("goal", "wander"),
    "space": ("here", "there"),
    "time": ("past", "future"),
    "presence": ("individual", "collective"),
}

# Every name accepted as a quality key: bare dimensions and dotted subtypes.
KNOWN_QUALITIES: frozenset[str] = frozenset(
    [*QUALITY_DIMENSIONS]
    + [f"{dim}.{sub}" for dim, subs in QUALITY_SUBTYPES.items() for sub in subs]
)

# Keyword sets used to read a subtype out of a legacy free-text sentence.
SENTENCE_PATTERNS: dict[str, dict[str, tuple[str, ...]]] = {
    "embodied": {
        "thinking": ("mind processes", "analytically", "thoughts line up", "thinking"),
        "sensing": ("feeling this", "whole body", "body knows", "sensing", "feeling"),
        "tension": ("tension",),
    },
    "focus": {
        "narrow": ("zeroing in", "one specific thing", "laser focus", "narrow"),
        "broad": ("taking in everything", "wide awareness", "peripheral", "broad"),
    },
    "mood": {
        "open": ("curious", "receptive", "welcoming", "possibility", "open"),
        "closed": ("shutting down", "emotionally", "closed off", "withdrawn", "closed"),
        "anxious": ("anxious",),
    },
    "purpose": {
        "goal": ("pushing toward", "specific outcome", "achievement", "goal"),
        "wander": ("exploring", "without direction", "drifting", "wander"),
    },
    "space": {
        "here": ("present in this space", "fully here", "grounded", "here"),
        "there": ("mind is elsewhere", "somewhere else", "distant", "there"),
    },
    "time": {
        "past": ("memories", "pulling backward", "remembering", "past"),
        "future": ("anticipating", "what comes next", "forward", "future"),
    },
    "presence": {
        "individual": ("navigating alone", "by myself", "solitary", "individual"),
        "collective": ("shared experience", "together", "we", "collective"),
    },
}

def sentence_subtypes(dimension: str, sentence: str) -> set[str]:
    """Find the subtypes of a dimension described by a free-text sentence.

    A keyword matches when it occurs anywhere in the lowercased sentence,
    so ``"overthinking"`` counts as thinking and ``"there"`` also contains
    ``"here"``.

    Args:
        dimension: Quality dimension the sentence belongs to.
        sentence: Legacy free-text quality description.

    Returns:
        Subtype names whose keyword set matched.
    """
    text = sentence.lower()
    return {
        subtype
        for subtype, keywords in SENTENCE_PATTERNS.get(dimension, {}).items()
        if any(keyword in text for keyword in keywords)
    }


@dataclass(frozen=True)
class QualitySignature:
    """Canonical set of ``(dimension, subtype | None)`` marks for one record.

    A ``(dimension, None)`` mark means the dimension is present at all.
    Legacy sentences are kept per dimension for substring matching.
    """

    marks: frozenset[tuple[str, str | None]] = frozenset()
    sentences: Mapping[str, str] = field(default_factory=dict)

    def has(self, dimension: str) -> bool:
        return (dimension, None) in self.marks

    def subtypes(self, dimension: str) -> set[str]:
        return {sub for dim, sub in self.marks if dim == dimension and sub is not None}

    def has_subtype(self, dimension: str, subtype: str) -> bool:
        return (dimension, subtype) in self.marks

    def text_for(self, dimension: str) -> str | None:
        return self.sentences.get(dimension)

    @property
    def dimensions(self) -> set[str]:
        return {dim for dim, sub in self.marks if sub is None}

    def tokens(self) -> list[str]:
        """Render the signature as sorted ``dimension[.subtype]`` tokens."""
        rendered = {dim if sub is None else f"{dim}.{sub}" for dim, sub in self.marks}
        return sorted(rendered)

    def prominence(self) -> dict[str, float]:
        """Per-dimension prominence: 1.0 when present, 0.0 otherwise."""
        return {dim: 1.0 if self.has(dim) else 0.0 for dim in QUALITY_DIMENSIONS}


EMPTY_SIGNATURE = QualitySignature()


@dataclass(frozen=True)
class LegacyQualities:
    """Legacy representation: dimension mapped to bool, subtype or sentence."""

    values: Mapping[str, bool | str | None]


@dataclass(frozen=True)
class QualityTokens:
    """Token representation: ``"dimension"`` or ``"dimension.subtype"`` strings."""

    tokens: tuple[str, ...]


QualityRepresentation = LegacyQualities | QualityTokens


def _legacy_marks(
    values: Mapping[str, bool | str | None],
) -> tuple[set[tuple[str, str | None]], dict[str, str]]:
    marks: set[tuple[str, str | None]] = set()
    sentences: dict[str, str] = {}
    for key, value in values.items():
        dimension = str(key).strip().lower()
        if dimension not in QUALITY_SUBTYPES:
            continue
        if value is None or value is False:
            continue
        if value is True:
            marks.add((dimension, None))
            continue
        text = str(value).strip()
        if not text:
            continue
        marks.add((dimension, None))
        if any(ch.isspace() for ch in text):
            sentences[dimension] = text
            marks.update((dimension, sub) for sub in sentence_subtypes(dimension, text))
        else:
            subtype = text.lower()
            if subtype.startswith(f"{dimension}."):
                subtype = subtype[len(dimension) + 1 :]
            marks.add((dimension, subtype))
    return marks, sentences


def _token_marks(tokens: Iterable[str]) -> set[tuple[str, str | None]]:
    marks: set[tuple[str, str | None]] = set()
    for token in tokens:
        dimension, _, subtype = str(token).strip().lower().partition(".")
        if dimension not in QUALITY_SUBTYPES:
            continue
        marks.add((dimension, None))
        if subtype:
            marks.add((dimension, subtype))
    return marks


def normalize_qualities(representation: QualityRepresentation | None) -> QualitySignature:
    """Reduce any quality representation to its canonical signature.

    Args:
        representation: Legacy map, token list, or None.

    Returns:
        The record's QualitySignature. Unknown dimensions are ignored.

    Example:
        ```python
        sig = normalize_qualities(QualityTokens(("mood.open", "focus")))
        assert sig.has_subtype("mood", "open")
        assert sig.has("focus")
        ```
    """
    if representation is None:
        return EMPTY_SIGNATURE
    if isinstance(representation, QualityTokens):
        return QualitySignature(marks=frozenset(_token_marks(representation.tokens)))
    if isinstance(representation, LegacyQualities):
        marks, sentences = _legacy_marks(representation.values)
        return QualitySignature(marks=frozenset(marks), sentences=sentences)
    raise TypeError(f"Unsupported quality representation: {type(representation).__name__}")
