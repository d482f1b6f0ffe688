"""Experience record model."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .qualities import (
    LegacyQualities,
    QualityRepresentation,
    QualitySignature,
    QualityTokens,
    normalize_qualities,
)


def generate_id() -> str:
    """Generate a new experience identifier."""
    return f"exp_{uuid4().hex[:12]}"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a timestamp leniently.

    Naive datetimes are assumed to be UTC. Anything unparseable becomes
    None so that a corrupt timestamp excludes the record from temporal
    computations instead of failing them.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


class ExperienceRecord(BaseModel):
    """A captured experience.

    Records are immutable. Engine-side annotations (pattern tags) and
    explicit reconsiderations produce new instances via ``model_copy``.

    Attributes:
        id: Unique identifier.
        source: The experience text, in the experiencer's words.
        created: When the record was captured. None if missing or corrupt.
        occurred: When the experience claims to have happened.
        experiencer: Who had the experience.
        who: Additional people involved.
        perspective: Grammatical perspective of the source text.
        processing: When the experience was processed relative to its occurrence.
        crafted: Whether the text was deliberately composed.
        emoji: Optional emoji summarizing the experience.
        qualities: Legacy quality map (dimension to bool, subtype or sentence).
        experience: Quality tokens (``"mood"``, ``"mood.open"``).
        embedding: Embedding vector of the source text.
        reflects: IDs of records this one synthesizes (a pattern realization).
        pattern_tags: Names of patterns containing this record.
        pattern_ids: IDs of patterns containing this record.
        pattern_confidence: Highest coherence among those patterns.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=generate_id)
    source: str
    created: datetime | None = Field(default_factory=lambda: datetime.now(UTC))
    occurred: datetime | None = None
    experiencer: str | None = None
    who: str | list[str] | None = None
    perspective: str | None = None
    processing: str | None = None
    crafted: bool | None = None
    emoji: str | None = None
    qualities: dict[str, bool | str | None] | None = None
    experience: list[str] | None = None
    embedding: list[float] | None = None
    reflects: list[str] | None = None
    pattern_tags: list[str] | None = None
    pattern_ids: list[str] | None = None
    pattern_confidence: float | None = None

    @field_validator("created", "occurred", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @property
    def quality_representation(self) -> QualityRepresentation | None:
        """The record's qualities as a tagged union, tokens taking precedence."""
        if self.experience is not None:
            return QualityTokens(tuple(self.experience))
        if self.qualities is not None:
            return LegacyQualities(self.qualities)
        return None

    @property
    def signature(self) -> QualitySignature:
        """Canonical quality marks for this record."""
        return normalize_qualities(self.quality_representation)

    @property
    def is_pattern_realization(self) -> bool:
        return bool(self.reflects)

    @property
    def last_seen(self) -> datetime | None:
        """Most recent meaningful timestamp (occurred or created)."""
        stamps = [t for t in (self.occurred, self.created) if t is not None]
        return max(stamps) if stamps else None

    def searchable_text(self) -> str:
        """Text used to embed the record: source plus quality tokens."""
        tokens = self.signature.tokens()
        if not tokens:
            return self.source
        return f"[{', '.join(tokens)}] {self.source}"
