"""Service layer models for Bridge.

Contains Pydantic models for recall:
- RecallInput: What to search for and how to filter
- RecallResult: A single scored record
- RecallResponse: A page of results with diagnostics
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DateRange(BaseModel):
    """Inclusive creation-time range. Either bound may be omitted."""

    model_config = ConfigDict(extra="forbid")

    start: str | None = None
    end: str | None = None


class RecallInput(BaseModel):
    """Recall request.

    Attributes:
        query: Free-text query, or several alternatives.
        limit: Page size. Defaults to the configured recall limit.
        offset: Results to skip before the page starts.
        experiencer: Only records by this experiencer.
        perspective: Only records with this perspective.
        processing: Only records with this processing timing.
        crafted: Only crafted (True) or uncrafted (False) records.
        created: A date (on or after) or an inclusive date range.
        semantic_query: Text to embed and compare against stored vectors.
        semantic_threshold: Minimum similarity for a semantic hit.
        sort: ``created`` (newest first) or ``relevance`` (best first).
        id: Look up a single record.
        qualities: Quality filter specification.
        reflects: ``"only"`` restricts to pattern realizations.
        reflected_by: Records reflected by these realization ids.
        group_by: ``"clusters"`` adds pattern cluster summaries.
        debug: Attach debug information.
    """

    model_config = ConfigDict(extra="forbid")

    query: str | list[str] | None = None
    limit: int | None = Field(default=None, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    experiencer: str | None = None
    perspective: str | None = None
    processing: str | None = None
    crafted: bool | None = None
    created: str | DateRange | None = None
    semantic_query: str | None = None
    semantic_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    sort: Literal["created", "relevance"] = "created"
    id: str | None = None
    qualities: dict[str, Any] | None = None
    reflects: Literal["only"] | None = None
    reflected_by: str | list[str] | None = None
    group_by: Literal["clusters"] | None = None
    debug: bool = False

    @property
    def queries(self) -> list[str]:
        """Non-empty query strings."""
        if self.query is None:
            return []
        raw = [self.query] if isinstance(self.query, str) else self.query
        return [q for q in raw if q.strip()]

    def active_filters(self) -> dict[str, Any]:
        """Filter inputs that were actually supplied, for echoing back."""
        names = (
            "experiencer",
            "perspective",
            "processing",
            "crafted",
            "created",
            "semantic_query",
            "semantic_threshold",
            "id",
            "qualities",
            "reflects",
            "reflected_by",
        )
        filters: dict[str, Any] = {}
        for name in names:
            value = getattr(self, name)
            if value is None or value == "" or value == []:
                continue
            filters[name] = value.model_dump() if isinstance(value, BaseModel) else value
        return filters


class RelevanceBreakdown(BaseModel):
    """Components of a result's relevance score."""

    model_config = ConfigDict(extra="forbid")

    text_match: float
    filter_relevance: float
    semantic_similarity: float | None = None


class RecallResult(BaseModel):
    """A single recalled record.

    Attributes:
        id: Record ID.
        type: Result kind, always ``experience``.
        content: Full source text.
        snippet: Source text truncated to 200 characters.
        metadata: Creation time, attribution and quality tokens.
        relevance_score: Combined score (0.0-1.0).
        relevance_breakdown: The signals behind the score.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    type: Literal["experience"] = "experience"
    content: str
    snippet: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    relevance_score: float = Field(ge=0.0, le=1.0)
    relevance_breakdown: RelevanceBreakdown

    @field_validator("relevance_score", mode="before")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        """Clamp score to [0, 1] to handle floating point precision issues."""
        return max(0.0, min(1.0, v))


class ClusterSummary(BaseModel):
    """Root pattern containing some of the returned records."""

    model_config = ConfigDict(extra="forbid")

    pattern_id: str
    name: str
    size: int
    experience_ids: list[str]


class RecallDebug(BaseModel):
    """Diagnostics for a recall request."""

    total_records: int = 0
    filtered_records: int = 0
    semantic_search_performed: bool = False
    query_embedding_dimension: int | None = None
    semantic_matches: int = 0
    filter_breakdown: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)


class RecallResponse(BaseModel):
    """A page of recall results.

    Attributes:
        results: The requested page, in sort order.
        total: Number of matches before pagination.
        query: The query as given.
        filters: The filters that were applied.
        no_results_reason: Why the page is empty, if it is.
        clusters: Pattern clusters of the results, when requested.
        debug: Diagnostics, when requested.
    """

    results: list[RecallResult] = Field(default_factory=list)
    total: int = 0
    query: str | list[str] | None = None
    filters: dict[str, Any] = Field(default_factory=dict)
    no_results_reason: str | None = None
    clusters: list[ClusterSummary] | None = None
    debug: RecallDebug | None = None
