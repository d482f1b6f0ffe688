"""Recall: filtered, scored and paginated search over experiences.

The pipeline narrows the candidate records with hard filters, scores
what remains, drops records a text query does not touch at all, then
sorts and paginates. Semantic similarity only boosts scores; it never
removes a record.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from typing import TYPE_CHECKING

from bridge.config import Settings
from bridge.exceptions import ValidationError
from bridge.filters import QualityFilterService
from bridge.models import ExperienceRecord, parse_timestamp

from .models import (
    ClusterSummary,
    DateRange,
    RecallDebug,
    RecallInput,
    RecallResponse,
    RecallResult,
    RelevanceBreakdown,
)
from .scoring import best_text_match, combined_score

if TYPE_CHECKING:
    from bridge.embeddings import Embedder
    from bridge.patterns import PatternManager
    from bridge.storage import RecordStore, VectorStore

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 200
MIN_SEMANTIC_OVERFETCH = 100

NO_RECORDS = "No records available"
THRESHOLD_TOO_HIGH = "Semantic similarity threshold too high - try lowering threshold"
QUERY_TOO_RESTRICTIVE = "Text query too restrictive - no records match the query"
ALL_FILTERED = "All records filtered out by applied filters"
OFFSET_TOO_LARGE = "Offset beyond available results"
UNKNOWN_REASON = "Unknown reason - check debug information for details"

_EARLIEST = datetime.min.replace(tzinfo=UTC)


def _parse_bound(value: str, *, end: bool) -> datetime:
    """Parse a temporal filter bound.

    A bare date covers the whole day: midnight as a start bound, the last
    instant of the day as an end bound.

    Raises:
        ValidationError: If the value is not an ISO date or datetime.
    """
    text = value.strip()
    try:
        day = date.fromisoformat(text)
    except ValueError:
        parsed = parse_timestamp(text)
        if parsed is None:
            raise ValidationError("created", f"Invalid date: {value!r}") from None
        return parsed
    return datetime.combine(day, time.max if end else time.min, tzinfo=UTC)


def _created_predicate(created: str | DateRange) -> Callable[[ExperienceRecord], bool]:
    if isinstance(created, str):
        start: datetime | None = _parse_bound(created, end=False)
        finish: datetime | None = None
    else:
        start = _parse_bound(created.start, end=False) if created.start else None
        finish = _parse_bound(created.end, end=True) if created.end else None

    def predicate(record: ExperienceRecord) -> bool:
        if record.created is None:
            return False
        if start is not None and record.created < start:
            return False
        return finish is None or record.created <= finish

    return predicate


@dataclass
class _Scored:
    record: ExperienceRecord
    text: float
    filter_relevance: float
    semantic: float | None
    score: float


@dataclass
class RecallService:
    """Search experiences by text, fields, time, qualities and meaning.

    Attributes:
        records: Record storage collaborator.
        vector_store: Embedding store for semantic recall.
        quality_filter: Quality filter parser/evaluator.
        settings: Configuration (weights, default limit and threshold).
        embedder: Embeds semantic queries. Without it semantic recall is skipped.
        pattern_manager: Supplies cluster summaries when requested.

    Example:
        ```python
        response = await recall.search(RecallInput(query="morning walk", limit=5))
        for result in response.results:
            print(result.id, result.relevance_score)
        ```
    """

    records: RecordStore
    vector_store: VectorStore
    quality_filter: QualityFilterService = field(default_factory=QualityFilterService)
    settings: Settings = field(default_factory=Settings)
    embedder: Embedder | None = None
    pattern_manager: PatternManager | None = None

    async def search(self, request: RecallInput) -> RecallResponse:
        """Run a recall request.

        Raises:
            ValidationError: If the created filter has an invalid date.
            QualityFilterError: If the quality filter is malformed.
        """
        limit = request.limit or self.settings.recall_default_limit
        queries = request.queries

        # Validate before touching anything
        created_predicate = _created_predicate(request.created) if request.created else None
        quality_expression = (
            self.quality_filter.parse(request.qualities) if request.qualities else None
        )

        records = await self.records.get_all_records()
        debug = RecallDebug(total_records=len(records))
        candidates = list(records)

        def narrow(name: str, predicate: Callable[[ExperienceRecord], bool]) -> None:
            nonlocal candidates
            kept = [r for r in candidates if predicate(r)]
            debug.filter_breakdown[name] = len(candidates) - len(kept)
            candidates = kept

        field_checks = self._field_checks(request)
        if request.id:
            narrow("id", lambda r: r.id == request.id)
        for name, check in field_checks.items():
            narrow(name, check)
        if created_predicate is not None:
            narrow("created", created_predicate)
        if quality_expression is not None:
            narrow("qualities", lambda r: self.quality_filter.evaluate(r, quality_expression))
        if request.reflects == "only":
            narrow("reflects", lambda r: r.is_pattern_realization)
        if request.reflected_by:
            reflected = self._reflected_ids(records, request.reflected_by)
            narrow("reflected_by", lambda r: r.id in reflected)
        debug.filtered_records = len(candidates)

        threshold = (
            request.semantic_threshold
            if request.semantic_threshold is not None
            else self.settings.semantic_threshold
        )
        similarities: dict[str, float] | None = None
        if request.semantic_query:
            similarities = await self._semantic_scores(
                request.semantic_query, threshold, limit, debug
            )

        scored: list[_Scored] = []
        weights = self.settings.recall_weights
        for record in candidates:
            text = best_text_match(queries, record.source)
            if queries and text == 0:
                continue
            filter_relevance = 1.0 if all(check(record) for check in field_checks.values()) else 0.0
            semantic = similarities.get(record.id, 0.0) if similarities is not None else None
            score = combined_score(
                text, filter_relevance, semantic, has_query=bool(queries), weights=weights
            )
            scored.append(_Scored(record, text, filter_relevance, semantic, score))

        if request.sort == "relevance":
            scored.sort(key=lambda s: s.score, reverse=True)
        else:
            scored.sort(key=lambda s: s.record.created or _EARLIEST, reverse=True)

        total = len(scored)
        page = scored[request.offset : request.offset + limit]

        response = RecallResponse(
            results=[self._to_result(s) for s in page],
            total=total,
            query=request.query,
            filters=request.active_filters(),
        )
        if not page:
            response.no_results_reason = self._no_results_reason(
                request, debug, total, threshold, similarities
            )
            logger.debug("Recall returned nothing: %s", response.no_results_reason)
        if request.group_by == "clusters":
            response.clusters = await self._clusters([s.record.id for s in page], debug)
        if request.debug or self.settings.debug:
            response.debug = debug
        return response

    @staticmethod
    def _field_checks(request: RecallInput) -> dict[str, Callable[[ExperienceRecord], bool]]:
        checks: dict[str, Callable[[ExperienceRecord], bool]] = {}
        if request.experiencer is not None:
            checks["experiencer"] = lambda r: r.experiencer == request.experiencer
        if request.perspective is not None:
            checks["perspective"] = lambda r: r.perspective == request.perspective
        if request.processing is not None:
            checks["processing"] = lambda r: r.processing == request.processing
        if request.crafted is not None:
            checks["crafted"] = lambda r: bool(r.crafted) == request.crafted
        return checks

    @staticmethod
    def _reflected_ids(records: list[ExperienceRecord], reflected_by: str | list[str]) -> set[str]:
        realization_ids = {reflected_by} if isinstance(reflected_by, str) else set(reflected_by)
        reflected: set[str] = set()
        for record in records:
            if record.id in realization_ids and record.reflects:
                reflected.update(record.reflects)
        return reflected

    async def _semantic_scores(
        self,
        text: str,
        threshold: float,
        limit: int,
        debug: RecallDebug,
    ) -> dict[str, float] | None:
        """Similarity of each stored vector to the embedded query.

        Returns None (and records why in debug) when semantic recall is
        unavailable or fails; recall then proceeds without it.
        """
        if self.embedder is None:
            debug.errors.append("Semantic recall not available: no embedder configured")
            return None
        try:
            vector = await self.embedder.embed(text)
            debug.query_embedding_dimension = len(vector)
            hits = self.vector_store.find_similar(
                vector,
                limit=max(2 * limit, MIN_SEMANTIC_OVERFETCH),
                threshold=threshold,
            )
        except Exception as e:
            logger.warning("Semantic recall failed, continuing without it: %s", e)
            debug.errors.append(f"Semantic recall failed: {e}")
            return None
        debug.semantic_search_performed = True
        debug.semantic_matches = len(hits)
        return {hit.id: hit.similarity for hit in hits}

    @staticmethod
    def _no_results_reason(
        request: RecallInput,
        debug: RecallDebug,
        total: int,
        threshold: float,
        similarities: dict[str, float] | None,
    ) -> str:
        if debug.total_records == 0:
            return NO_RECORDS
        if request.semantic_query and threshold > 0.9 and not similarities:
            return THRESHOLD_TOO_HIGH
        if debug.filtered_records == 0:
            return ALL_FILTERED
        if request.queries and total == 0:
            return QUERY_TOO_RESTRICTIVE
        if total > 0 and request.offset >= total:
            return OFFSET_TOO_LARGE
        return UNKNOWN_REASON

    async def _clusters(self, ids: list[str], debug: RecallDebug) -> list[ClusterSummary]:
        if self.pattern_manager is None:
            debug.errors.append("Cluster grouping not available: no pattern manager configured")
            return []
        patterns = await self.pattern_manager.get_patterns()
        summaries: list[ClusterSummary] = []
        for root in patterns:
            members = {eid for node in root.walk() for eid in node.experience_ids}
            matched = [i for i in ids if i in members]
            if matched:
                summaries.append(
                    ClusterSummary(
                        pattern_id=root.id,
                        name=root.name,
                        size=len(members),
                        experience_ids=matched,
                    )
                )
        return summaries

    @staticmethod
    def _to_result(scored: _Scored) -> RecallResult:
        record = scored.record
        source = record.source
        snippet = source if len(source) <= SNIPPET_LENGTH else source[:SNIPPET_LENGTH] + "..."
        metadata = {
            "created": record.created.isoformat() if record.created else None,
            "occurred": record.occurred.isoformat() if record.occurred else None,
            "experiencer": record.experiencer,
            "perspective": record.perspective,
            "processing": record.processing,
            "crafted": record.crafted,
            "qualities": record.signature.tokens(),
        }
        if record.reflects:
            metadata["reflects"] = list(record.reflects)
        if record.pattern_tags:
            metadata["pattern_tags"] = list(record.pattern_tags)
        return RecallResult(
            id=record.id,
            content=source,
            snippet=snippet,
            metadata=metadata,
            relevance_score=scored.score,
            relevance_breakdown=RelevanceBreakdown(
                text_match=scored.text,
                filter_relevance=scored.filter_relevance,
                semantic_similarity=scored.semantic,
            ),
        )
