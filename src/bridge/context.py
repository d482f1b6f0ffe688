"""Bridge context: service wiring, lifecycle and mutation entry points.

BridgeContext builds one instance of every service around a shared
record store, vector store and embedder. Mutations go through it so the
records, their vectors and the pattern cache stay in step.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any

from bridge.config import Settings
from bridge.embeddings import Embedder, get_embedder
from bridge.exceptions import EmbeddingError, NotFoundError
from bridge.filters import QualityFilterService
from bridge.logging import bind_context, configure_logging, get_logger, unbind_context
from bridge.models import ExperienceRecord
from bridge.patterns import PatternManager
from bridge.service import RecallInput, RecallResponse, RecallService
from bridge.storage import InMemoryRecordStore, RecordStore, VectorStore

logger = get_logger(__name__)

# Fields whose change alters the embedded text
_EMBEDDED_FIELDS = frozenset({"source", "qualities", "experience"})

_bridge_context: ContextVar[BridgeContext | None] = ContextVar("bridge_context", default=None)


def get_current_bridge() -> BridgeContext | None:
    """Get the BridgeContext opened by the innermost ``bridge_context`` block."""
    return _bridge_context.get()


@dataclass
class BridgeContext:
    """Wires the Bridge services together.

    Attributes:
        settings: Configuration shared by every service.
        records: Record storage.
        vector_store: Embedding store kept in step with the records.
        embedder: Embeds captured records and semantic queries. None
            disables semantic recall and capture-time embedding.
        quality_filter: Quality filter parser/evaluator.
        recall: Search service.
        patterns: Pattern cache owner.

    Example:
        ```python
        async with BridgeContext.create(settings) as bridge:
            record = await bridge.capture(
                ExperienceRecord(source="Quiet focus this morning", experience=["focus.narrow"])
            )
            response = await bridge.search(RecallInput(query="focus"))
        ```
    """

    settings: Settings
    records: RecordStore
    vector_store: VectorStore
    embedder: Embedder | None
    quality_filter: QualityFilterService
    recall: RecallService
    patterns: PatternManager

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        records: RecordStore | None = None,
        embedder: Embedder | None = None,
    ) -> BridgeContext:
        """Create a context with default collaborators.

        Args:
            settings: Optional settings. Uses defaults if None.
            records: Record storage. Defaults to an in-memory store.
            embedder: Embedding provider. Defaults to ``get_embedder(settings)``.

        Returns:
            Configured, uninitialized BridgeContext.
        """
        if settings is None:
            settings = Settings()
        if records is None:
            records = InMemoryRecordStore()
        if embedder is None:
            embedder = get_embedder(settings)

        vector_store = VectorStore(settings.vectors_path, dimension=settings.vector_dimension)
        quality_filter = QualityFilterService()
        patterns = PatternManager(records=records, settings=settings, vector_store=vector_store)
        recall = RecallService(
            records=records,
            vector_store=vector_store,
            quality_filter=quality_filter,
            settings=settings,
            embedder=embedder,
            pattern_manager=patterns,
        )
        return cls(
            settings=settings,
            records=records,
            vector_store=vector_store,
            embedder=embedder,
            quality_filter=quality_filter,
            recall=recall,
            patterns=patterns,
        )

    async def initialize(self) -> None:
        """Configure logging, load the vector store and the pattern cache."""
        configure_logging(self.settings.log_level, self.settings.log_format)
        await self.vector_store.initialize()
        await self.patterns.initialize()
        logger.info(
            "Bridge initialized",
            vectors=self.vector_store.count(),
            data_dir=str(self.settings.data_dir),
        )

    async def close(self) -> None:
        """Apply pending pattern updates and persist the vector store."""
        await self.patterns.close()
        await self.vector_store.save_to_disk()
        logger.info("Bridge closed")

    async def __aenter__(self) -> BridgeContext:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def capture(self, record: ExperienceRecord) -> ExperienceRecord:
        """Store a new experience.

        Embeds the record when it has no embedding, saves it, indexes the
        vector and schedules pattern placement. An embedding failure is
        logged and the record is stored without one.

        Returns:
            The stored record, with its embedding when one was produced.
        """
        record = await self._with_embedding(record)
        await self.records.save_record(record)
        if record.embedding:
            await self.vector_store.add(record.id, record.embedding, self._vector_metadata(record))
        await self.patterns.on_capture(record.id)
        logger.info("Experience captured", record_id=record.id, embedded=bool(record.embedding))
        return record

    async def reconsider(self, record_id: str, **changes: Any) -> ExperienceRecord:
        """Update fields of an existing experience.

        Re-embeds when the source or qualities change, unless an embedding
        is passed explicitly.

        Raises:
            NotFoundError: If the record does not exist.
        """
        existing = await self.records.get_record(record_id)
        if existing is None:
            raise NotFoundError("experience", record_id)

        data = {**existing.model_dump(), **changes, "id": record_id}
        if "embedding" not in changes and _EMBEDDED_FIELDS & changes.keys():
            data["embedding"] = None
        updated = await self._with_embedding(ExperienceRecord.model_validate(data))

        await self.records.update_record(updated)
        if updated.embedding:
            await self.vector_store.add(
                updated.id, updated.embedding, self._vector_metadata(updated)
            )
        else:
            await self.vector_store.remove(updated.id)
        await self.patterns.on_update(updated.id)
        logger.info("Experience reconsidered", record_id=record_id, fields=sorted(changes))
        return updated

    async def release(self, record_id: str) -> bool:
        """Delete an experience, its vector and its pattern memberships.

        Returns:
            False if the record did not exist.
        """
        deleted = await self.records.delete_record(record_id)
        await self.vector_store.remove(record_id)
        await self.patterns.on_delete(record_id)
        logger.info("Experience released", record_id=record_id, existed=deleted)
        return deleted

    async def search(self, request: RecallInput) -> RecallResponse:
        """Shortcut for ``recall.search``."""
        return await self.recall.search(request)

    async def _with_embedding(self, record: ExperienceRecord) -> ExperienceRecord:
        if record.embedding or self.embedder is None:
            return record
        try:
            vector = await self.embedder.embed(record.searchable_text())
        except EmbeddingError as e:
            logger.warning(
                "Embedding failed, storing without vector", record_id=record.id, error=str(e)
            )
            return record
        return record.model_copy(update={"embedding": vector})

    @staticmethod
    def _vector_metadata(record: ExperienceRecord) -> dict[str, Any]:
        return {
            "created": record.created.isoformat() if record.created else None,
            "experiencer": record.experiencer,
        }


@asynccontextmanager
async def bridge_context(
    settings: Settings | None = None,
    records: RecordStore | None = None,
    embedder: Embedder | None = None,
) -> AsyncIterator[BridgeContext]:
    """Open a BridgeContext for the duration of a block.

    Binds the data directory to the logging context and makes the
    context available through ``get_current_bridge``.

    Example:
        ```python
        async with bridge_context(Settings(data_dir=Path("/tmp/bridge"))) as bridge:
            await bridge.capture(ExperienceRecord(source="Walking home, tired"))
        ```
    """
    bridge = BridgeContext.create(settings, records=records, embedder=embedder)
    await bridge.initialize()
    bind_context(data_dir=str(bridge.settings.data_dir))
    token = _bridge_context.set(bridge)
    try:
        yield bridge
    finally:
        _bridge_context.reset(token)
        await bridge.close()
        unbind_context("data_dir")


__all__ = ["BridgeContext", "bridge_context", "get_current_bridge"]
