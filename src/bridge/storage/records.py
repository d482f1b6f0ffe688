"""Record storage collaborator.

The engine reads every record for recall and discovery and writes back
pattern tags. Any backend that implements RecordStore can be plugged in;
InMemoryRecordStore is provided for embedding and tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from bridge.exceptions import NotFoundError
from bridge.models import ExperienceRecord


class RecordStore(ABC):
    """Abstract async record storage."""

    @abstractmethod
    async def get_all_records(self) -> list[ExperienceRecord]:
        """Return every record in insertion order."""
        ...

    @abstractmethod
    async def get_record(self, record_id: str) -> ExperienceRecord | None:
        ...

    @abstractmethod
    async def save_record(self, record: ExperienceRecord) -> ExperienceRecord:
        """Insert a new record or replace an existing one with the same id."""
        ...

    @abstractmethod
    async def update_record(self, record: ExperienceRecord) -> ExperienceRecord:
        """Replace an existing record.

        Raises:
            NotFoundError: If no record has this id.
        """
        ...

    @abstractmethod
    async def delete_record(self, record_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        ...


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed RecordStore keeping insertion order."""

    def __init__(self, records: list[ExperienceRecord] | None = None) -> None:
        self._records: dict[str, ExperienceRecord] = {r.id: r for r in records or []}

    async def get_all_records(self) -> list[ExperienceRecord]:
        return list(self._records.values())

    async def get_record(self, record_id: str) -> ExperienceRecord | None:
        return self._records.get(record_id)

    async def save_record(self, record: ExperienceRecord) -> ExperienceRecord:
        self._records[record.id] = record
        return record

    async def update_record(self, record: ExperienceRecord) -> ExperienceRecord:
        if record.id not in self._records:
            raise NotFoundError("experience", record.id)
        self._records[record.id] = record
        return record

    async def delete_record(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def __len__(self) -> int:
        return len(self._records)
