"""Local log of finished bookings (completed, cancelled or expired)."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from spacio.core.storage import KeyValueStore
from spacio.core.timezone_utils import ReferenceTime
from spacio.domain.models import Booking, BookingId, LifecycleStatus, RispatFile
from spacio.domain.status_classifier import classify_booking

logger = logging.getLogger(__name__)

STORAGE_KEY = "booking_history"
DEFAULT_MAX_ENTRIES = 200


class HistoryStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class HistoryEntry(BaseModel):
    id: str
    room_name: str
    topic: str
    date: str
    time: str
    end_time: Optional[str] = None
    participants: int = 0
    pic: Optional[str] = None
    status: HistoryStatus
    saved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    source: Optional[str] = None
    cancel_reason: Optional[str] = None
    rispat_files: list[RispatFile] = Field(default_factory=list)

    @classmethod
    def from_booking(
        cls,
        booking: Booking,
        status: HistoryStatus,
        cancel_reason: Optional[str] = None,
        rispat_files: Optional[list[RispatFile]] = None,
    ) -> HistoryEntry:
        return cls(
            id=booking.id.display,
            room_name=booking.room_name,
            topic=booking.topic,
            date=booking.date,
            time=booking.time,
            end_time=booking.end_time,
            participants=booking.participants,
            pic=booking.pic,
            status=status,
            source=booking.source.value,
            cancel_reason=cancel_reason,
            rispat_files=rispat_files or [],
        )

    def same_as(self, other: HistoryEntry) -> bool:
        """Duplicate check: same booking, slot, room and outcome."""
        return (
            self.id == other.id
            and self.topic == other.topic
            and self.date == other.date
            and self.time == other.time
            and self.room_name == other.room_name
            and self.status == other.status
        )


class HistoryStore:
    """Newest-first history persisted under one key of a KeyValueStore."""

    def __init__(self, store: KeyValueStore, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._store = store
        self.max_entries = max_entries

    def entries(self) -> list[HistoryEntry]:
        raw = self._store.get(STORAGE_KEY)
        if not isinstance(raw, list):
            return []
        entries = []
        for item in raw:
            try:
                entries.append(HistoryEntry.model_validate(item))
            except PydanticValidationError:
                logger.warning("Dropping malformed history entry: %r", item)
        return entries

    def _save(self, entries: list[HistoryEntry]) -> None:
        self._store.set(STORAGE_KEY, [e.model_dump(mode="json") for e in entries])

    def add(self, entry: HistoryEntry) -> bool:
        """Prepend an entry unless an identical one exists.

        Returns:
            False when the entry was a duplicate
        """
        entries = self.entries()
        if any(existing.same_as(entry) for existing in entries):
            logger.debug("Duplicate history entry ignored: %s", entry.topic)
            return False

        stamped = entry.model_copy(update={"saved_at": datetime.now(timezone.utc)})
        entries.insert(0, stamped)
        self._save(entries[: self.max_entries])
        return True

    def is_finalized(self, booking_id: Union[BookingId, str]) -> bool:
        """True when the booking was completed or cancelled from this client."""
        key = booking_id.display if isinstance(booking_id, BookingId) else str(booking_id)
        return any(
            e.id == key and e.status in (HistoryStatus.COMPLETED, HistoryStatus.CANCELLED)
            for e in self.entries()
        )

    def contains(self, booking_id: Union[BookingId, str]) -> bool:
        key = booking_id.display if isinstance(booking_id, BookingId) else str(booking_id)
        return any(e.id == key for e in self.entries())

    def archive_expired(
        self, bookings: Iterable[Booking], reference: ReferenceTime
    ) -> list[HistoryEntry]:
        """Record every expired, still-active booking not yet in history."""
        archived = []
        for booking in bookings:
            if booking.state.is_terminal or self.contains(booking.id):
                continue
            if classify_booking(booking, reference) is not LifecycleStatus.EXPIRED:
                continue
            entry = HistoryEntry.from_booking(booking, HistoryStatus.EXPIRED).model_copy(
                update={"completed_at": datetime.now(timezone.utc)}
            )
            if self.add(entry):
                archived.append(entry)
        if archived:
            logger.info("Archived %d expired booking(s)", len(archived))
        return archived

    def clear(self) -> None:
        self._store.delete(STORAGE_KEY)
