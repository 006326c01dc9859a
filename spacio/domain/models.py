"""Data models for bookings, cancellation requests, rooms and minutes."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

AI_ID_PREFIX = "ai_"
_TIME_RE = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$")


class BookingSource(str, Enum):
    """Where a booking was created."""

    FORM = "form"
    AI = "ai"


@dataclass(frozen=True)
class BookingId:
    """Identifier of a booking, tagged with the flow that created it.

    Form bookings and AI-assistant bookings live in different backend tables
    and share the integer space, so the tag is part of the identity. The
    client-facing string form prefixes AI ids with ``ai_``.
    """

    source: BookingSource
    value: int

    @classmethod
    def form(cls, value: int) -> BookingId:
        return cls(BookingSource.FORM, int(value))

    @classmethod
    def ai(cls, value: int) -> BookingId:
        return cls(BookingSource.AI, int(value))

    @classmethod
    def parse(cls, raw: Union[BookingId, int, str], source: Optional[BookingSource] = None) -> BookingId:
        """Parse ``12``, ``"12"`` or ``"ai_12"`` into a BookingId.

        Args:
            raw: Raw identifier
            source: Source to use for un-prefixed values (default form)

        Raises:
            ValueError: If the value is not an integer id
        """
        if isinstance(raw, BookingId):
            return raw
        if isinstance(raw, bool):
            raise ValueError(f"Invalid booking id: {raw!r}")
        if isinstance(raw, int):
            return cls(source or BookingSource.FORM, raw)

        text = str(raw).strip()
        if text.startswith(AI_ID_PREFIX):
            number = text[len(AI_ID_PREFIX) :]
            if not number.isdigit():
                raise ValueError(f"Invalid booking id: {raw!r}")
            return cls.ai(int(number))
        if not text.isdigit():
            raise ValueError(f"Invalid booking id: {raw!r}")
        return cls(source or BookingSource.FORM, int(text))

    @property
    def is_ai(self) -> bool:
        return self.source is BookingSource.AI

    @property
    def display(self) -> str:
        """Client-facing string form (``"ai_12"`` or ``"12"``)."""
        if self.is_ai:
            return f"{AI_ID_PREFIX}{self.value}"
        return str(self.value)

    @property
    def wire_value(self) -> int:
        """The backend's numeric id, without the AI prefix."""
        return self.value

    def __str__(self) -> str:
        return self.display


class LifecycleStatus(str, Enum):
    """Phase of a booking relative to the reference time."""

    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    EXPIRED = "expired"


class BookingState(str, Enum):
    """Persisted booking state, normalised across backend spellings."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @classmethod
    def normalize(cls, *values: Optional[str]) -> BookingState:
        """Map backend ``status``/``booking_state`` values to a BookingState.

        The first terminal value found wins; anything else is active.
        """
        for value in values:
            if not value:
                continue
            lowered = str(value).strip().lower()
            if lowered in ("completed", "complete", "selesai"):
                return cls.COMPLETED
            if lowered in ("cancelled", "canceled", "dibatalkan"):
                return cls.CANCELLED
            if lowered == "expired":
                return cls.EXPIRED
        return cls.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self is not BookingState.ACTIVE


class MeetingType(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


def parse_facilities(value: Any) -> list[str]:
    """Facilities arrive as a list, a JSON array string or a comma list."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if str(v).strip()]
        return [part.strip() for part in text.split(",") if part.strip()]
    return []


def parse_flag(value: Any) -> bool:
    """Booleans arrive as bool, 0/1, "0"/"1" or "true"/"false"."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _parse_backend_datetime(value: Any) -> Any:
    """Accept ``YYYY-MM-DD HH:MM:SS`` as produced by the backend."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if len(text) >= 19 and text[10] == " ":
            return text[:10] + "T" + text[11:]
        return text
    return value


class Booking(BaseModel):
    """A reservation of a room for a time interval."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: BookingId
    room_id: int = 0
    room_name: str = ""
    topic: str = ""
    date: str = Field(..., description="Meeting date, YYYY-MM-DD")
    time: str = Field(..., description="Start time, HH:MM[:SS]")
    end_time: Optional[str] = None
    participants: int = 0
    pic: str = "-"
    meeting_type: MeetingType = MeetingType.INTERNAL
    facilities: list[str] = Field(default_factory=list)
    requires_rispat: bool = False
    state: BookingState = BookingState.ACTIVE
    cancel_reason: Optional[str] = None
    user_name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _parse_id(cls, value: Any) -> BookingId:
        return BookingId.parse(value)

    @field_validator("facilities", mode="before")
    @classmethod
    def _parse_facilities(cls, value: Any) -> list[str]:
        return parse_facilities(value)

    @field_serializer("id")
    def _serialize_id(self, value: BookingId) -> str:
        return value.display

    @property
    def source(self) -> BookingSource:
        return self.id.source

    @classmethod
    def from_api(cls, raw: dict[str, Any], source: BookingSource = BookingSource.FORM) -> Booking:
        """Build a Booking from a backend row.

        Args:
            raw: Row from ``bookings.php`` (form) or ``bookings.php?ai-data`` (AI)
            source: Which table the row came from
        """
        end_time = raw.get("end_time") or raw.get("endTime")
        pic = raw.get("pic")
        pic_text = str(pic).strip() if pic is not None else ""
        room_id = raw.get("room_id") or 0
        return cls(
            id=BookingId.parse(raw["id"], source=source),
            room_id=int(room_id),
            room_name=raw.get("room_name") or (f"Room {room_id}" if room_id else "-"),
            topic=raw.get("topic") or raw.get("meeting_topic") or "",
            date=raw.get("meeting_date") or raw.get("date") or "",
            time=raw.get("meeting_time") or raw.get("start_time") or raw.get("time") or "",
            end_time=str(end_time)[:5] if end_time else None,
            participants=int(raw.get("participants") or 0),
            pic=pic_text or "-",
            meeting_type=(
                MeetingType.EXTERNAL
                if raw.get("meeting_type") == "external"
                else MeetingType.INTERNAL
            ),
            facilities=raw.get("facilities"),
            requires_rispat=parse_flag(raw.get("requires_rispat")),
            state=BookingState.normalize(raw.get("booking_state"), raw.get("status")),
            cancel_reason=raw.get("cancel_reason"),
            user_name=raw.get("user_name") or raw.get("username"),
        )


class BookingDraft(BaseModel):
    """Input for creating a form booking."""

    room_id: int = Field(..., gt=0)
    topic: str = Field(..., min_length=1)
    date: str
    start_time: str
    end_time: str
    participants: int = Field(..., ge=1)
    pic: str = Field(..., min_length=1)
    meeting_type: MeetingType = MeetingType.INTERNAL
    facilities: list[str] = Field(default_factory=list)
    requires_rispat: bool = False

    @field_validator("topic", "pic")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: str) -> str:
        datetime.strptime(value, "%Y-%m-%d")
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        if not _TIME_RE.match(value):
            raise ValueError("time must be HH:MM")
        hours, minutes = value.split(":")[:2]
        if int(hours) > 23 or int(minutes) > 59:
            raise ValueError("time out of range")
        return f"{int(hours):02d}:{minutes}"

    @model_validator(mode="after")
    def _end_after_start(self) -> BookingDraft:
        if self.end_time <= self.start_time:
            raise ValueError("end time must be after start time")
        return self

    @property
    def duration_minutes(self) -> int:
        sh, sm = (int(p) for p in self.start_time.split(":"))
        eh, em = (int(p) for p in self.end_time.split(":"))
        return (eh * 60 + em) - (sh * 60 + sm)

    def to_payload(self, user_id: Optional[int]) -> dict[str, Any]:
        """Body of ``bookings.php`` ``action=create``."""
        return {
            "user_id": user_id,
            "room_id": self.room_id,
            "topic": self.topic,
            "meeting_date": self.date,
            "meeting_time": f"{self.start_time}:00",
            "end_time": f"{self.end_time}:00",
            "duration": self.duration_minutes,
            "participants": self.participants,
            "pic": self.pic,
            "meeting_type": self.meeting_type.value,
            "facilities": self.facilities,
            "requires_rispat": self.requires_rispat,
            "booking_state": "BOOKED",
        }


class CancelRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not CancelRequestStatus.PENDING


class CancelRequest(BaseModel):
    """A non-owner's request to cancel someone else's booking.

    Instances are immutable; a transition produces a new instance.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: int
    booking_id: str
    booking_type: BookingSource = BookingSource.FORM
    requester_name: str
    requester_id: Optional[int] = None
    owner_name: str
    owner_id: Optional[int] = None
    reason: str
    status: CancelRequestStatus = CancelRequestStatus.PENDING
    response_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    booking_topic: Optional[str] = None
    meeting_date: Optional[str] = None

    @field_validator("booking_id", mode="before")
    @classmethod
    def _booking_id_text(cls, value: Any) -> str:
        return str(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _backend_datetime(cls, value: Any) -> Any:
        return _parse_backend_datetime(value)

    @field_validator("booking_type", mode="before")
    @classmethod
    def _booking_type(cls, value: Any) -> Any:
        return value or BookingSource.FORM

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def target(self) -> BookingId:
        """Target booking as a tagged id."""
        return BookingId.parse(self.booking_id, source=self.booking_type)


class MeetingRoom(BaseModel):
    id: int
    name: str
    floor: str = "-"
    capacity: int = 0
    address: str = "-"
    facilities: list[str] = Field(default_factory=list)
    image: Optional[str] = None
    is_active: bool = True

    @field_validator("facilities", mode="before")
    @classmethod
    def _parse_facilities(cls, value: Any) -> list[str]:
        return parse_facilities(value)

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> MeetingRoom:
        if raw.get("is_active") is not None:
            active = parse_flag(raw["is_active"])
        elif raw.get("is_available") is not None:
            active = parse_flag(raw["is_available"])
        else:
            active = True
        return cls(
            id=int(raw.get("id") if raw.get("id") is not None else raw["room_id"]),
            name=raw.get("name") or raw.get("room_name") or "",
            floor=str(raw.get("floor") or "-"),
            capacity=int(raw.get("capacity") or 0),
            address=raw.get("building") or raw.get("description") or "-",
            facilities=raw.get("features") if raw.get("features") is not None else raw.get("facilities"),
            image=raw.get("image_url"),
            is_active=active,
        )


class RispatFile(BaseModel):
    """An uploaded meeting-minutes file."""

    id: int
    booking_id: int
    file_name: str = ""
    original_name: str = ""
    file_path: str = ""
    file_type: str = ""
    file_size: int = 0
    uploaded_by: str = ""
    uploaded_at: Optional[datetime] = None

    @field_validator("uploaded_at", mode="before")
    @classmethod
    def _backend_datetime(cls, value: Any) -> Any:
        return _parse_backend_datetime(value)


class CurrentUser(BaseModel):
    """The logged-in user as stored with the session."""

    id: Optional[int] = None
    username: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or "Unknown User"

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin"
