"""Meeting room listing, search and occupancy."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Literal, Optional

from pydantic import ValidationError as PydanticValidationError

from spacio.core.api_client import SpacioAPIClient
from spacio.core.timezone_utils import ReferenceTime
from spacio.domain.models import Booking, LifecycleStatus, MeetingRoom
from spacio.domain.status_classifier import classify_booking

logger = logging.getLogger(__name__)

RoomStatusFilter = Literal["available", "maintenance"]


def filter_rooms(
    rooms: Iterable[MeetingRoom],
    search_term: Optional[str] = None,
    min_capacity: Optional[int] = None,
    status: Optional[RoomStatusFilter] = None,
) -> list[MeetingRoom]:
    """Filter rooms the way the room browser does.

    Args:
        rooms: Rooms to filter
        search_term: Case-insensitive substring of name, address or any facility
        min_capacity: Keep rooms holding at least this many people
        status: ``available`` keeps active rooms, ``maintenance`` inactive ones
    """
    result = list(rooms)

    term = (search_term or "").strip().lower()
    if term:
        result = [
            room
            for room in result
            if term in room.name.lower()
            or term in room.address.lower()
            or any(term in facility.lower() for facility in room.facilities)
        ]

    if min_capacity:
        result = [room for room in result if room.capacity >= min_capacity]

    if status == "available":
        result = [room for room in result if room.is_active]
    elif status == "maintenance":
        result = [room for room in result if not room.is_active]

    return result


def _booking_in_room(booking: Booking, room: MeetingRoom) -> bool:
    if booking.room_id and booking.room_id == room.id:
        return True
    return bool(booking.room_name) and booking.room_name == room.name


def rooms_in_use(
    rooms: Iterable[MeetingRoom],
    bookings: Iterable[Booking],
    reference: ReferenceTime,
) -> list[MeetingRoom]:
    """Rooms with an active booking that is ongoing at ``reference``."""
    ongoing = [
        b
        for b in bookings
        if not b.state.is_terminal and classify_booking(b, reference) is LifecycleStatus.ONGOING
    ]
    return [room for room in rooms if any(_booking_in_room(b, room) for b in ongoing)]


class RoomDirectory:
    """Cached room list from the backend."""

    def __init__(self, api: SpacioAPIClient) -> None:
        self.api = api
        self.rooms: list[MeetingRoom] = []

    async def load(self) -> list[MeetingRoom]:
        rooms = []
        for row in await self.api.list_rooms():
            try:
                rooms.append(MeetingRoom.from_api(row))
            except (KeyError, ValueError, PydanticValidationError) as e:
                logger.warning("Skipping malformed room row: %s", e)
        self.rooms = rooms
        logger.debug("Loaded %d rooms", len(rooms))
        return list(rooms)

    async def search(
        self,
        search_term: Optional[str] = None,
        min_capacity: Optional[int] = None,
        status: Optional[RoomStatusFilter] = None,
    ) -> list[MeetingRoom]:
        if not self.rooms:
            await self.load()
        return filter_rooms(self.rooms, search_term, min_capacity, status)
