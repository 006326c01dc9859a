"""Unit tests for spacio.domain.rooms."""

import pytest

from spacio.core.timezone_utils import ReferenceTime
from spacio.domain.models import Booking, MeetingRoom
from spacio.domain.rooms import RoomDirectory, filter_rooms, rooms_in_use
from tests.fixtures.fake_backend import make_booking_row, make_room_row

pytestmark = pytest.mark.unit


def room(room_id: int, **overrides) -> MeetingRoom:
    return MeetingRoom.from_api(make_room_row(room_id, **overrides))


ROOMS = [
    room(1, name="Samudra", capacity=12, features=["Projector", "Video Conference"]),
    room(2, name="Bahari", capacity=4, building="Gedung B", features=["Whiteboard"]),
    room(3, name="Nusantara", capacity=20, is_active=0, features=[]),
]


class TestFilterRooms:
    """Tests for search, capacity and status filters."""

    def test_filter_rooms_when_no_filters_then_all(self):
        assert filter_rooms(ROOMS) == ROOMS

    @pytest.mark.parametrize(
        ("term", "expected"),
        [("samu", [1]), ("GEDUNG B", [2]), ("video", [1]), ("whiteboard", [2]), ("zzz", [])],
    )
    def test_filter_rooms_when_search_term_then_matches_name_address_or_facility(self, term, expected):
        assert [r.id for r in filter_rooms(ROOMS, search_term=term)] == expected

    def test_filter_rooms_when_min_capacity_then_smaller_rooms_dropped(self):
        assert [r.id for r in filter_rooms(ROOMS, min_capacity=10)] == [1, 3]

    def test_filter_rooms_when_status_filter_then_active_flag_used(self):
        assert [r.id for r in filter_rooms(ROOMS, status="available")] == [1, 2]
        assert [r.id for r in filter_rooms(ROOMS, status="maintenance")] == [3]

    def test_filter_rooms_when_combined_then_all_apply(self):
        assert [r.id for r in filter_rooms(ROOMS, "a", min_capacity=5, status="available")] == [1]


class TestRoomsInUse:
    def test_rooms_in_use_when_booking_ongoing_then_room_listed(self):
        reference = ReferenceTime(date="2024-01-10", time="09:30")
        bookings = [
            Booking.from_api(make_booking_row(1, room_id=1)),
            Booking.from_api(make_booking_row(2, room_id=2, meeting_time="11:00:00", end_time="12:00:00")),
            Booking.from_api(make_booking_row(3, room_id=3, status="cancelled")),
        ]

        assert [r.id for r in rooms_in_use(ROOMS, bookings, reference)] == [1]

    def test_rooms_in_use_when_room_id_missing_then_matched_by_name(self):
        reference = ReferenceTime(date="2024-01-10", time="09:30")
        bookings = [Booking.from_api(make_booking_row(1, room_id=0, room_name="Bahari"))]

        assert [r.id for r in rooms_in_use(ROOMS, bookings, reference)] == [2]


class TestRoomDirectory:
    async def test_search_when_not_loaded_then_loads_from_backend(self, api, backend):
        backend.add_room(1, name="Samudra", capacity=12)
        backend.add_room(2, name="Bahari", capacity=4)
        directory = RoomDirectory(api)

        rooms = await directory.search(min_capacity=10)

        assert [r.name for r in rooms] == ["Samudra"]
        assert len(directory.rooms) == 2
        assert len(backend.calls_to("meeting_rooms.php")) == 1

    async def test_load_when_row_malformed_then_skipped(self, api, backend):
        backend.add_room(1)
        backend.rooms[2] = {"name": "No id"}

        rooms = await RoomDirectory(api).load()

        assert [r.id for r in rooms] == [1]
