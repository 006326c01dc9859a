"""Unit tests for spacio.domain.coordinator."""

import logging
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from spacio.domain.authorization import BookingAction
from spacio.domain.cancel_requests import CancelRequestService
from spacio.domain.coordinator import ActionResult, BookingActionCoordinator, LoggingAlertSink
from spacio.domain.history import HistoryEntry, HistoryStatus, HistoryStore
from spacio.domain.models import Booking, BookingId, CancelRequestStatus
from spacio.domain.rispat import RispatService
from tests.fixtures.fake_backend import make_booking_row

pytestmark = pytest.mark.unit


@pytest.fixture
def history(kv_store):
    return HistoryStore(kv_store)


@pytest.fixture
def make_coordinator(api, history, clock):
    """Build a coordinator for a given actor with a Mock alert sink."""

    def _make(actor, **kwargs):
        return BookingActionCoordinator(
            api=api,
            history=history,
            clock=clock,
            actor=actor,
            alerts=Mock(),
            rispat=RispatService(api),
            cancel_requests=CancelRequestService(api),
            **kwargs,
        )

    return _make


def alert_levels(coordinator):
    return [c.args[1] for c in coordinator.alerts.alert.call_args_list]


class TestLoadBookings:
    """Tests for fetching and filtering the active booking list."""

    async def test_load_bookings_when_form_and_ai_then_both_tagged(self, make_coordinator, backend, alice):
        backend.add_booking(1)
        backend.add_ai_booking(1, pic="Bob")
        coordinator = make_coordinator(alice)

        bookings = await coordinator.load_bookings()

        assert {b.id.display for b in bookings} == {"1", "ai_1"}
        assert coordinator.find("ai_1").pic == "Bob"
        assert coordinator.find(1).pic == "Alice"

    async def test_load_bookings_when_terminal_or_finalized_then_dropped(
        self, make_coordinator, backend, history, alice
    ):
        backend.add_booking(1)
        backend.add_booking(2, status="cancelled")
        backend.add_booking(3, booking_state="COMPLETED")
        backend.add_booking(4)
        finalized = Booking.from_api(make_booking_row(4))
        history.add(HistoryEntry.from_booking(finalized, HistoryStatus.COMPLETED))
        coordinator = make_coordinator(alice)

        bookings = await coordinator.load_bookings()

        assert [b.id for b in bookings] == [BookingId.form(1)]

    async def test_load_bookings_when_expired_then_archived_and_still_listed(
        self, make_coordinator, backend, history, alice
    ):
        backend.add_booking(5, meeting_date="2024-01-09")
        coordinator = make_coordinator(alice)

        bookings = await coordinator.load_bookings()

        assert [b.id.display for b in bookings] == ["5"]
        entries = history.entries()
        assert [(e.id, e.status) for e in entries] == [("5", HistoryStatus.EXPIRED)]

        await coordinator.load_bookings()
        assert len(history.entries()) == 1

    async def test_load_bookings_when_listing_fails_then_alert_and_previous_list(
        self, make_coordinator, backend, alice
    ):
        backend.add_booking(1)
        coordinator = make_coordinator(alice)
        await coordinator.load_bookings()
        backend.queue_response("bookings.php", httpx.Response(500, text="<html>boom</html>"))

        bookings = await coordinator.load_bookings()

        assert [b.id.display for b in bookings] == ["1"]
        assert alert_levels(coordinator) == ["error"]
        assert coordinator.load_error is not None

        await coordinator.load_bookings()
        assert coordinator.load_error is None

    async def test_load_bookings_when_ai_listing_fails_then_form_only_without_alert(
        self, make_coordinator, backend, alice
    ):
        backend.queue_response(
            "bookings.php", httpx.Response(200, json={"success": True, "data": [make_booking_row(1)]})
        )
        backend.queue_response("bookings.php", httpx.ConnectError("ai table down"))
        coordinator = make_coordinator(alice)

        bookings = await coordinator.load_bookings()

        assert [b.id.display for b in bookings] == ["1"]
        coordinator.alerts.alert.assert_not_called()


class TestComplete:
    """Tests for completing an ongoing booking."""

    async def test_complete_when_minutes_required_and_none_then_blocked_before_complete_call(
        self, make_coordinator, backend, alice
    ):
        backend.add_booking(1, requires_rispat=1)
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.complete(booking)

        assert result.success is False
        assert "minutes" in result.message.lower()
        assert backend.calls_to("rispat.php", "GET")
        assert backend.calls_to("bookings.php", "POST") == []
        assert coordinator.find(1) is not None
        assert alert_levels(coordinator) == ["error"]

    async def test_complete_when_minutes_uploaded_then_history_and_removed(
        self, make_coordinator, backend, history, alice
    ):
        backend.add_booking(1, requires_rispat=1)
        backend.add_minutes(1, name="notulen.pdf")
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.complete(booking)

        assert result == ActionResult(True, 'Booking "Meeting 1" completed', removed=True)
        assert coordinator.bookings == []
        assert backend.bookings[1]["status"] == "completed"
        [entry] = history.entries()
        assert entry.status is HistoryStatus.COMPLETED
        assert [f.original_name for f in entry.rispat_files] == ["notulen.pdf"]
        assert alert_levels(coordinator) == ["info"]

    async def test_complete_when_minutes_not_required_then_no_minutes_lookup(
        self, make_coordinator, backend, alice
    ):
        backend.add_booking(1)
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.complete(booking)

        assert result.success is True
        assert backend.calls_to("rispat.php") == []

    async def test_complete_when_backend_says_not_found_then_removed_locally(
        self, make_coordinator, backend, history, alice
    ):
        backend.add_booking(1)
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()
        backend.bookings[1]["status"] = "completed"

        result = await coordinator.complete(booking)

        assert result.success is False
        assert result.removed is True
        assert coordinator.bookings == []
        assert history.entries() == []
        assert alert_levels(coordinator) == ["warning"]

    async def test_complete_when_upcoming_then_refused(self, make_coordinator, backend, alice):
        backend.add_booking(1, meeting_time="11:00:00", end_time="12:00:00")
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.complete(booking)

        assert result.success is False
        assert backend.calls_to("bookings.php", "POST") == []


class TestCancel:
    """Tests for direct cancellation by the owner."""

    async def test_cancel_when_owner_then_cancelled_with_reason(self, make_coordinator, backend, history, alice):
        backend.add_booking(1)
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.cancel(booking, "  Client postponed  ")

        assert result.success is True
        assert backend.bookings[1]["status"] == "cancelled"
        assert backend.bookings[1]["cancel_reason"] == "Client postponed"
        [entry] = history.entries()
        assert (entry.status, entry.cancel_reason) == (HistoryStatus.CANCELLED, "Client postponed")
        assert history.is_finalized(BookingId.form(1))

    async def test_cancel_when_ai_booking_then_ai_endpoint_used(self, make_coordinator, backend, alice):
        backend.add_booking(1)
        backend.add_ai_booking(1)
        coordinator = make_coordinator(alice)
        await coordinator.load_bookings()

        result = await coordinator.cancel(coordinator.find("ai_1"), "Not needed")

        assert result.success is True
        assert backend.ai_bookings[1]["status"] == "cancelled"
        assert backend.bookings[1]["status"] == "active"
        [call] = backend.calls_to("bookings.php/ai-cancel", "DELETE")
        assert call.url.params["id"] == "1"
        assert [b.id.display for b in coordinator.bookings] == ["1"]

    async def test_cancel_when_not_owner_then_authorization_alert_and_no_call(self, make_coordinator, backend, bob):
        backend.add_booking(1)
        coordinator = make_coordinator(bob)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.cancel(booking, "Mine now")

        assert result.success is False
        assert "Alice" in result.message
        assert backend.calls_to("bookings.php/1") == []
        assert alert_levels(coordinator) == ["error"]

    async def test_cancel_when_reason_blank_then_refused(self, make_coordinator, backend, alice):
        backend.add_booking(1)
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.cancel(booking, "   ")

        assert result.success is False
        assert backend.calls_to("bookings.php/1") == []

    async def test_cancel_when_expired_then_refused(self, make_coordinator, backend, alice):
        backend.add_booking(1, meeting_date="2024-01-09")
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.cancel(booking, "Too late")

        assert result.success is False
        assert backend.calls_to("bookings.php/1") == []

    async def test_cancel_when_network_fails_then_state_unchanged(self, make_coordinator, backend, history, alice):
        backend.add_booking(1)
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()
        backend.queue_response("bookings.php/1", httpx.ConnectError("connection refused"))

        result = await coordinator.cancel(booking, "Client postponed")

        assert result.success is False
        assert result.removed is False
        assert coordinator.find(1) is not None
        assert backend.bookings[1]["status"] == "active"
        assert history.entries() == []
        assert alert_levels(coordinator) == ["error"]

    async def test_cancel_when_already_in_flight_then_second_call_ignored(self, make_coordinator, backend, alice):
        backend.add_booking(1)
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()
        nested: list[ActionResult] = []

        async def slow_cancel(booking_id, reason):
            assert coordinator.is_busy("booking:1")
            nested.append(await coordinator.cancel(booking, "again"))
            return {"success": True}

        coordinator.api.cancel_booking = AsyncMock(side_effect=slow_cancel)

        result = await coordinator.cancel(booking, "Client postponed")

        assert result.success is True
        assert nested[0].success is False
        assert "in progress" in nested[0].message
        assert coordinator.api.cancel_booking.await_count == 1
        assert not coordinator.is_busy("booking:1")
        assert alert_levels(coordinator) == ["info"]


class TestRequestCancel:
    """Tests for a non-owner asking the owner to cancel."""

    async def test_request_cancel_when_non_owner_then_pending_request_created(self, make_coordinator, backend, bob):
        backend.add_booking(1)
        coordinator = make_coordinator(bob)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.request_cancel(booking, "Room double-booked")

        assert result.success is True
        assert result.request.status is CancelRequestStatus.PENDING
        row = backend.cancel_requests[result.request.id]
        assert (row["requester_name"], row["owner_name"], row["requester_id"]) == ("Bob", "Alice", 2)
        assert backend.bookings[1]["status"] == "active"
        assert coordinator.find(1) is not None

    async def test_request_cancel_when_owner_then_refused(self, make_coordinator, backend, alice):
        backend.add_booking(1)
        coordinator = make_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.request_cancel(booking, "Room double-booked")

        assert result.success is False
        assert backend.calls_to("cancel_requests.php") == []

    async def test_request_cancel_when_reason_too_long_then_refused(self, make_coordinator, backend, bob):
        backend.add_booking(1)
        coordinator = make_coordinator(bob)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.request_cancel(booking, "r" * 501)

        assert result.success is False
        assert backend.calls_to("cancel_requests.php") == []

    async def test_available_actions_when_non_owner_ongoing_then_request_only(self, make_coordinator, backend, bob):
        backend.add_booking(1)
        coordinator = make_coordinator(bob)
        [booking] = await coordinator.load_bookings()

        assert coordinator.available_actions(booking) == [BookingAction.VIEW, BookingAction.REQUEST_CANCEL]


class TestRespondToRequest:
    """Tests for the owner's answer to a cancellation request."""

    async def _pending(self, backend, api, **fields):
        row = backend.add_cancel_request(**fields)
        [request] = [r for r in await CancelRequestService(api).list_by_owner("Alice") if r.id == row["id"]]
        return request

    async def test_respond_when_approved_without_auto_cancel_then_booking_kept(
        self, make_coordinator, backend, api, alice
    ):
        backend.add_booking(1)
        monitor = Mock(refresh=AsyncMock())
        coordinator = make_coordinator(alice, monitor=monitor)
        await coordinator.load_bookings()
        request = await self._pending(backend, api, booking_id=1)

        result = await coordinator.respond_to_request(request, "approved", "OK, go ahead")

        assert result.success is True
        assert result.request.status is CancelRequestStatus.APPROVED
        assert backend.cancel_requests[request.id]["status"] == "approved"
        assert backend.bookings[1]["status"] == "active"
        assert coordinator.find(1) is not None
        monitor.refresh.assert_awaited_once()

    async def test_respond_when_approved_with_auto_cancel_then_booking_cancelled(
        self, make_coordinator, backend, api, history, alice
    ):
        backend.add_booking(1)
        coordinator = make_coordinator(alice, auto_cancel_on_approve=True)
        await coordinator.load_bookings()
        request = await self._pending(backend, api, booking_id=1, reason="Room double-booked")

        result = await coordinator.respond_to_request(request, "approved")

        assert result.success is True
        assert result.request.status is CancelRequestStatus.APPROVED
        assert backend.bookings[1]["status"] == "cancelled"
        assert backend.bookings[1]["cancel_reason"].startswith(f"Cancel request #{request.id} from Bob approved")
        assert coordinator.find(1) is None
        assert history.entries()[0].status is HistoryStatus.CANCELLED

    async def test_respond_when_auto_cancel_target_gone_then_approval_stands(
        self, make_coordinator, backend, api, alice
    ):
        coordinator = make_coordinator(alice, auto_cancel_on_approve=True)
        request = await self._pending(backend, api, booking_id=5)

        result = await coordinator.respond_to_request(request, "approved")

        assert result.success is True
        assert backend.cancel_requests[request.id]["status"] == "approved"
        assert alert_levels(coordinator) == ["warning"]

    async def test_respond_when_rejected_with_auto_cancel_then_booking_kept(
        self, make_coordinator, backend, api, alice
    ):
        backend.add_booking(1)
        coordinator = make_coordinator(alice, auto_cancel_on_approve=True)
        await coordinator.load_bookings()
        request = await self._pending(backend, api, booking_id=1)

        result = await coordinator.respond_to_request(request, "rejected", "Still needed")

        assert result.success is True
        assert backend.bookings[1]["status"] == "active"
        assert backend.calls_to("bookings.php/1", "DELETE") == []

    async def test_respond_when_not_addressed_to_actor_then_refused(self, make_coordinator, backend, api, bob):
        coordinator = make_coordinator(bob)
        request = await self._pending(backend, api)
        calls_before = len(backend.calls)

        result = await coordinator.respond_to_request(request, "approved")

        assert result.success is False
        assert len(backend.calls) == calls_before

    async def test_respond_when_already_answered_elsewhere_then_warning_and_refresh(
        self, make_coordinator, backend, api, alice
    ):
        monitor = Mock(refresh=AsyncMock())
        coordinator = make_coordinator(alice, monitor=monitor)
        request = await self._pending(backend, api)
        backend.cancel_requests[request.id]["status"] = "rejected"

        result = await coordinator.respond_to_request(request, "approved")

        assert result.success is False
        assert alert_levels(coordinator) == ["warning"]
        monitor.refresh.assert_awaited_once()

    async def test_respond_when_auto_cancel_target_already_finalized_then_approval_stands(
        self, make_coordinator, backend, api, alice
    ):
        coordinator = make_coordinator(alice, auto_cancel_on_approve=True)
        request = await self._pending(backend, api, booking_id=5)
        backend.queue_response(
            "bookings.php/5", httpx.Response(409, json={"success": False, "message": "Booking already completed"})
        )

        result = await coordinator.respond_to_request(request, "approved")

        assert result.success is True
        assert "already gone" in result.message
        assert alert_levels(coordinator) == ["warning"]


class TestReasonLimit:
    """Tests that direct cancels and requests share the service's reason limit."""

    @pytest.fixture
    def strict_coordinator(self, api, history, clock):
        def _make(actor):
            return BookingActionCoordinator(
                api=api,
                history=history,
                clock=clock,
                actor=actor,
                alerts=Mock(),
                rispat=RispatService(api),
                cancel_requests=CancelRequestService(api, max_length=20),
            )

        return _make

    async def test_cancel_when_reason_over_configured_limit_then_refused(self, strict_coordinator, backend, alice):
        backend.add_booking(1)
        coordinator = strict_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.cancel(booking, "r" * 21)

        assert result.success is False
        assert backend.calls_to("bookings.php/1") == []
        assert backend.bookings[1]["status"] == "active"

    async def test_request_cancel_when_reason_over_configured_limit_then_refused(
        self, strict_coordinator, backend, bob
    ):
        backend.add_booking(1)
        coordinator = strict_coordinator(bob)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.request_cancel(booking, "r" * 21)

        assert result.success is False
        assert backend.calls_to("cancel_requests.php") == []

    async def test_cancel_when_reason_within_configured_limit_then_sent(self, strict_coordinator, backend, alice):
        backend.add_booking(1)
        coordinator = strict_coordinator(alice)
        [booking] = await coordinator.load_bookings()

        result = await coordinator.cancel(booking, "r" * 20)

        assert result.success is True
        assert backend.bookings[1]["status"] == "cancelled"


class TestLoggingAlertSink:
    def test_alert_when_level_given_then_logged_at_that_level(self, caplog):
        sink = LoggingAlertSink()

        with caplog.at_level(logging.INFO, logger="spacio.alerts"):
            sink.alert("Booking cancelled", "info")
            sink.alert("Could not cancel booking")

        assert [(r.levelno, r.getMessage()) for r in caplog.records] == [
            (logging.INFO, "Booking cancelled"),
            (logging.ERROR, "Could not cancel booking"),
        ]
