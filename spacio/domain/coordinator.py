"""Routes booking actions for the current user.

The coordinator owns the user's active-booking list and turns every action
(complete, direct cancel, cancel request, response to a request) into a
single ``ActionResult`` plus exactly one alert. Local state changes only
after the backend confirms; a "not found" answer means the booking is
already gone and it is dropped from the list instead of retried.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

from spacio.core.api_client import SpacioAPIClient
from spacio.core.correlation import new_action_id
from spacio.core.exceptions import (
    AuthorizationError,
    MalformedResponseError,
    SpacioError,
    StaleResourceError,
    TransportError,
    ValidationError,
)
from spacio.core.timezone_utils import ReferenceClock
from spacio.domain.authorization import BookingAction, authorize, available_actions, require
from spacio.domain.cancel_requests import CancelRequestService, validate_text
from spacio.domain.history import HistoryEntry, HistoryStatus, HistoryStore
from spacio.domain.models import (
    Booking,
    BookingId,
    BookingSource,
    CancelRequest,
    CancelRequestStatus,
    CurrentUser,
    LifecycleStatus,
    RispatFile,
)
from spacio.domain.notifications import PendingRequestMonitor
from spacio.domain.rispat import RispatService
from spacio.domain.status_classifier import classify_booking

logger = logging.getLogger(__name__)


class AlertSink(Protocol):
    """Receives one user-facing message per finished action."""

    def alert(self, message: str, level: str = "error") -> None: ...


class LoggingAlertSink:
    """Alert sink that writes to the log, for embedding without a console."""

    def __init__(self, name: str = "spacio.alerts") -> None:
        self._logger = logging.getLogger(name)

    def alert(self, message: str, level: str = "error") -> None:
        self._logger.log(logging.getLevelName(level.upper()), message)


@dataclass
class ActionResult:
    success: bool
    message: str
    removed: bool = False
    request: Optional[CancelRequest] = None


def _failure_message(error: SpacioError) -> str:
    if isinstance(error, MalformedResponseError):
        return "The server sent an unexpected response. Please try again."
    if isinstance(error, TransportError):
        return f"Request failed: {error.message}"
    return error.message


class BookingActionCoordinator:
    """Exposes and performs the actions a user may take on bookings.

    Args:
        api: Backend client
        history: Local history of finished bookings
        clock: Reference clock used to classify bookings
        actor: The logged-in user
        alerts: Where user-facing messages go
        rispat: Minutes service, consulted before completing
        cancel_requests: Cancel-request service
        auto_cancel_on_approve: Cancel the booking right after its owner approves a request
        monitor: Pending-request monitor refreshed after a response
    """

    def __init__(
        self,
        api: SpacioAPIClient,
        history: HistoryStore,
        clock: ReferenceClock,
        actor: CurrentUser,
        alerts: AlertSink,
        rispat: RispatService,
        cancel_requests: CancelRequestService,
        auto_cancel_on_approve: bool = False,
        monitor: Optional[PendingRequestMonitor] = None,
    ) -> None:
        self.api = api
        self.history = history
        self.clock = clock
        self.actor = actor
        self.alerts = alerts
        self.rispat = rispat
        self.cancel_requests = cancel_requests
        self.auto_cancel_on_approve = auto_cancel_on_approve
        self.monitor = monitor
        self._bookings: list[Booking] = []
        self._in_flight: set[str] = set()
        self.load_error: Optional[SpacioError] = None

    @property
    def bookings(self) -> list[Booking]:
        return list(self._bookings)

    @property
    def actor_name(self) -> str:
        return self.actor.display_name

    def is_busy(self, key: str) -> bool:
        return key in self._in_flight

    def find(self, booking_id: Union[BookingId, str, int]) -> Optional[Booking]:
        target = BookingId.parse(booking_id)
        return next((b for b in self._bookings if b.id == target), None)

    def _remove(self, booking_id: BookingId) -> bool:
        before = len(self._bookings)
        self._bookings = [b for b in self._bookings if b.id != booking_id]
        return len(self._bookings) != before

    async def load_bookings(self) -> list[Booking]:
        """Fetch form and AI bookings and keep the ones still active.

        Bookings finalized from this client, or in a terminal backend state,
        are dropped. Expired ones stay viewable and are archived to history.
        """
        try:
            rows = await self.api.list_bookings()
        except SpacioError as e:
            self.load_error = e
            logger.warning("Failed to load bookings: %s", e)
            self.alerts.alert(f"Could not load bookings. {_failure_message(e)}", "error")
            return self.bookings

        try:
            ai_rows = await self.api.list_ai_bookings()
        except SpacioError as e:
            logger.warning("Failed to load AI bookings, showing form bookings only: %s", e)
            ai_rows = []

        bookings = []
        for source, batch in ((BookingSource.FORM, rows), (BookingSource.AI, ai_rows)):
            for row in batch:
                try:
                    bookings.append(Booking.from_api(row, source=source))
                except (KeyError, ValueError) as e:
                    logger.warning("Skipping malformed %s booking row: %s", source.value, e)

        active = [
            b for b in bookings if not b.state.is_terminal and not self.history.is_finalized(b.id)
        ]
        self.history.archive_expired(active, self.clock.now())
        self.load_error = None
        self._bookings = active
        logger.debug("Loaded %d active bookings (%d rows)", len(active), len(bookings))
        return self.bookings

    def status_of(self, booking: Booking) -> LifecycleStatus:
        return classify_booking(booking, self.clock.now())

    def available_actions(self, booking: Booking, has_minutes: bool = False) -> list[BookingAction]:
        return available_actions(self.actor_name, booking, self.status_of(booking), has_minutes)

    async def _guarded(self, key: str, action: Callable[[], Awaitable[ActionResult]]) -> ActionResult:
        """Run ``action`` unless the same key is already in flight."""
        if key in self._in_flight:
            logger.debug("Ignoring %s: already in progress", key)
            return ActionResult(False, "This action is already in progress")
        self._in_flight.add(key)
        try:
            return await action()
        finally:
            self._in_flight.discard(key)

    def _fail(self, message: str) -> ActionResult:
        self.alerts.alert(message, "error")
        return ActionResult(False, message)

    def _stale(self, booking: Booking, error: StaleResourceError) -> ActionResult:
        removed = self._remove(booking.id)
        message = f'Booking "{booking.topic}" was not found or is already finalized'
        logger.info("%s (%s); removed locally", message, error)
        self.alerts.alert(message, "warning")
        return ActionResult(False, message, removed=removed)

    async def complete(self, booking: Booking) -> ActionResult:
        """Mark an ongoing booking completed (owner only)."""

        async def _run() -> ActionResult:
            action_id = new_action_id()
            logger.info("[%s] Complete booking %s requested by %s", action_id, booking.id, self.actor_name)

            files: list[RispatFile] = []
            try:
                require(self.actor_name, booking, BookingAction.COMPLETE, self.status_of(booking), has_minutes=True)
                if booking.requires_rispat:
                    files = await self.rispat.list_files(booking.id)
                require(
                    self.actor_name,
                    booking,
                    BookingAction.COMPLETE,
                    self.status_of(booking),
                    has_minutes=bool(files),
                )
            except (AuthorizationError, ValidationError) as e:
                return self._fail(e.message)
            except SpacioError as e:
                return self._fail(f"Could not check meeting minutes. {_failure_message(e)}")

            try:
                await self.api.complete_booking(booking.id)
            except StaleResourceError as e:
                return self._stale(booking, e)
            except SpacioError as e:
                logger.warning("[%s] Complete failed: %s", action_id, e)
                return self._fail(f"Could not complete booking. {_failure_message(e)}")

            self.history.add(HistoryEntry.from_booking(booking, HistoryStatus.COMPLETED, rispat_files=files))
            self._remove(booking.id)
            message = f'Booking "{booking.topic}" completed'
            self.alerts.alert(message, "info")
            return ActionResult(True, message, removed=True)

        return await self._guarded(f"booking:{booking.id.display}", _run)

    async def cancel(self, booking: Booking, reason: str) -> ActionResult:
        """Cancel a booking directly (owner only, reason required)."""

        async def _run() -> ActionResult:
            action_id = new_action_id()
            logger.info("[%s] Cancel booking %s requested by %s", action_id, booking.id, self.actor_name)
            try:
                clean_reason = validate_text(
                    reason, "reason", required=True, max_length=self.cancel_requests.max_length
                )
                require(self.actor_name, booking, BookingAction.CANCEL, self.status_of(booking))
            except (AuthorizationError, ValidationError) as e:
                return self._fail(e.message)
            return await self._cancel_remote(booking, clean_reason)

        return await self._guarded(f"booking:{booking.id.display}", _run)

    async def _cancel_remote(self, booking: Booking, reason: Optional[str]) -> ActionResult:
        try:
            await self.api.cancel_booking(booking.id, reason)
        except StaleResourceError as e:
            return self._stale(booking, e)
        except SpacioError as e:
            logger.warning("Cancel of %s failed: %s", booking.id, e)
            return self._fail(f"Could not cancel booking. {_failure_message(e)}")

        self.history.add(HistoryEntry.from_booking(booking, HistoryStatus.CANCELLED, cancel_reason=reason))
        self._remove(booking.id)
        message = f'Booking "{booking.topic}" cancelled'
        self.alerts.alert(message, "info")
        return ActionResult(True, message, removed=True)

    async def request_cancel(self, booking: Booking, reason: str) -> ActionResult:
        """Ask the booking's owner to cancel it (non-owners only)."""

        async def _run() -> ActionResult:
            action_id = new_action_id()
            logger.info("[%s] Cancel request for %s by %s", action_id, booking.id, self.actor_name)
            try:
                validate_text(reason, "reason", required=True, max_length=self.cancel_requests.max_length)
                require(self.actor_name, booking, BookingAction.REQUEST_CANCEL, self.status_of(booking))
                request = await self.cancel_requests.create(
                    booking.id,
                    requester_name=self.actor_name,
                    owner_name=booking.pic,
                    reason=reason,
                    requester_id=self.actor.id,
                )
            except (AuthorizationError, ValidationError) as e:
                return self._fail(e.message)
            except StaleResourceError as e:
                return self._stale(booking, e)
            except SpacioError as e:
                return self._fail(f"Could not send cancel request. {_failure_message(e)}")

            message = f"Cancel request sent to {booking.pic}"
            self.alerts.alert(message, "info")
            return ActionResult(True, message, request=request)

        return await self._guarded(f"booking:{booking.id.display}", _run)

    async def respond_to_request(
        self,
        request: CancelRequest,
        decision: Union[CancelRequestStatus, str],
        message: Optional[str] = None,
    ) -> ActionResult:
        """Approve or reject a request addressed to the current user.

        Approval only records the decision unless ``auto_cancel_on_approve``
        is set, in which case the booking is cancelled on the owner's behalf.
        """

        async def _run() -> ActionResult:
            action_id = new_action_id()
            logger.info("[%s] %s responds %s to request %s", action_id, self.actor_name, decision, request.id)
            if request.owner_name.strip().casefold() != self.actor_name.strip().casefold():
                return self._fail("Only the booking owner can respond to this request")
            try:
                updated = await self.cancel_requests.respond(request, decision, message)
            except ValidationError as e:
                return self._fail(e.message)
            except StaleResourceError as e:
                text = f"Cancel request #{request.id} was already answered or no longer exists"
                logger.info("%s (%s)", text, e)
                self.alerts.alert(text, "warning")
                await self._refresh_monitor()
                return ActionResult(False, text)
            except SpacioError as e:
                return self._fail(f"Could not respond to cancel request. {_failure_message(e)}")

            await self._refresh_monitor()

            if updated is not None and updated.status is CancelRequestStatus.APPROVED and self.auto_cancel_on_approve:
                return await self._cancel_approved(updated)

            status = updated.status if updated is not None else CancelRequestStatus(decision)
            text = f"Cancel request #{request.id} {status.value}"
            self.alerts.alert(text, "info")
            return ActionResult(True, text, request=updated)

        return await self._guarded(f"request:{request.id}", _run)

    async def _cancel_approved(self, request: CancelRequest) -> ActionResult:
        reason = f"Cancel request #{request.id} from {request.requester_name} approved: {request.reason}"
        booking = self.find(request.target)
        if booking is None:
            try:
                await self.api.cancel_booking(request.target, reason)
            except StaleResourceError:
                text = f"Cancel request #{request.id} approved; the booking was already gone"
                self.alerts.alert(text, "warning")
                return ActionResult(True, text, request=request)
            except SpacioError as e:
                return self._fail(
                    f"Cancel request #{request.id} approved, but the booking could not be cancelled. "
                    f"{_failure_message(e)}"
                )
            text = f"Cancel request #{request.id} approved and booking cancelled"
            self.alerts.alert(text, "info")
            return ActionResult(True, text, request=request)

        decision = authorize(self.actor_name, booking, BookingAction.CANCEL, self.status_of(booking))
        if not decision:
            return self._fail(f"Cancel request #{request.id} approved, but {decision.reason.lower()}")
        result = await self._cancel_remote(booking, reason)
        result.request = request
        return result

    async def _refresh_monitor(self) -> None:
        if self.monitor is not None:
            await self.monitor.refresh()
