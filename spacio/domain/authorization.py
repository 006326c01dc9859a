"""Who may do what to a booking.

``authorize`` encodes the booking action table in one place:

============  ==============================  ==========================
Status        Owner (PIC)                     Anyone else
============  ==============================  ==========================
upcoming      cancel (complete not yet)       request cancel
ongoing       cancel; complete once minutes   request cancel
              are present when required
expired       view only                       view only
============  ==============================  ==========================

Terminal bookings (completed, cancelled) allow viewing only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from spacio.core.exceptions import AuthorizationError, ValidationError
from spacio.domain.models import Booking, LifecycleStatus

NO_OWNER = "-"


class BookingAction(str, Enum):
    VIEW = "view"
    CANCEL = "cancel"
    COMPLETE = "complete"
    REQUEST_CANCEL = "request_cancel"


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check.

    ``ownership`` is True when a refusal is about who the actor is rather
    than the booking's current state.
    """

    allowed: bool
    reason: str = ""
    ownership: bool = False

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def _normalize_name(name: Optional[str]) -> str:
    return (name or "").strip().casefold()


def is_owner(actor: Optional[str], booking: Booking) -> bool:
    """True when ``actor`` is the booking's PIC (case-insensitive, trimmed)."""
    owner = _normalize_name(booking.pic)
    if not owner or owner == NO_OWNER:
        return False
    return _normalize_name(actor) == owner


def authorize(
    actor: Optional[str],
    booking: Booking,
    action: BookingAction,
    status: Optional[LifecycleStatus] = None,
    has_minutes: bool = False,
) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on ``booking``.

    Args:
        actor: Display name of the current user
        booking: Target booking
        action: Requested action
        status: Classified lifecycle status; state gates are skipped when None
        has_minutes: Whether at least one minutes file exists for the booking

    Returns:
        Decision; falsy when the action is not allowed
    """
    if action is BookingAction.VIEW:
        return ALLOW

    if booking.state.is_terminal:
        return Decision(False, f"Booking is already {booking.state.value}")

    owner = is_owner(actor, booking)

    if action is BookingAction.REQUEST_CANCEL:
        if owner:
            return Decision(
                False,
                "You own this booking; cancel it directly instead of requesting",
                ownership=True,
            )
        if status is LifecycleStatus.EXPIRED:
            return Decision(False, "The meeting has already ended")
        return ALLOW

    if not owner:
        return Decision(
            False,
            f"Only the person in charge ({booking.pic}) can {action.value} this booking",
            ownership=True,
        )

    if status is LifecycleStatus.EXPIRED:
        return Decision(False, "The meeting has already ended")

    if action is BookingAction.CANCEL:
        return ALLOW

    # COMPLETE
    if status is LifecycleStatus.UPCOMING:
        return Decision(False, "The meeting has not started yet")
    if booking.requires_rispat and not has_minutes:
        return Decision(False, "Upload the meeting minutes before completing this booking")
    return ALLOW


def require(
    actor: Optional[str],
    booking: Booking,
    action: BookingAction,
    status: Optional[LifecycleStatus] = None,
    has_minutes: bool = False,
) -> None:
    """Like ``authorize`` but raises on refusal.

    Raises:
        AuthorizationError: The actor's identity forbids the action
        ValidationError: The booking's state forbids the action
    """
    decision = authorize(actor, booking, action, status=status, has_minutes=has_minutes)
    if decision:
        return
    if decision.ownership:
        raise AuthorizationError(decision.reason, actor=actor, action=action.value)
    raise ValidationError(decision.reason, field_name="status", field_value=status)


def available_actions(
    actor: Optional[str],
    booking: Booking,
    status: LifecycleStatus,
    has_minutes: bool = False,
) -> list[BookingAction]:
    """Actions the actor may take right now, always including VIEW."""
    return [
        action
        for action in BookingAction
        if authorize(actor, booking, action, status=status, has_minutes=has_minutes)
    ]
