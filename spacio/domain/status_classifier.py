"""Lifecycle classification for bookings.

This module is the single source of truth for whether a booking is
upcoming, ongoing or expired. Every action gate (complete, cancel, request
cancel) and every room-occupancy view derives from ``classify``; nothing
compares raw timestamps directly.
"""

from __future__ import annotations

from typing import Optional

from spacio.core.timezone_utils import ReferenceTime
from spacio.domain.models import Booking, LifecycleStatus


def normalize_time(value: str) -> str:
    """Truncate a time string to ``HH:MM``.

    Strings shorter than five characters are returned unchanged and treated
    as if already in ``HH:MM`` form.
    """
    value = value.strip()
    if len(value) >= 5:
        return value[:5]
    return value


def time_to_minutes(value: str) -> int:
    """Minutes since midnight for an ``HH:MM`` string.

    Never raises: parts that are not numbers count as 0, so ``"9:xx"`` is
    540 and ``"garbage"`` is 0.
    """
    parts = normalize_time(value).split(":")

    def _part(index: int) -> int:
        try:
            return int(parts[index])
        except (IndexError, ValueError):
            return 0

    return _part(0) * 60 + _part(1)


def classify(
    date: str,
    start_time: str,
    end_time: Optional[str],
    reference: ReferenceTime,
) -> LifecycleStatus:
    """Classify a booking interval against a reference time.

    Args:
        date: Booking date, ``YYYY-MM-DD``
        start_time: Start time, ``HH:MM`` or ``HH:MM:SS``
        end_time: End time, or None when unknown
        reference: Current reference date and time

    Returns:
        ``UPCOMING``, ``ONGOING`` or ``EXPIRED``. Dates other than the
        reference date are decided by date alone. On the reference date with
        an end time, ``ONGOING`` covers start through end inclusive. Without
        an end time there is no ongoing phase: the booking stays upcoming up
        to and including its start minute and is expired afterwards.
    """
    if date != reference.date:
        # ISO dates order lexicographically
        return LifecycleStatus.EXPIRED if date < reference.date else LifecycleStatus.UPCOMING

    current = time_to_minutes(reference.time)
    start = time_to_minutes(start_time)

    if not end_time:
        if current > start:
            return LifecycleStatus.EXPIRED
        return LifecycleStatus.UPCOMING

    end = time_to_minutes(end_time)
    if current < start:
        return LifecycleStatus.UPCOMING
    if current <= end:
        return LifecycleStatus.ONGOING
    return LifecycleStatus.EXPIRED


def classify_booking(booking: Booking, reference: ReferenceTime) -> LifecycleStatus:
    """Classify a Booking using its date, start time and end time."""
    return classify(booking.date, booking.time, booking.end_time, reference)
