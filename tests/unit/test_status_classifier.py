"""Unit tests for spacio.domain.status_classifier."""

import pytest

from spacio.core.timezone_utils import ReferenceTime
from spacio.domain.models import Booking, LifecycleStatus
from spacio.domain.status_classifier import (
    classify,
    classify_booking,
    normalize_time,
    time_to_minutes,
)

pytestmark = pytest.mark.unit


def ref(date: str, time: str) -> ReferenceTime:
    return ReferenceTime(date=date, time=time)


class TestTimeHelpers:
    """Tests for time normalisation and minute conversion."""

    def test_normalize_time_when_seconds_present_then_truncates(self) -> None:
        assert normalize_time("09:30:45") == "09:30"

    def test_normalize_time_when_short_then_returns_unchanged(self) -> None:
        assert normalize_time("9:30") == "9:30"

    def test_time_to_minutes_when_valid_then_minutes_since_midnight(self) -> None:
        assert time_to_minutes("00:00") == 0
        assert time_to_minutes("09:30") == 570
        assert time_to_minutes("23:59:59") == 1439

    def test_time_to_minutes_when_single_digit_hour_then_parses(self) -> None:
        assert time_to_minutes("9:05") == 545

    def test_time_to_minutes_when_garbage_then_soft_zero(self) -> None:
        """Unparseable input never raises; non-numeric parts count as zero."""
        assert time_to_minutes("garbage") == 0
        assert time_to_minutes("") == 0
        assert time_to_minutes("9:xx") == 540


class TestClassifyWithEndTime:
    """Same-day classification with a known end time (inclusive interval)."""

    @pytest.mark.parametrize(
        ("now", "expected"),
        [
            ("08:59", LifecycleStatus.UPCOMING),
            ("09:00", LifecycleStatus.ONGOING),
            ("09:30", LifecycleStatus.ONGOING),
            ("10:00", LifecycleStatus.ONGOING),
            ("10:01", LifecycleStatus.EXPIRED),
        ],
    )
    def test_classify_when_same_day_then_inclusive_bounds(
        self, now: str, expected: LifecycleStatus
    ) -> None:
        assert classify("2024-01-10", "09:00", "10:00", ref("2024-01-10", now)) is expected

    def test_classify_when_reference_mid_meeting_then_ongoing(self) -> None:
        status = classify("2024-01-10", "09:00", "10:00", ref("2024-01-10", "09:30"))
        assert status is LifecycleStatus.ONGOING

    def test_classify_when_reference_after_end_then_expired(self) -> None:
        status = classify("2024-01-10", "09:00", "10:00", ref("2024-01-10", "10:01"))
        assert status is LifecycleStatus.EXPIRED

    def test_classify_when_reference_has_seconds_then_truncated(self) -> None:
        status = classify("2024-01-10", "09:00:00", "10:00:00", ref("2024-01-10", "10:00:59"))
        assert status is LifecycleStatus.ONGOING


class TestClassifyAcrossDates:
    """Different dates are decided by the date alone."""

    def test_classify_when_booking_tomorrow_then_upcoming(self) -> None:
        status = classify("2024-01-10", "09:00", "10:00", ref("2024-01-09", "23:59"))
        assert status is LifecycleStatus.UPCOMING

    def test_classify_when_booking_yesterday_then_expired(self) -> None:
        status = classify("2024-01-09", "09:00", "10:00", ref("2024-01-10", "00:00"))
        assert status is LifecycleStatus.EXPIRED

    @pytest.mark.parametrize("now", ["00:00", "09:30", "23:59"])
    def test_classify_when_dates_differ_then_time_of_day_ignored(self, now: str) -> None:
        assert classify("2024-01-11", "09:00", "10:00", ref("2024-01-10", now)) is LifecycleStatus.UPCOMING
        assert classify("2024-01-09", "09:00", "10:00", ref("2024-01-10", now)) is LifecycleStatus.EXPIRED

    def test_classify_when_month_boundary_then_compares_dates(self) -> None:
        assert classify("2024-02-01", "09:00", None, ref("2024-01-31", "23:00")) is LifecycleStatus.UPCOMING


class TestClassifyWithoutEndTime:
    """Without an end time there is no ongoing phase."""

    def test_classify_when_exactly_at_start_then_upcoming(self) -> None:
        status = classify("2024-01-10", "09:00", None, ref("2024-01-10", "09:00"))
        assert status is LifecycleStatus.UPCOMING

    def test_classify_when_after_start_then_expired(self) -> None:
        status = classify("2024-01-10", "09:00", None, ref("2024-01-10", "09:01"))
        assert status is LifecycleStatus.EXPIRED

    def test_classify_when_empty_end_then_treated_as_missing(self) -> None:
        status = classify("2024-01-10", "09:00", "", ref("2024-01-10", "09:00"))
        assert status is LifecycleStatus.UPCOMING


class TestClassifyBooking:
    def test_classify_booking_when_backend_row_then_uses_its_times(self) -> None:
        booking = Booking.from_api(
            {
                "id": 7,
                "meeting_date": "2024-01-10",
                "meeting_time": "09:00:00",
                "end_time": "10:00:00",
                "pic": "Alice",
            }
        )
        assert classify_booking(booking, ref("2024-01-10", "09:30:00")) is LifecycleStatus.ONGOING
