"""Reference time for booking classification.

Booking dates and times are wall-clock values in the office timezone
(Asia/Jakarta). The client prefers the server's notion of "now" so that a
skewed local clock cannot flip a meeting between upcoming and ongoing.
"""

from __future__ import annotations

import datetime
import logging
import os
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Jakarta"


def get_zone(name: Optional[str]) -> ZoneInfo:
    """Return a ZoneInfo, falling back to the default zone for unknown names."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r; using %s", name, DEFAULT_TIMEZONE)
    return ZoneInfo(DEFAULT_TIMEZONE)


def _now_utc() -> datetime.datetime:
    """Current UTC time, overridable through SPACIO_TEST_TIME (ISO-8601)."""
    override = os.environ.get("SPACIO_TEST_TIME")
    if override:
        try:
            parsed = datetime.datetime.fromisoformat(override.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=get_zone(DEFAULT_TIMEZONE))
            return parsed.astimezone(datetime.timezone.utc)
        except ValueError:
            logger.warning("Invalid SPACIO_TEST_TIME=%r; using system clock", override)
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class ReferenceTime:
    """A wall-clock instant in the office timezone.

    Attributes:
        date: ``YYYY-MM-DD``
        time: ``HH:MM`` or ``HH:MM:SS``
        timezone: IANA name the wall time is expressed in
        timestamp: Unix seconds, when known
    """

    date: str
    time: str
    timezone: str = DEFAULT_TIMEZONE
    timestamp: Optional[int] = None

    @classmethod
    def from_datetime(
        cls, moment: datetime.datetime, timezone: str = DEFAULT_TIMEZONE
    ) -> ReferenceTime:
        local = moment.astimezone(get_zone(timezone)) if moment.tzinfo else moment
        return cls(
            date=local.strftime("%Y-%m-%d"),
            time=local.strftime("%H:%M:%S"),
            timezone=timezone,
            timestamp=int(local.timestamp()) if moment.tzinfo else None,
        )


ServerTimeFetcher = Callable[[], Awaitable[dict[str, Any]]]


class ReferenceClock:
    """Provides "now" for status classification.

    ``sync()`` asks the backend once for its time and remembers the offset
    between server and local clock; ``now()`` then applies that offset to
    the local clock. Without a successful sync the local clock is used,
    rendered in the configured timezone.
    """

    def __init__(
        self,
        fetch_server_time: Optional[ServerTimeFetcher] = None,
        timezone: str = DEFAULT_TIMEZONE,
        now_fn: Optional[Callable[[], datetime.datetime]] = None,
    ) -> None:
        self._fetch = fetch_server_time
        self.timezone = timezone
        self._now_fn = now_fn or _now_utc
        self._offset = datetime.timedelta(0)
        self.synced = False

    async def sync(self) -> bool:
        """Fetch server time once and record the clock offset.

        Returns:
            True when server time was applied, False when falling back to the local clock
        """
        if self._fetch is None:
            return False

        try:
            payload = await self._fetch()
            server_now = self._parse_server_time(payload)
        except Exception as exc:
            # Any failure (network, payload shape) degrades to the local clock.
            logger.warning("Failed to fetch server time, using local clock: %s", exc)
            self._offset = datetime.timedelta(0)
            self.synced = False
            return False

        self._offset = server_now - self._now_fn()
        self.synced = True
        logger.debug("Server time applied (offset %.1fs)", self._offset.total_seconds())
        return True

    def _parse_server_time(self, payload: dict[str, Any]) -> datetime.datetime:
        zone_name = payload.get("timezone") or self.timezone
        timestamp = payload.get("timestamp")
        if timestamp is not None:
            return datetime.datetime.fromtimestamp(int(timestamp), tz=datetime.timezone.utc)

        date = payload["date"]
        time = str(payload["time"])
        if len(time) == 5:
            time += ":00"
        naive = datetime.datetime.fromisoformat(f"{date}T{time}")
        return naive.replace(tzinfo=get_zone(zone_name)).astimezone(datetime.timezone.utc)

    def now(self) -> ReferenceTime:
        """Current reference time in the configured timezone."""
        return ReferenceTime.from_datetime(self._now_fn() + self._offset, self.timezone)
