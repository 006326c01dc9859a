"""Pending cancel-request notifications for booking owners.

The owner's badge count is a pull: a ``NotificationSource`` is asked for the
current pending requests on start, every ``interval`` seconds, and whenever
a caller forces a ``refresh()`` (for example right after responding).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Optional, Protocol, runtime_checkable

from spacio.core.exceptions import SpacioError
from spacio.domain.cancel_requests import CancelRequestService
from spacio.domain.models import CancelRequest, CancelRequestStatus

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0

NotificationListener = Callable[[list[CancelRequest]], None]


@runtime_checkable
class NotificationSource(Protocol):
    """Anything that can report the current pending requests for one owner."""

    async def pull(self) -> list[CancelRequest]: ...


class PendingCancelRequestSource:
    """Pending requests addressed to ``owner_name``, read from the backend."""

    def __init__(self, service: CancelRequestService, owner_name: str) -> None:
        self.service = service
        self.owner_name = owner_name

    async def pull(self) -> list[CancelRequest]:
        requests = await self.service.list_by_owner(self.owner_name)
        owner = self.owner_name.strip().casefold()
        return [
            r
            for r in requests
            if r.status is CancelRequestStatus.PENDING and r.owner_name.strip().casefold() == owner
        ]


class PendingRequestMonitor:
    """Keeps the pending-request view fresh by polling a NotificationSource.

    A failed pull keeps the previous snapshot and records the error; the
    next poll tries again. Once ``stop()`` returns, no listener fires.
    """

    def __init__(self, source: NotificationSource, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.source = source
        self.interval = interval
        self._requests: list[CancelRequest] = []
        self._listeners: list[NotificationListener] = []
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self.error: Optional[SpacioError] = None
        self.last_refreshed: Optional[float] = None

    @property
    def requests(self) -> list[CancelRequest]:
        return list(self._requests)

    @property
    def pending_count(self) -> int:
        return len(self._requests)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Register a listener called with the pending list after each refresh."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def refresh(self) -> list[CancelRequest]:
        """Pull once and notify listeners. Errors are recorded, not raised."""
        try:
            requests = await self.source.pull()
        except SpacioError as e:
            logger.warning("Failed to refresh pending cancel requests: %s", e)
            self.error = e
            return self.requests

        if self._stop_event.is_set():
            return self.requests

        self._requests = list(requests)
        self.error = None
        self.last_refreshed = asyncio.get_running_loop().time()
        logger.debug("Pending cancel requests: %d", len(self._requests))

        for listener in list(self._listeners):
            try:
                listener(self.requests)
            except Exception:
                logger.exception("Notification listener failed")
        return self.requests

    async def _poll_loop(self) -> None:
        """Immediate refresh, then one refresh per interval until stopped."""
        await self.refresh()
        while not self._stop_event.is_set():
            await asyncio.sleep(self.interval)
            if self._stop_event.is_set():
                break
            await self.refresh()

    def start(self) -> None:
        """Start polling in the background. Calling it twice is a no-op."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._poll_loop())
        logger.debug("Pending request monitor started (interval %ss)", self.interval)

    async def stop(self) -> None:
        """Stop polling and wait for the background task to finish."""
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Pending request monitor stopped")
