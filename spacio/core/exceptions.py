"""Exception hierarchy for the spacio client.

Errors fall into five families, each handled differently by callers:

- validation errors: bad user input, caught before any network call
- authorization errors: the actor may not perform the action on the booking
- transport errors: network failure, timeout, non-2xx status, expired session
- stale-resource errors: the booking or request no longer exists or is
  already in a terminal state; callers reconcile their local view
- malformed responses: the backend replied with something that is not JSON
"""

from __future__ import annotations

from typing import Any, Optional


class SpacioError(Exception):
    """Base exception for all spacio errors.

    Args:
        message: Human-readable error description
        details: Optional dictionary containing additional error context
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ValidationError(SpacioError):
    """User-supplied data failed validation.

    Raised when:
    - A cancellation reason is empty after trimming or exceeds its length limit
    - An owner's response message exceeds its length limit
    - A booking action is attempted in a lifecycle phase that forbids it
    - Minutes are required but none have been uploaded yet
    - A booking draft or upload is malformed
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        field_value: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field_name = field_name
        self.field_value = field_value

        error_details = details or {}
        if field_name:
            error_details["field_name"] = field_name
        super().__init__(message, error_details)


class AuthorizationError(SpacioError):
    """The actor is not allowed to perform the action on the booking.

    Owner-only actions (direct cancel, complete) raise this for non-owners;
    cancellation requests raise it when the requester owns the booking.
    """

    def __init__(
        self,
        message: str,
        actor: Optional[str] = None,
        action: Optional[str] = None,
    ) -> None:
        self.actor = actor
        self.action = action
        details: dict[str, Any] = {}
        if action:
            details["action"] = action
        super().__init__(message, details)


class TransportError(SpacioError):
    """Base class for failures talking to the backend."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class NetworkError(TransportError):
    """The backend could not be reached."""


class RequestTimeoutError(TransportError):
    """The request exceeded its timeout."""


class HTTPStatusError(TransportError):
    """The backend answered with an unexpected non-2xx status."""


class SessionExpiredError(TransportError):
    """The backend rejected the session token (HTTP 401)."""


class RequestFailedError(TransportError):
    """The backend answered 2xx but reported the operation as failed."""


class StaleResourceError(SpacioError):
    """The target no longer exists or is no longer in the expected state.

    Callers treat this as a reconciliation signal: drop the stale item from
    the local view instead of retrying.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class NotFoundError(StaleResourceError):
    """The booking or request was not found (already finalized or removed)."""


class ConflictError(StaleResourceError):
    """The backend refused a state change that conflicts with current state."""


class InvalidTransitionError(StaleResourceError):
    """A cancellation request is already terminal and cannot change again."""


class MalformedResponseError(SpacioError):
    """The backend response could not be parsed as JSON."""

    def __init__(self, message: str, raw_excerpt: str = "") -> None:
        self.raw_excerpt = raw_excerpt
        super().__init__(message)
