"""Cancellation requests: a non-owner asks the booking's PIC to cancel it.

State machine::

    pending --approve--> approved
    pending --reject---> rejected

Both targets are terminal. The backend enforces the transition as well; a
second response is reported by it as a conflict (or "not found").
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from spacio.core.api_client import SpacioAPIClient
from spacio.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    MalformedResponseError,
    ValidationError,
)
from spacio.domain.models import BookingId, CancelRequest, CancelRequestStatus

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 500


def validate_text(
    text: Optional[str],
    field: str,
    required: bool,
    max_length: int = MAX_TEXT_LENGTH,
) -> Optional[str]:
    """Trim and check a free-text field.

    Returns:
        The trimmed text, or None for an empty optional field

    Raises:
        ValidationError: Required text is blank, or text is longer than ``max_length``
    """
    trimmed = (text or "").strip()
    if not trimmed:
        if required:
            raise ValidationError(f"{field} is required", field_name=field, field_value=text)
        return None
    if len(trimmed) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters (got {len(trimmed)})",
            field_name=field,
            field_value=len(trimmed),
        )
    return trimmed


def _coerce_decision(decision: Union[CancelRequestStatus, str]) -> CancelRequestStatus:
    try:
        status = CancelRequestStatus(decision)
    except ValueError as e:
        raise ValidationError(
            f"Invalid decision: {decision!r}", field_name="status", field_value=decision
        ) from e
    if status is CancelRequestStatus.PENDING:
        raise ValidationError(
            "Decision must be approved or rejected", field_name="status", field_value=decision
        )
    return status


def respond_transition(
    request: CancelRequest,
    decision: Union[CancelRequestStatus, str],
    message: Optional[str] = None,
    max_length: int = MAX_TEXT_LENGTH,
) -> CancelRequest:
    """Apply an owner's decision to a pending request.

    Returns:
        A new CancelRequest in the terminal state; the input is unchanged

    Raises:
        InvalidTransitionError: The request is already approved or rejected
        ValidationError: Bad decision or over-long message
    """
    status = _coerce_decision(decision)
    if request.is_terminal:
        raise InvalidTransitionError(
            f"Cancel request {request.id} is already {request.status.value}"
        )
    response_message = validate_text(message, "response_message", required=False, max_length=max_length)
    return request.model_copy(
        update={
            "status": status,
            "response_message": response_message,
            "updated_at": datetime.now(timezone.utc),
        }
    )


def _parse_rows(rows: list[dict[str, Any]]) -> list[CancelRequest]:
    parsed = []
    for row in rows:
        try:
            parsed.append(CancelRequest.model_validate(row))
        except PydanticValidationError as e:
            logger.warning("Skipping malformed cancel request row %r: %s", row.get("id"), e)
    return parsed


def _newest_first(requests: list[CancelRequest]) -> list[CancelRequest]:
    def _key(request: CancelRequest) -> tuple[float, int]:
        created = request.created_at
        if created is None:
            return (float("-inf"), request.id)
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return (created.timestamp(), request.id)

    return sorted(requests, key=_key, reverse=True)


class CancelRequestService:
    """Creates, answers and lists cancellation requests through the API."""

    def __init__(self, api: SpacioAPIClient, max_length: int = MAX_TEXT_LENGTH) -> None:
        self.api = api
        self.max_length = max_length

    async def create(
        self,
        booking_id: BookingId,
        requester_name: str,
        owner_name: str,
        reason: str,
        requester_id: Optional[int] = None,
    ) -> CancelRequest:
        """Submit a new pending request.

        Raises:
            ValidationError: Blank or over-long reason
            AuthorizationError: The requester is the booking's owner
        """
        clean_reason = validate_text(reason, "reason", required=True, max_length=self.max_length)
        if requester_name.strip().casefold() == owner_name.strip().casefold():
            raise AuthorizationError(
                "You cannot request cancellation of your own booking",
                actor=requester_name,
                action="request_cancel",
            )

        data = await self.api.create_cancel_request(
            booking_id,
            requester_name=requester_name,
            owner_name=owner_name,
            reason=clean_reason,
            requester_id=requester_id,
        )
        request_id = data.get("request_id") if isinstance(data, dict) else None
        if request_id is None:
            raise MalformedResponseError("Create response carried no request_id", raw_excerpt=str(data)[:200])

        logger.info(
            "Cancel request %s created for booking %s by %s",
            request_id,
            booking_id.display,
            requester_name,
        )
        return CancelRequest(
            id=int(request_id),
            booking_id=str(booking_id.wire_value),
            booking_type=booking_id.source,
            requester_name=requester_name,
            requester_id=requester_id,
            owner_name=owner_name,
            reason=clean_reason,
            status=CancelRequestStatus.PENDING,
            created_at=datetime.now(timezone.utc),
        )

    async def respond(
        self,
        request: Union[CancelRequest, int],
        decision: Union[CancelRequestStatus, str],
        message: Optional[str] = None,
    ) -> Optional[CancelRequest]:
        """Approve or reject a request.

        With a CancelRequest the transition is checked locally before any
        network call. With a bare id only the backend can refuse it.

        Returns:
            The updated request, or None when only an id was given

        Raises:
            InvalidTransitionError: The request is already terminal
            ValidationError: Bad decision or over-long message
            StaleResourceError: The backend reports a conflict or missing request
        """
        if isinstance(request, CancelRequest):
            updated: Optional[CancelRequest] = respond_transition(
                request, decision, message, max_length=self.max_length
            )
            request_id = request.id
            status = updated.status
            clean_message = updated.response_message
        else:
            updated = None
            request_id = int(request)
            status = _coerce_decision(decision)
            clean_message = validate_text(
                message, "response_message", required=False, max_length=self.max_length
            )

        await self.api.respond_to_cancel_request(request_id, status.value, clean_message)
        logger.info("Cancel request %s %s", request_id, status.value)
        return updated

    async def list_by_owner(self, owner_name: str) -> list[CancelRequest]:
        rows = await self.api.get_cancel_requests_by_owner(owner_name)
        return _newest_first(_parse_rows(rows))

    async def list_by_requester(self, requester_name: str) -> list[CancelRequest]:
        rows = await self.api.get_cancel_requests_by_requester(requester_name)
        return _newest_first(_parse_rows(rows))

    async def list_for_user(self, user_name: str) -> list[CancelRequest]:
        """Requests the user received or made, deduplicated, newest first."""
        merged: dict[int, CancelRequest] = {}
        for request in await self.list_by_owner(user_name):
            merged[request.id] = request
        for request in await self.list_by_requester(user_name):
            merged.setdefault(request.id, request)
        return _newest_first(list(merged.values()))
