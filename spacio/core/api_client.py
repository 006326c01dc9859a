"""Async client for the reservation backend's JSON API.

All endpoints are PHP scripts under the configured base URL and answer with
an envelope of the form ``{"success": bool, "message": str, "data": ...}``
(some scripts use ``{"status": "success" | "error", ...}`` instead).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Union

import httpx

from spacio.core.config_manager import SpacioConfig
from spacio.core.correlation import get_action_id
from spacio.core.exceptions import (
    ConflictError,
    HTTPStatusError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    RequestFailedError,
    RequestTimeoutError,
    SessionExpiredError,
)
from spacio.core.http_client import (
    get_shared_client,
    record_client_error,
    record_client_success,
)
from spacio.core.logging_config import mask_token
from spacio.domain.models import BookingDraft, BookingId, CurrentUser

if TYPE_CHECKING:
    from spacio.domain.session import SessionStore

logger = logging.getLogger(__name__)

CLIENT_ID = "spacio_api"
_NOT_FOUND_MARKERS = ("not found", "tidak ditemukan")
_EXCERPT_LENGTH = 200


def parse_json_body(text: str) -> Any:
    """Parse a response body as JSON.

    Some PHP deployments print warnings before the JSON document, so when a
    direct parse fails the document starting at the first ``{`` or ``[`` is
    tried instead.

    Raises:
        MalformedResponseError: If no JSON document can be recovered
    """
    try:
        return json.loads(text)
    except ValueError:
        pass

    starts = [idx for idx in (text.find("{"), text.find("[")) if idx >= 0]
    if not starts:
        raise MalformedResponseError("Response is not JSON", raw_excerpt=text[:_EXCERPT_LENGTH])

    sliced = text[min(starts) :].strip()
    try:
        recovered = json.loads(sliced)
    except ValueError as e:
        raise MalformedResponseError(
            "Failed to parse JSON response", raw_excerpt=text[:_EXCERPT_LENGTH]
        ) from e

    logger.debug("Recovered JSON after %d bytes of leading noise", min(starts))
    return recovered


def _message_of(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if message:
            return str(message)
    return None


def _is_failure_envelope(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    return payload.get("success") is False or payload.get("status") == "error"


def _data(payload: Any) -> Any:
    """Unwrap the ``data`` member of an envelope, if there is one."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _as_list(payload: Any) -> list[dict[str, Any]]:
    data = _data(payload)
    if isinstance(data, list):
        return data
    return []


class SpacioAPIClient:
    """Typed wrapper around the reservation backend.

    Use as an async context manager, or call ``close()`` when done. A client
    passed in by the caller is never closed here; otherwise the shared,
    pooled client from :mod:`spacio.core.http_client` is used.
    """

    def __init__(
        self,
        config: SpacioConfig,
        session: Optional[SessionStore] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self.session = session
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> SpacioAPIClient:
        await self._ensure_client()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = await get_shared_client(CLIENT_ID)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Release the client reference. Shared clients stay open for reuse."""
        if self._owns_client:
            self._client = None

    def _headers(self) -> dict[str, str]:
        headers = {"X-Request-ID": get_action_id()}
        token = self.session.token if self.session is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
        files: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
        expect_json: bool = True,
    ) -> Any:
        """Send one request and map failures onto the spacio error taxonomy.

        Returns:
            The decoded JSON payload, or raw bytes when ``expect_json`` is False

        Raises:
            RequestTimeoutError: The request timed out
            NetworkError: The backend could not be reached
            SessionExpiredError: HTTP 401; the session token has been cleared
            NotFoundError: HTTP 404 or an envelope reporting "not found"
            ConflictError: HTTP 409
            HTTPStatusError: Any other non-2xx status
            RequestFailedError: 2xx envelope reporting failure
            MalformedResponseError: Body is not JSON
        """
        client = await self._ensure_client()
        url = self.config.get_api_endpoint(path)
        headers = self._headers()
        request_timeout = timeout if timeout is not None else self.config.request_timeout

        logger.debug(
            "%s %s (token=%s)",
            method,
            url,
            mask_token(self.session.token if self.session is not None else None),
        )

        try:
            response = await client.request(
                method,
                url,
                params=params,
                json=json_body,
                files=files,
                data=data,
                headers=headers,
                timeout=request_timeout,
            )
        except httpx.TimeoutException as e:
            await record_client_error(CLIENT_ID)
            logger.warning("Timeout after %ss: %s %s", request_timeout, method, url)
            raise RequestTimeoutError(f"Request timed out after {request_timeout}s") from e
        except httpx.TransportError as e:
            await record_client_error(CLIENT_ID)
            logger.warning("Network error: %s %s: %s", method, url, e)
            raise NetworkError(f"Network error: {e}") from e

        await record_client_success(CLIENT_ID)

        if response.status_code == 401:
            logger.warning("401 Unauthorized from %s; clearing session", url)
            if self.session is not None:
                self.session.expire()
            raise SessionExpiredError("Session expired. Please login again.", status_code=401)

        if not expect_json and response.is_success:
            return response.content

        payload = self._decode(response)

        if not response.is_success:
            message = _message_of(payload) or f"HTTP error! status: {response.status_code}"
            if response.status_code == 404:
                raise NotFoundError(message, status_code=404)
            if response.status_code == 409:
                raise ConflictError(message, status_code=409)
            raise HTTPStatusError(message, status_code=response.status_code)

        if _is_failure_envelope(payload):
            message = _message_of(payload) or "Request failed"
            if any(marker in message.lower() for marker in _NOT_FOUND_MARKERS):
                raise NotFoundError(message, status_code=response.status_code)
            raise RequestFailedError(message, status_code=response.status_code)

        return payload

    def _decode(self, response: httpx.Response) -> Any:
        text = response.text
        if not text.strip():
            if response.is_success:
                return {}
            return None
        try:
            return parse_json_body(text)
        except MalformedResponseError:
            if not response.is_success:
                # Error pages are often HTML; the status code is what matters.
                return None
            logger.error("Malformed response from %s: %r", response.url, text[:_EXCERPT_LENGTH])
            raise

    # Authentication

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Log in and store the session token (and user, when returned)."""
        payload = await self._request(
            "POST", "auth/login.php", json_body={"action": "login", "email": email, "password": password}
        )
        data = _data(payload) or {}
        session = data.get("session") if isinstance(data, dict) else None
        token = (session or {}).get("session_token")
        if not token and isinstance(payload, dict):
            token = payload.get("session_token")
        if token and self.session is not None:
            self.session.set_token(token)
            user = data.get("user") if isinstance(data, dict) else None
            if isinstance(user, dict):
                self.session.set_current_user(CurrentUser.model_validate(user))
        return payload

    async def logout(self) -> None:
        """End the session on the backend and forget it locally."""
        token = self.session.token if self.session is not None else None
        try:
            if token:
                await self._request(
                    "POST", "auth/session.php", json_body={"action": "logout", "session_token": token}
                )
        finally:
            if self.session is not None:
                self.session.clear()

    # Rooms

    async def list_rooms(self) -> list[dict[str, Any]]:
        return _as_list(await self._request("GET", "meeting_rooms.php"))

    async def get_room(self, room_id: int) -> Optional[dict[str, Any]]:
        payload = await self._request(
            "GET", "meeting_rooms.php", params={"action": "get_by_id", "room_id": room_id}
        )
        data = _data(payload)
        return data if isinstance(data, dict) else None

    # Bookings

    async def list_bookings(self) -> list[dict[str, Any]]:
        return _as_list(await self._request("GET", "bookings.php"))

    async def list_ai_bookings(self) -> list[dict[str, Any]]:
        return _as_list(await self._request("GET", "bookings.php", params={"ai-data": "true"}))

    async def create_booking(self, draft: BookingDraft, user_id: Optional[int]) -> dict[str, Any]:
        return await self._request(
            "POST",
            "bookings.php",
            json_body={"action": "create", "booking_data": draft.to_payload(user_id)},
        )

    async def cancel_booking(self, booking_id: BookingId, reason: Optional[str] = None) -> dict[str, Any]:
        """Cancel a booking; AI bookings go through their own endpoint."""
        params: dict[str, Any] = {}
        if reason:
            params["reason"] = reason
        if booking_id.is_ai:
            params["id"] = booking_id.wire_value
            return await self._request("DELETE", "bookings.php/ai-cancel", params=params)
        return await self._request("DELETE", f"bookings.php/{booking_id.wire_value}", params=params or None)

    async def complete_booking(self, booking_id: BookingId) -> dict[str, Any]:
        return await self._request(
            "POST",
            "bookings.php",
            json_body={"action": "complete", "booking_id": booking_id.wire_value},
        )

    # Cancellation requests

    async def create_cancel_request(
        self,
        booking_id: BookingId,
        requester_name: str,
        owner_name: str,
        reason: str,
        requester_id: Optional[int] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "booking_id": booking_id.wire_value,
            "booking_type": booking_id.source.value,
            "requester_name": requester_name,
            "owner_name": owner_name,
            "reason": reason,
        }
        if requester_id is not None:
            body["requester_id"] = requester_id
        payload = await self._request(
            "POST", "cancel_requests.php", params={"action": "create"}, json_body=body
        )
        return _data(payload) or {}

    async def get_cancel_requests_by_owner(self, owner_name: str) -> list[dict[str, Any]]:
        return _as_list(
            await self._request(
                "GET", "cancel_requests.php", params={"action": "get_by_owner", "owner_name": owner_name}
            )
        )

    async def get_cancel_requests_by_requester(self, requester_name: str) -> list[dict[str, Any]]:
        return _as_list(
            await self._request(
                "GET",
                "cancel_requests.php",
                params={"action": "get_by_requester", "requester_name": requester_name},
            )
        )

    async def get_all_cancel_requests(self) -> list[dict[str, Any]]:
        return _as_list(
            await self._request("GET", "cancel_requests.php", params={"action": "get_all"})
        )

    async def respond_to_cancel_request(
        self, request_id: int, status: str, response_message: Optional[str] = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"request_id": request_id, "status": status}
        if response_message:
            body["response_message"] = response_message
        return await self._request(
            "POST", "cancel_requests.php", params={"action": "respond"}, json_body=body
        )

    # Meeting minutes

    async def list_minutes(self, booking_number: Union[int, BookingId]) -> list[dict[str, Any]]:
        number = getattr(booking_number, "wire_value", booking_number)
        return _as_list(
            await self._request(
                "GET",
                "rispat.php",
                params={"booking_id": number},
                timeout=self.config.listing_timeout,
            )
        )

    async def upload_minutes(
        self,
        booking_number: Union[int, BookingId],
        file_path: Path,
        uploaded_by: str,
        content_type: str,
    ) -> dict[str, Any]:
        number = getattr(booking_number, "wire_value", booking_number)
        with open(file_path, "rb") as fh:
            payload = await self._request(
                "POST",
                "rispat.php",
                files={"file": (Path(file_path).name, fh, content_type)},
                data={"booking_id": str(number), "uploaded_by": uploaded_by},
                timeout=self.config.upload_timeout,
            )
        return _data(payload) or {}

    async def delete_minutes(self, file_id: int) -> dict[str, Any]:
        return await self._request(
            "DELETE", "rispat.php", params={"id": file_id}, timeout=self.config.listing_timeout
        )

    def minutes_download_url(self, file_id: int) -> str:
        return f"{self.config.get_api_endpoint('download_rispat.php')}?id={file_id}"

    async def download_minutes(self, file_id: int) -> bytes:
        return await self._request(
            "GET",
            "download_rispat.php",
            params={"id": file_id},
            timeout=self.config.upload_timeout,
            expect_json=False,
        )

    # Server time

    async def get_server_time(self) -> dict[str, Any]:
        """Fetch the backend's wall-clock time.

        Returns:
            The ``data`` member: ``date``, ``time``, ``timezone``, ``timestamp``
        """
        payload = await self._request("GET", "server_time.php")
        data = _data(payload)
        if not isinstance(data, dict) or "date" not in data:
            raise MalformedResponseError("Server time payload missing date", raw_excerpt=str(payload)[:_EXCERPT_LENGTH])
        return data
