"""Session token and current-user state, with an application-wide expiry signal."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from spacio.core.logging_config import mask_token
from spacio.core.storage import KeyValueStore
from spacio.domain.models import CurrentUser

logger = logging.getLogger(__name__)

TOKEN_KEY = "session_token"
USER_KEY = "user"

SessionListener = Callable[[], None]


class SessionStore:
    """Holds the bearer token and logged-in user in a key-value store.

    ``expire()`` is called by the API client on HTTP 401: the token is gone
    and every subscribed listener is told so it can react (re-login prompt,
    stopping pollers).
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._listeners: list[SessionListener] = []

    @property
    def token(self) -> Optional[str]:
        token = self._store.get(TOKEN_KEY)
        return token or None

    def set_token(self, token: str) -> None:
        self._store.set(TOKEN_KEY, token)
        logger.debug("Session token stored (%s)", mask_token(token))

    def clear_token(self) -> None:
        self._store.delete(TOKEN_KEY)

    @property
    def current_user(self) -> Optional[CurrentUser]:
        raw = self._store.get(USER_KEY)
        if not raw:
            return None
        try:
            return CurrentUser.model_validate(raw)
        except PydanticValidationError:
            logger.warning("Stored user record is invalid; ignoring")
            return None

    def set_current_user(self, user: CurrentUser) -> None:
        self._store.set(USER_KEY, user.model_dump())

    def clear(self) -> None:
        """Forget token and user (logout)."""
        self._store.delete(TOKEN_KEY)
        self._store.delete(USER_KEY)

    def subscribe_expired(self, listener: SessionListener) -> Callable[[], None]:
        """Register a session-expired listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def expire(self) -> None:
        """Drop the token and notify listeners that the session has expired."""
        self.clear_token()
        logger.warning("Session expired; notifying %d listener(s)", len(self._listeners))
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Session-expired listener failed")
