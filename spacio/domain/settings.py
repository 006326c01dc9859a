"""User-facing preferences persisted locally."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from spacio.core.storage import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "user_settings"


class UserSettings(BaseModel):
    language: Literal["id", "en", "ja"] = "id"
    dark_mode: bool = False
    email_notifications: bool = True
    push_notifications: bool = True
    saved_at: Optional[datetime] = None


class SettingsStore:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def load(self) -> UserSettings:
        """Stored settings, or defaults when missing or invalid."""
        raw = self._store.get(STORAGE_KEY)
        if not raw:
            return UserSettings()
        try:
            return UserSettings.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning("Stored settings are invalid, using defaults: %s", e)
            return UserSettings()

    def save(self, settings: UserSettings) -> UserSettings:
        stamped = settings.model_copy(update={"saved_at": datetime.now(timezone.utc)})
        self._store.set(STORAGE_KEY, stamped.model_dump(mode="json"))
        return stamped

    def reset(self) -> UserSettings:
        self._store.delete(STORAGE_KEY)
        return UserSettings()
