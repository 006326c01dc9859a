"""Meeting minutes ("rispat") attached to bookings."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from spacio.core.api_client import SpacioAPIClient
from spacio.core.exceptions import ValidationError
from spacio.domain.models import BookingId, RispatFile

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "image/jpeg",
        "image/jpg",
        "image/png",
    }
)
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def format_file_size(size: int) -> str:
    """Human-readable size with one decimal, e.g. ``1.5 MB``."""
    units = ("B", "KB", "MB", "GB")
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{value:.1f} {units[unit]}"


def guess_content_type(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


def validate_upload(filename: str, content_type: Optional[str], size: int) -> str:
    """Check a minutes file before upload.

    Returns:
        The content type to send

    Raises:
        ValidationError: Disallowed type, empty file, or larger than 10 MB
    """
    resolved = content_type or guess_content_type(filename)
    if resolved not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(
            "Only PDF, Word and image (JPEG/PNG) files are allowed",
            field_name="file",
            field_value=resolved,
        )
    if size <= 0:
        raise ValidationError("File is empty", field_name="file", field_value=filename)
    if size > MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"File is too large ({format_file_size(size)}); the limit is {format_file_size(MAX_UPLOAD_BYTES)}",
            field_name="file",
            field_value=size,
        )
    return resolved


class RispatService:
    """Lists, uploads, deletes and downloads minutes for a booking."""

    def __init__(self, api: SpacioAPIClient) -> None:
        self.api = api

    async def list_files(self, booking_id: Union[BookingId, int, str]) -> list[RispatFile]:
        target = BookingId.parse(booking_id)
        files = []
        for row in await self.api.list_minutes(target):
            try:
                files.append(RispatFile.model_validate(row))
            except PydanticValidationError as e:
                logger.warning("Skipping malformed minutes row: %s", e)
        return files

    async def has_minutes(self, booking_id: Union[BookingId, int, str]) -> bool:
        return bool(await self.list_files(booking_id))

    async def upload(
        self,
        booking_id: Union[BookingId, int, str],
        path: Union[str, Path],
        uploaded_by: str,
        content_type: Optional[str] = None,
    ) -> dict:
        file_path = Path(path)
        if not file_path.is_file():
            raise ValidationError(f"File not found: {file_path}", field_name="file", field_value=str(file_path))
        resolved = validate_upload(file_path.name, content_type, file_path.stat().st_size)
        target = BookingId.parse(booking_id)
        result = await self.api.upload_minutes(target, file_path, uploaded_by, resolved)
        logger.info("Uploaded minutes %s for booking %s", file_path.name, target.display)
        return result

    async def delete(self, file_id: int) -> None:
        await self.api.delete_minutes(file_id)
        logger.info("Deleted minutes file %s", file_id)

    async def download(self, file_id: int, destination: Union[str, Path]) -> Path:
        """Write a minutes file to ``destination`` and return its path."""
        content = await self.api.download_minutes(file_id)
        target = Path(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return target
