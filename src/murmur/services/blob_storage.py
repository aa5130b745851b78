"""Local blob storage for message attachments."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Final

from murmur.core.errors import ValidationError
from murmur.models.message import MessageType

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {
        "jpeg", "jpg", "png", "gif", "webp", "bmp",
        "mp4", "avi", "mov", "mkv", "webm",
        "mp3", "wav", "ogg", "m4a", "aac", "flac",
        "pdf", "doc", "docx", "txt", "zip", "rar", "json",
    }
)
ALLOWED_MIME_PREFIXES: Final[tuple[str, ...]] = ("image/", "video/", "audio/", "application/")
PUBLIC_PREFIX: Final[str] = "/uploads/messages"
_CHUNK_SIZE: Final[int] = 64 * 1024


@dataclass(frozen=True)
class StoredBlob:
    """Metadata of an attachment written to storage."""

    path: str
    size: int
    original_name: str
    content_type: str

    @property
    def message_type(self) -> MessageType:
        """Classify the attachment by MIME type."""
        return message_type_for(self.content_type)


def message_type_for(content_type: str | None) -> MessageType:
    """Map a MIME type onto the message type shown by clients."""
    content_type = (content_type or "").lower()
    if content_type.startswith("image/"):
        return MessageType.IMAGE
    if content_type.startswith("video/"):
        return MessageType.VIDEO
    if content_type.startswith("audio/"):
        return MessageType.AUDIO
    return MessageType.FILE


def is_allowed(original_name: str, content_type: str | None) -> bool:
    """Return True when both the extension and the MIME type are accepted."""
    extension = Path(original_name).suffix.lower().lstrip(".")
    content_type = (content_type or "").lower()
    mime_ok = content_type.startswith(ALLOWED_MIME_PREFIXES) or content_type == "text/plain"
    return mime_ok and extension in ALLOWED_EXTENSIONS


class LocalBlobStorage:
    """Writes attachments below a root directory on the local filesystem."""

    def __init__(self, root: str | Path, *, max_bytes: int) -> None:
        self.root = Path(root)
        self.max_bytes = max_bytes

    def save(
        self,
        stream: BinaryIO,
        *,
        original_name: str,
        content_type: str | None,
        owner_id: str,
    ) -> StoredBlob:
        """Copy ``stream`` into storage.

        Raises:
            ValidationError: If the file type is not allowed or the file is too large.
        """
        if not original_name:
            raise ValidationError("No file uploaded")
        if not is_allowed(original_name, content_type):
            raise ValidationError(
                "File type not allowed. Supported types: images, videos, audio, documents"
            )

        directory = self.root / "messages"
        directory.mkdir(parents=True, exist_ok=True)
        suffix = Path(original_name).suffix.lower()
        filename = f"msg-{owner_id}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{suffix}"
        target = directory / filename

        size = 0
        with target.open("wb") as handle:
            while chunk := stream.read(_CHUNK_SIZE):
                size += len(chunk)
                if size > self.max_bytes:
                    break
                handle.write(chunk)

        if size > self.max_bytes:
            target.unlink(missing_ok=True)
            raise ValidationError("File exceeds the upload size limit")

        logger.info("Stored attachment %s (%d bytes) for %s", filename, size, owner_id)
        return StoredBlob(
            path=f"{PUBLIC_PREFIX}/{filename}",
            size=size,
            original_name=original_name,
            content_type=content_type or "application/octet-stream",
        )

    def delete(self, blob: StoredBlob) -> None:
        """Remove a stored attachment; missing files are ignored."""
        name = Path(blob.path).name
        (self.root / "messages" / name).unlink(missing_ok=True)
