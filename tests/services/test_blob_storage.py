# tests/services/test_blob_storage.py
"""Tests for local attachment storage."""

from __future__ import annotations

import io

import pytest

from murmur.core.errors import ValidationError
from murmur.models import MessageType
from murmur.services.blob_storage import LocalBlobStorage, is_allowed, message_type_for


@pytest.mark.parametrize(
    ("content_type", "expected"),
    [
        ("image/png", MessageType.IMAGE),
        ("video/mp4", MessageType.VIDEO),
        ("audio/ogg", MessageType.AUDIO),
        ("application/pdf", MessageType.FILE),
        (None, MessageType.FILE),
    ],
)
def test_message_type_for(content_type, expected) -> None:
    assert message_type_for(content_type) == expected


def test_is_allowed_checks_extension_and_mime() -> None:
    assert is_allowed("notes.txt", "text/plain")
    assert is_allowed("clip.WEBM", "video/webm")
    assert not is_allowed("script.exe", "application/octet-stream")
    assert not is_allowed("page.html", "text/html")


def test_save_writes_under_messages_dir(tmp_path) -> None:
    storage = LocalBlobStorage(tmp_path, max_bytes=100)

    blob = storage.save(
        io.BytesIO(b"\x89PNG data"),
        original_name="cat.png",
        content_type="image/png",
        owner_id="alice",
    )

    assert blob.path.startswith("/uploads/messages/msg-alice-")
    assert blob.path.endswith(".png")
    assert blob.size == 9
    assert blob.message_type == MessageType.IMAGE
    stored = tmp_path / "messages" / blob.path.rsplit("/", 1)[-1]
    assert stored.read_bytes() == b"\x89PNG data"

    storage.delete(blob)
    assert not stored.exists()


def test_save_rejects_oversized_files(tmp_path) -> None:
    storage = LocalBlobStorage(tmp_path, max_bytes=4)

    with pytest.raises(ValidationError, match="size limit"):
        storage.save(
            io.BytesIO(b"too large"),
            original_name="a.txt",
            content_type="text/plain",
            owner_id="alice",
        )

    assert list((tmp_path / "messages").iterdir()) == []


def test_save_rejects_disallowed_types(tmp_path) -> None:
    storage = LocalBlobStorage(tmp_path, max_bytes=100)

    with pytest.raises(ValidationError, match="File type not allowed"):
        storage.save(
            io.BytesIO(b"MZ"),
            original_name="virus.exe",
            content_type="application/x-msdownload",
            owner_id="alice",
        )
