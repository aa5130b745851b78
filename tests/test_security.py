# tests/test_security.py
"""Tests for password hashing and token helpers."""

from datetime import timedelta

import pytest
from jose import JWTError

from murmur.core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)


def test_hash_and_verify() -> None:
    encoded = hash_password("correct horse", iterations=1000)

    assert encoded.startswith("pbkdf2_sha256$1000$")
    assert verify_password("correct horse", encoded)
    assert not verify_password("battery staple", encoded)


def test_hashes_are_salted() -> None:
    assert hash_password("same", iterations=1000) != hash_password("same", iterations=1000)


@pytest.mark.parametrize("encoded", ["", "plain-text", "md5$1$abc$def", "pbkdf2_sha256$x$y$z"])
def test_verify_rejects_malformed_hashes(encoded: str) -> None:
    assert verify_password("anything", encoded) is False


def test_token_round_trip() -> None:
    assert decode_access_token(create_access_token("user-1")) == "user-1"


def test_expired_token_raises() -> None:
    token = create_access_token("user-1", expires_delta=timedelta(seconds=-5))
    with pytest.raises(JWTError):
        decode_access_token(token)
