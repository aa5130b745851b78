"""Password hashing and bearer token helpers."""
from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from datetime import timedelta

from jose import jwt

from murmur.core.settings import settings
from murmur.db.time import utcnow

_HASH_SCHEME = "pbkdf2_sha256"


def hash_password(password: str, *, iterations: int | None = None) -> str:
    """Return a salted PBKDF2 hash in ``scheme$iterations$salt$digest`` form."""
    rounds = iterations or settings.password_hash_iterations
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return "$".join(
        [
            _HASH_SCHEME,
            str(rounds),
            base64.b64encode(salt).decode(),
            base64.b64encode(digest).decode(),
        ]
    )


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against a hash produced by :func:`hash_password`."""
    try:
        scheme, rounds, salt_b64, digest_b64 = encoded.split("$", 3)
        if scheme != _HASH_SCHEME:
            return False
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(digest_b64)
        actual = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, int(rounds))
    except ValueError:
        return False
    return hmac.compare_digest(actual, expected)


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    """Issue a signed JWT whose subject is the user id."""
    expire = utcnow() + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str | None:
    """Return the subject of a valid token, or None when the claim is absent.

    Raises:
        jose.JWTError: If the token signature or expiry is invalid.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    subject = payload.get("sub")
    return str(subject) if subject is not None else None
