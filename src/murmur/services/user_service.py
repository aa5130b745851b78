"""CRUD-style helpers for managing users."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from murmur.core import security
from murmur.core.errors import ValidationError
from murmur.models.user import User
from murmur.schemas.user import ProfileUpdate, RegisterRequest

__all__ = [
    "get_user",
    "get_user_by_email",
    "create_user",
    "authenticate",
    "update_user",
    "record_presence",
    "search_users",
]


def get_user(db: Session, user_id: str) -> User | None:
    """Return a single user by primary key."""
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> User | None:
    """Return the user registered under ``email`` (case-insensitive)."""
    return db.scalars(select(User).where(func.lower(User.email) == email.lower())).first()


def create_user(db: Session, data: RegisterRequest) -> User:
    """Persist a new account with a hashed password.

    Raises:
        ValidationError: If the email address is already registered.
    """
    if get_user_by_email(db, data.email) is not None:
        raise ValidationError("User with this email already exists")

    db_user = User(
        username=data.username.strip(),
        email=data.email.lower(),
        password_hash=security.hash_password(data.password),
    )
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError("User with this email already exists") from exc
    db.refresh(db_user)
    return db_user


def authenticate(db: Session, email: str, password: str) -> User | None:
    """Return the user when the credentials match, otherwise None."""
    user = get_user_by_email(db, email)
    if user is None or not security.verify_password(password, user.password_hash):
        return None
    return user


def update_user(db: Session, db_user: User, update_data: ProfileUpdate) -> User:
    """Apply partial updates to an existing user."""
    update_dict = update_data.model_dump(exclude_unset=True)
    for key, value in update_dict.items():
        setattr(db_user, key, value)

    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def record_presence(
    db: Session,
    user_id: str,
    *,
    last_seen: datetime,
    is_online: bool | None = None,
    connection_id: str | None = None,
    clear_connection: bool = False,
) -> bool:
    """Write presence columns for ``user_id``.

    ``is_online=None`` leaves the online flag untouched. Returns False when no
    such user exists, which callers treat as a no-op.
    """
    values: dict[str, Any] = {"last_seen": last_seen}
    if is_online is not None:
        values["is_online"] = is_online
    if connection_id is not None:
        values["connection_id"] = connection_id
    elif clear_connection:
        values["connection_id"] = None

    result = db.execute(update(User).where(User.id == user_id).values(**values))
    db.commit()
    return bool(result.rowcount)


def search_users(
    db: Session,
    query: str,
    *,
    exclude_ids: Iterable[str] = (),
    limit: int = 10,
) -> Sequence[User]:
    """Match users by username or email substring, ignoring ``exclude_ids``."""
    pattern = f"%{query.strip().lower()}%"
    stmt = select(User).where(
        or_(func.lower(User.username).like(pattern), func.lower(User.email).like(pattern))
    )
    excluded = list(exclude_ids)
    if excluded:
        stmt = stmt.where(User.id.not_in(excluded))
    return db.scalars(stmt.order_by(User.username).limit(limit)).all()
