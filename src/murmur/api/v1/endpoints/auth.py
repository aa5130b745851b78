# src/murmur/api/v1/endpoints/auth.py
"""Authentication endpoints for the Murmur API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, status

from murmur.core.errors import MurmurError
from murmur.core.security import create_access_token
from murmur.models import User
from murmur.schemas.user import LoginRequest, RegisterRequest, TokenResponse
from murmur.services import user_service

from ..dependencies import HubDep, as_http_exception

router = APIRouter(prefix="/auth", tags=["authentication"])
logger = logging.getLogger(__name__)


def _token_for(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id),
        user_id=user.id,
        username=user.username,
    )


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=TokenResponse)
async def register(payload: RegisterRequest, hub: HubDep) -> TokenResponse:
    """Create an account and return a bearer token for it."""

    def _create() -> User:
        with hub.session_factory() as db:
            return user_service.create_user(db, payload)

    try:
        user = await asyncio.to_thread(_create)
    except MurmurError as exc:
        raise as_http_exception(exc) from exc

    logger.info("Registered user %s (%s)", user.username, user.id)
    return _token_for(user)


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest, hub: HubDep) -> TokenResponse:
    """Exchange email and password for a bearer token."""

    def _authenticate() -> User | None:
        with hub.session_factory() as db:
            return user_service.authenticate(db, payload.email, payload.password)

    user = await asyncio.to_thread(_authenticate)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    return _token_for(user)
