# src/murmur/main.py
"""Main entry point for the Murmur application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from murmur.api.v1 import (
    auth_router,
    friends_router,
    messages_router,
    realtime_router,
    system_router,
    users_router,
)
from murmur.core.settings import settings
from murmur.db import create_tables
from murmur.realtime.hub import get_hub

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Murmur API",
    description="Friends, direct messages and live presence",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(users_router, prefix="/api/v1")
app.include_router(friends_router, prefix="/api/v1")
app.include_router(messages_router, prefix="/api/v1")
app.include_router(realtime_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    create_tables()
    logger.info("%s %s started", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await get_hub().shutdown()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "Murmur API",
        "version": settings.app_version,
        "description": "Friends, direct messages and live presence",
        "docs": "/docs",
        "realtime": "/api/v1/realtime/ws",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("murmur.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
