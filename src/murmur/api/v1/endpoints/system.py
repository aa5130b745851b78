"""System and transparency endpoints for Murmur API."""

from __future__ import annotations

from fastapi import APIRouter

from murmur.core.settings import settings

from ..dependencies import HubDep

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes secrets and connection strings; suitable for client bootstrapping.

    Returns:
        Dictionary containing app settings and messaging limits
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "jwt_algorithm": settings.jwt_algorithm,
            "access_token_expire_minutes": settings.access_token_expire_minutes,
            "debug": settings.debug,
        },
        "messaging": {
            "history_limit": settings.message_history_limit,
            "max_length": settings.message_max_length,
            "upload_max_bytes": settings.upload_max_bytes,
        },
        "search": {
            "min_length": settings.user_search_min_length,
            "limit": settings.user_search_limit,
        },
    }


@router.get("/realtime")
async def get_realtime_stats(hub: HubDep) -> dict[str, int]:
    """Report how many connections and online users this process holds.

    Args:
        hub: Realtime hub

    Returns:
        Dictionary with connection and online-user counts
    """
    connections = await hub.router.connections()
    return {
        "connections": len(connections),
        "online_users": len(hub.presence.online_user_ids()),
    }
