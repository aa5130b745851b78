"""WebSocket transport for the realtime protocol."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from jose import JWTError

from murmur.core.security import decode_access_token
from murmur.realtime.channels import WebSocketConnection

from ..dependencies import HubDep

router = APIRouter(prefix="/realtime", tags=["realtime"])
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    hub: HubDep,
    token: str | None = Query(None, description="Optional bearer token binding the connection"),
) -> None:
    """Serve one client connection until it goes away.

    Frames are handled one at a time, in arrival order. When ``token`` is
    given, ``user-connected`` must name the user it was issued to.
    """
    authenticated_user_id: str | None = None
    if token is not None:
        try:
            authenticated_user_id = decode_access_token(token)
        except JWTError:
            authenticated_user_id = None
        if authenticated_user_id is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    await websocket.accept()
    connection = WebSocketConnection(websocket, hub.new_connection_id())
    session = hub.session_for(connection, authenticated_user_id=authenticated_user_id)
    await session.open()
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                logger.warning(
                    "Ignoring binary frame (%d bytes) on %s",
                    len(message.get("bytes") or b""),
                    connection.id,
                )
                continue
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring non-JSON frame on %s", connection.id)
                continue
            await session.handle_frame(frame)
    except WebSocketDisconnect:
        pass
    finally:
        await session.close()
