"""GET /_skew/sse and WS /_skew/ws realtime endpoints"""

import asyncio
import json
import logging
from typing import Optional
from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from skew_protection.core.broadcaster import VersionBroadcaster
from skew_protection.models.errors import RealtimeUnavailableError
from skew_protection.models.schemas import ClientMessage

logger = logging.getLogger(__name__)

router = APIRouter()

# How often an idle SSE stream checks whether its client went away
DISCONNECT_POLL_SECONDS = 1.0


async def event_stream(request: Request, broadcaster: VersionBroadcaster, client_version: str,
                       queue_size: int = 32, poll_interval: float = DISCONNECT_POLL_SECONDS):
    """
    Register an SSE session and drain its queue as `data:` frames until the
    client or the session goes away.

    Registration happens on first iteration, so a client that disconnects
    before the body starts never leaves a session behind.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    async def send(data: str) -> None:
        # QueueFull drops a client that stopped reading
        queue.put_nowait(data)

    session_id = None
    try:
        session_id = await broadcaster.connect(send, client_version)
        while True:
            try:
                data = await asyncio.wait_for(queue.get(), timeout=poll_interval)
            except asyncio.TimeoutError:
                if session_id is None or not broadcaster.has_session(session_id):
                    break
                if await request.is_disconnected():
                    break
                continue
            yield f"data: {data}\n\n"
    finally:
        if session_id is not None:
            broadcaster.disconnect(session_id)


@router.get("/sse")
async def stream_versions(request: Request, version: Optional[str] = None):
    """
    Stream version events as Server-Sent Events.

    The first frame is always `connected`; a client already behind the live
    build gets a `version-update` right after it, then `keepalive` frames
    every heartbeat interval.
    """
    service = request.app.state.service
    broadcaster = service.broadcaster
    if broadcaster is None:
        raise RealtimeUnavailableError(service.settings.platform)
    if not version:
        raise HTTPException(status_code=400, detail="Missing version parameter")

    return StreamingResponse(
        event_stream(request, broadcaster, version, queue_size=service.settings.session_queue_size),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.websocket("/ws")
async def version_socket(websocket: WebSocket, version: Optional[str] = None):
    """Version events over a WebSocket; `{"type": "ping"}` is answered with `pong`"""
    broadcaster = websocket.app.state.service.broadcaster
    if broadcaster is None or not version:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session_id = await broadcaster.connect(websocket.send_text, version)
    if session_id is None:
        return

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = ClientMessage.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Ignoring malformed realtime message from {session_id}: {e}")
                continue
            if message.type == "ping":
                await broadcaster.pong(session_id)
    except WebSocketDisconnect:
        logger.debug(f"WebSocket {session_id} closed by client")
    finally:
        broadcaster.disconnect(session_id)
