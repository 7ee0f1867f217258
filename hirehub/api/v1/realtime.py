# hirehub/api/v1/realtime.py
"""
WebSocket transport.

    /ws                  chat, presence, interaction notifications
    /ws/resume-status    resume evaluation status

The bearer token comes from `?token=` or an `Authorization: Bearer` header.
An unauthenticated socket is closed with code 4401 before it is registered.
"""

import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from hirehub.core.errors import AuthenticationError
from hirehub.core.security import decode_access_token
from hirehub.models.realtime import Ack, Inbound
from hirehub.services.realtime import DEFAULT_CHANNEL, STATUS_CHANNEL, RealtimeService
from hirehub.services.rooms import Connection

logger = logging.getLogger(__name__)

router = APIRouter()

WS_UNAUTHORIZED = 4401


def _token_from(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    scheme, _, credentials = websocket.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def _ack_body(ack: Ack) -> dict:
    return ack.model_dump(mode="json", exclude_none=True)


async def _handle_frame(realtime: RealtimeService, conn: Connection, raw: str) -> None:
    try:
        frame = Inbound.model_validate_json(raw)
    except PydanticValidationError:
        conn.deliver("error", _ack_body(Ack.fail("validation_error", "Malformed frame")))
        return
    ack = await realtime.dispatch(conn, frame.event, frame.data)
    if frame.id is not None:
        conn.deliver("ack", _ack_body(ack), frame_id=frame.id)
    elif not ack.success:
        conn.deliver("error", _ack_body(ack))


async def _serve(websocket: WebSocket, channel: str) -> None:
    realtime: RealtimeService = websocket.app.state.services.realtime
    await websocket.accept()
    try:
        principal = decode_access_token(_token_from(websocket))
    except AuthenticationError as exc:
        logger.info("Rejected %s socket: %s", channel, exc.message)
        await websocket.close(code=WS_UNAUTHORIZED, reason=exc.message)
        return

    conn = await realtime.connect(principal, websocket.send_json, channel)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                conn.deliver("error", _ack_body(Ack.fail("validation_error", "Binary frames are not supported")))
                continue
            await _handle_frame(realtime, conn, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await realtime.disconnect(conn)


@router.websocket("/ws")
async def default_socket(websocket: WebSocket):
    await _serve(websocket, DEFAULT_CHANNEL)


@router.websocket("/ws/resume-status")
async def resume_status_socket(websocket: WebSocket):
    await _serve(websocket, STATUS_CHANNEL)
