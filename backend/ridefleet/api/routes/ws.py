import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ridefleet.core.logging import get_logger
from ridefleet.services.socket_sessions import SocketSessionTracker

log = get_logger(__name__)

router = APIRouter()

WS_UNAUTHORIZED = 4401
FIRST_MESSAGE_TIMEOUT_SECONDS = 10


async def _send(websocket: WebSocket, event: str, data: dict) -> None:
    await websocket.send_json({"event": event, "data": data})


async def _receive_event(websocket: WebSocket) -> dict:
    raw = await websocket.receive_text()
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return message if isinstance(message, dict) else {}


@router.websocket("/ws")
async def socket_endpoint(websocket: WebSocket):
    tracker: SocketSessionTracker = websocket.app.state.socket_tracker
    connection_id = f"{id(websocket):x}"
    await websocket.accept()

    async def notify(event: str, data: dict) -> None:
        await _send(websocket, event, data)

    token = SocketSessionTracker.extract_token(
        websocket.query_params.get("token"), websocket.headers.get("authorization")
    )
    try:
        if token is None:
            first = await asyncio.wait_for(_receive_event(websocket), timeout=FIRST_MESSAGE_TIMEOUT_SECONDS)
            if first.get("event") == "authenticate":
                token = first.get("token")
        if not tracker.authenticate(connection_id, token, notify=notify):
            await websocket.close(code=WS_UNAUTHORIZED)
            return
        user = tracker.get_user(connection_id)
        await _send(websocket, "authenticated", {"userId": user.user_id if user else None})

        while True:
            message = await _receive_event(websocket)
            event = message.get("event")
            if event == "refresh_token":
                ok = tracker.refresh(connection_id, message.get("token"), notify=notify)
                await _send(websocket, "token_refreshed" if ok else "token_refresh_failed", {})
                continue
            if not tracker.is_authenticated(connection_id):
                await _send(websocket, "token_expired", {})
                await websocket.close(code=WS_UNAUTHORIZED)
                return
            if event == "ping":
                await _send(websocket, "pong", {})
            else:
                await _send(websocket, "error", {"message": "Unknown event"})
    except asyncio.TimeoutError:
        log.info("socket_auth_timeout", connection_id=connection_id)
        await websocket.close(code=WS_UNAUTHORIZED)
    except WebSocketDisconnect:
        pass
    finally:
        tracker.disconnect(connection_id)
