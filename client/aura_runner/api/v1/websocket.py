import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from aura_runner.core.errors import SessionNotFound
from aura_runner.runner.session import SessionState


router = APIRouter()
logger = logging.getLogger(__name__)

TERMINAL_STATES = (SessionState.COMPLETED, SessionState.FAILED)


def _clock(session) -> dict:
    return {
        "event": "clock",
        "state": session.state.value,
        "timeRemaining": session.time_remaining,
        "isSubmitting": session.is_submitting,
    }


async def _wait_for_disconnect(websocket: WebSocket, disconnected: asyncio.Event) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
    except (WebSocketDisconnect, RuntimeError):
        return
    finally:
        disconnected.set()


@router.websocket("/ws/runner/{session_id}")
async def runner_ws(websocket: WebSocket, session_id: str) -> None:
    auth = websocket.app.state.auth
    if not auth.is_authenticated:
        await websocket.close(code=1008)
        return
    try:
        session = websocket.app.state.registry.get(session_id)
    except SessionNotFound:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    queue = session.notifier.subscribe()
    interval = session.tick_interval
    disconnected = asyncio.Event()
    listener = asyncio.create_task(_wait_for_disconnect(websocket, disconnected))
    try:
        await websocket.send_json(_clock(session))
        while not session.closed and not disconnected.is_set():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=interval)
            except asyncio.TimeoutError:
                await websocket.send_json(_clock(session))
            else:
                await websocket.send_json(event)
            if session.state in TERMINAL_STATES and queue.empty():
                await websocket.send_json({**_clock(session), "redirectTo": session.redirect_to})
                break
        if not disconnected.is_set():
            await websocket.close()
    except WebSocketDisconnect:
        pass
    finally:
        listener.cancel()
        session.notifier.unsubscribe(queue)
    logger.debug("Runner websocket finished", extra={"session_id": session_id})
