"""WebSocket streaming endpoints."""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..registry import registry
from ..streaming import stream_manager

router = APIRouter()


@router.websocket("/api/v1/games/{game_id}/stream")
async def game_stream(websocket: WebSocket, game_id: str) -> None:
    try:
        session = registry.get(game_id)
    except KeyError:
        await websocket.close(code=4404)
        return

    await stream_manager.attach(game_id, websocket, session.to_state())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        stream_manager.detach(game_id, websocket)
