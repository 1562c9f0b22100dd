"""Delivery of session events to the event log and to WebSocket listeners."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from typing import Any, DefaultDict, Deque, Dict, Set, Tuple

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from .telemetry import log_event

logger = logging.getLogger(__name__)

# Clock ticks are broadcast but not logged.
UNLOGGED_EVENTS = {"clock"}


class GameStreamManager:
    """Open WebSocket listeners per game."""

    def __init__(self) -> None:
        self._connections: DefaultDict[str, Set[WebSocket]] = defaultdict(set)

    async def attach(self, game_id: str, websocket: WebSocket, state: dict[str, Any]) -> None:
        await websocket.accept()
        await websocket.send_json({"type": "state", "payload": jsonable_encoder(state)})
        self._connections[game_id].add(websocket)

    def detach(self, game_id: str, websocket: WebSocket) -> None:
        listeners = self._connections.get(game_id)
        if listeners is None:
            return
        listeners.discard(websocket)
        if not listeners:
            del self._connections[game_id]

    def has_listeners(self, game_id: str) -> bool:
        return bool(self._connections.get(game_id))

    async def broadcast(self, game_id: str, message: dict[str, Any]) -> None:
        for websocket in list(self._connections.get(game_id, ())):
            try:
                await websocket.send_json(message)
            except (RuntimeError, OSError) as exc:
                logger.debug("Dropping stream listener for %s: %s", game_id, exc)
                self.detach(game_id, websocket)


class EventPublisher:
    """Delivers each game's events in order, off the event loop for database writes.

    One drain task runs per game while that game has undelivered events.
    """

    def __init__(self, streams: GameStreamManager) -> None:
        self.streams = streams
        self._backlog: Dict[str, Deque[Tuple[str, dict[str, Any]]]] = {}
        self._drains: Dict[str, asyncio.Task[None]] = {}

    def publish(self, game_id: str, event_type: str, payload: dict) -> None:
        encoded = jsonable_encoder(payload)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if event_type not in UNLOGGED_EVENTS:
                log_event(game_id, event_type, encoded)
            return
        self._backlog.setdefault(game_id, deque()).append((event_type, encoded))
        if game_id not in self._drains:
            task = loop.create_task(self._drain(game_id))
            self._drains[game_id] = task
            task.add_done_callback(self._drained)

    async def settle(self, game_id: str) -> None:
        """Wait until every event published so far for the game is delivered."""
        task = self._drains.get(game_id)
        if task is not None:
            await asyncio.wait({task})

    async def settle_all(self) -> None:
        await asyncio.gather(*self._drains.values(), return_exceptions=True)

    async def _drain(self, game_id: str) -> None:
        backlog = self._backlog[game_id]
        try:
            while backlog:
                event_type, payload = backlog.popleft()
                if event_type not in UNLOGGED_EVENTS:
                    await asyncio.to_thread(log_event, game_id, event_type, payload)
                if self.streams.has_listeners(game_id):
                    await self.streams.broadcast(game_id, {"type": event_type, "payload": payload})
        finally:
            del self._drains[game_id]
            if not backlog:
                del self._backlog[game_id]

    def _drained(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Event delivery failed: %s", exc, exc_info=exc)


stream_manager = GameStreamManager()
publisher = EventPublisher(stream_manager)
publish_event = publisher.publish
