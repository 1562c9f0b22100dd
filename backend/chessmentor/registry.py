"""In-process registry of live game sessions."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Callable, Dict

from .config import settings
from .evaluator import EvaluatorClient
from .mentor import MentorClient
from .session import GameSession, SessionConfig, SessionStatus, parse_time_control
from .store import GameRepository, repository
from .streaming import publish_event

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], GameSession]


def default_session_factory() -> GameSession:
    return GameSession(
        evaluator=EvaluatorClient(),
        mentor=MentorClient(),
        gateway=repository,
        notify=publish_event,
    )


class SessionRegistry:
    def __init__(
        self,
        factory: SessionFactory = default_session_factory,
        games: GameRepository = repository,
    ) -> None:
        self.factory = factory
        self.games = games
        self._sessions: Dict[str, GameSession] = {}
        self._sweeper: asyncio.Task[None] | None = None

    async def open(
        self,
        *,
        color: str,
        time_control: str,
        difficulty_level: int,
        mentor_enabled: bool,
        initial_time_seconds: int | None = None,
    ) -> GameSession:
        if color == "auto":
            color = random.choice(("white", "black"))
        initial, increment = parse_time_control(time_control)
        if initial_time_seconds is not None:
            initial = initial_time_seconds
        game_id = await asyncio.to_thread(
            self.games.create_game,
            player_color=color,
            time_control=time_control,
            initial_time_seconds=initial,
            increment_seconds=increment,
            difficulty_level=difficulty_level,
            mentor_enabled=mentor_enabled,
        )
        session = self.factory()
        session.on_closed = self._forget
        await session.start(
            SessionConfig(
                game_id=game_id,
                color=color,  # type: ignore[arg-type]
                initial_time_seconds=initial,
                time_control=time_control,
                mentor_enabled=mentor_enabled,
                difficulty_level=difficulty_level,
            )
        )
        self._sessions[game_id] = session
        logger.info("Opened game %s as %s at level %s", game_id, color, difficulty_level)
        return session

    def get(self, game_id: str) -> GameSession:
        return self._sessions[game_id]

    def __contains__(self, game_id: object) -> bool:
        return game_id in self._sessions

    def _forget(self, session: GameSession) -> None:
        game_id = session.saved_game_id
        if game_id is not None and self._sessions.get(game_id) is session:
            del self._sessions[game_id]
            logger.info("Released stored game %s", game_id)

    async def discard(self, game_id: str) -> None:
        session = self._sessions.pop(game_id, None)
        if session is None:
            return
        if session.status == SessionStatus.CONCLUDING and session.persistence_error is None:
            await session.wait_concluded()
        await session.close()

    async def sweep_idle(self, max_idle: float | None = None) -> list[str]:
        """Abandon and release games without player activity for ``max_idle`` seconds."""
        limit = settings.session_idle_seconds if max_idle is None else max_idle
        cutoff = time.monotonic() - limit
        idle = [game_id for game_id, session in self._sessions.items() if session.last_activity <= cutoff]
        for game_id in idle:
            session = self._sessions.get(game_id)
            if session is None:
                continue
            if await session.abandon():
                logger.info("Abandoned idle game %s", game_id)
            await self.discard(game_id)
        return idle

    def start_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(settings.session_sweep_interval)
            await self.sweep_idle()

    async def close_all(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        for game_id in list(self._sessions):
            await self.discard(game_id)


registry = SessionRegistry()