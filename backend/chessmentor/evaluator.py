"""Stockfish evaluator client built on python-chess's asyncio engine API."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Awaitable, Callable, Union

import chess
import chess.engine

from .config import settings
from .quality import score_to_cp

logger = logging.getLogger(__name__)

DEPTH_BY_LEVEL: dict[int, int] = {1: 8, 2: 10, 3: 12, 4: 15}
DEFAULT_DEPTH = 12


def depth_for_level(level: int | None) -> int:
    if level is None:
        return DEFAULT_DEPTH
    return DEPTH_BY_LEVEL.get(level, DEFAULT_DEPTH)


@dataclass(frozen=True)
class EvaluationSnapshot:
    """Latest analysis of one position; scores are from the side to move."""

    fen: str
    depth: int
    score_cp: int
    mate: int | None = None
    pv: tuple[str, ...] = ()
    best_move: str | None = None

    @property
    def pv_first_move(self) -> str | None:
        return self.pv[0] if self.pv else None

    @property
    def centipawns(self) -> int:
        return score_to_cp(self.score_cp, self.mate)

    def as_dict(self) -> dict[str, object]:
        return {
            "fen": self.fen,
            "depth": self.depth,
            "score_cp": self.score_cp,
            "mate": self.mate,
            "pv": list(self.pv),
            "best_move": self.best_move,
            "centipawns": self.centipawns,
        }


def snapshot_from_info(
    fen: str,
    turn: chess.Color,
    info: chess.engine.InfoDict,
    previous: EvaluationSnapshot | None = None,
) -> EvaluationSnapshot | None:
    """Turn one engine ``info`` update into a snapshot.

    Updates without a depth or a score (``currmove`` progress, ``string``
    chatter) yield ``None``. A missing ``pv`` keeps the previous line.
    """
    depth = info.get("depth")
    score = info.get("score")
    if depth is None or score is None:
        return None
    relative = score.pov(turn)
    pv = tuple(move.uci() for move in info.get("pv", ()))
    if not pv and previous is not None:
        pv = previous.pv
    return EvaluationSnapshot(
        fen=fen,
        depth=depth,
        score_cp=relative.score() or 0,
        mate=relative.mate(),
        pv=pv,
    )


@dataclass(frozen=True)
class EvaluatorReady:
    pass


@dataclass(frozen=True)
class EvaluationUpdate:
    snapshot: EvaluationSnapshot


@dataclass(frozen=True)
class BestMoveChosen:
    fen: str
    move: str | None
    snapshot: EvaluationSnapshot | None


@dataclass(frozen=True)
class EvaluatorFailed:
    reason: str


EvaluatorEvent = Union[EvaluatorReady, EvaluationUpdate, BestMoveChosen, EvaluatorFailed]

EngineHandle = tuple[Any, chess.engine.Protocol]
EngineFactory = Callable[[], Awaitable[EngineHandle]]


def engine_cmd() -> list[str]:
    path = Path(settings.stockfish_path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Stockfish executable not found at {path}.")
    cmd = str(path)
    if os.name == "nt":
        return [cmd]
    return shlex.split(cmd)


async def open_stockfish() -> EngineHandle:
    return await chess.engine.popen_uci(engine_cmd())


@dataclass
class _Search:
    fen: str
    depth: int
    analysis: chess.engine.AnalysisResult | None = None
    snapshot: EvaluationSnapshot | None = None


@dataclass
class EvaluatorClient:
    """One long-lived engine conversation.

    Evaluation requests made before the engine answered the ready ping are
    dropped rather than queued. Each new position stops the running search,
    and only the most recently submitted position updates the observable
    state.
    """

    engine_factory: EngineFactory = open_stockfish
    ready_timeout: float = field(default_factory=lambda: settings.evaluator_ready_timeout)

    def __post_init__(self) -> None:
        self._transport: Any = None
        self._protocol: chess.engine.Protocol | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._followers: set[asyncio.Task[None]] = set()
        self._submit_lock = asyncio.Lock()
        self._current: _Search | None = None
        self._running: _Search | None = None
        self._subscribers: list[asyncio.Queue[EvaluatorEvent]] = []
        self._last_submitted_fen: str | None = None
        self._latest_evaluation: EvaluationSnapshot | None = None
        self._latest_best_move: str | None = None
        self._closing = False
        self.is_ready = False
        self.failed = False

    @property
    def latest_evaluation(self) -> EvaluationSnapshot | None:
        return self._latest_evaluation

    @property
    def latest_best_move(self) -> str | None:
        return self._latest_best_move

    @property
    def last_submitted_fen(self) -> str | None:
        return self._last_submitted_fen

    def subscribe(self) -> asyncio.Queue[EvaluatorEvent]:
        queue: asyncio.Queue[EvaluatorEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[EvaluatorEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    async def start(self) -> bool:
        try:
            self._transport, self._protocol = await asyncio.wait_for(
                self.engine_factory(), timeout=self.ready_timeout
            )
            await asyncio.wait_for(self._protocol.ping(), timeout=self.ready_timeout)
        except (OSError, ValueError, chess.engine.EngineError, asyncio.TimeoutError) as exc:
            self._mark_failed(f"engine did not become ready ({type(exc).__name__})")
            await self.close()
            return False
        self.is_ready = True
        self._watcher = asyncio.create_task(self._watch_exit(self._protocol))
        self._publish(EvaluatorReady())
        return True

    async def evaluate(self, fen: str, depth: int | None = None, level: int | None = None) -> bool:
        if not self.is_ready or self._protocol is None:
            logger.debug("Evaluator not ready; dropping evaluation of %s", fen)
            return False
        search = _Search(fen=fen, depth=depth if depth is not None else depth_for_level(level))
        self._current = search
        self._last_submitted_fen = fen
        self._latest_evaluation = None
        self._latest_best_move = None
        async with self._submit_lock:
            if self._current is not search:
                return False
            running = self._running
            if running is not None and running.analysis is not None:
                running.analysis.stop()
            try:
                # Starts once the previous search has reported its best move.
                search.analysis = await self._protocol.analysis(
                    chess.Board(fen), chess.engine.Limit(depth=search.depth)
                )
            except chess.engine.EngineError as exc:
                self._mark_failed(f"engine rejected analysis: {exc}")
                return False
            self._running = search
        follower = asyncio.create_task(self._follow(search))
        self._followers.add(follower)
        follower.add_done_callback(self._followers.discard)
        return True

    async def close(self) -> None:
        self._closing = True
        self.is_ready = False
        current = asyncio.current_task()
        tasks = [task for task in (self._watcher, *self._followers) if task is not None and task is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._watcher = None
        protocol, self._protocol = self._protocol, None
        transport, self._transport = self._transport, None
        if protocol is None:
            return
        try:
            await asyncio.wait_for(protocol.quit(), timeout=1.0)
        except (chess.engine.EngineError, asyncio.TimeoutError):
            logger.warning("Evaluator did not quit cleanly", exc_info=True)
            if transport is not None:
                transport.close()

    async def _follow(self, search: _Search) -> None:
        assert search.analysis is not None
        turn = chess.Board(search.fen).turn
        try:
            async for info in search.analysis:
                snapshot = snapshot_from_info(search.fen, turn, info, search.snapshot)
                if snapshot is None:
                    continue
                search.snapshot = snapshot
                if self._current is search:
                    self._latest_evaluation = snapshot
                    self._publish(EvaluationUpdate(snapshot))
            best = await search.analysis.wait()
        except chess.engine.EngineError as exc:
            if not self._closing:
                self._mark_failed(f"analysis aborted: {exc}")
            return
        move = best.move.uci() if best.move else None
        if self._current is not search:
            logger.debug("Discarding stale best move %s for %s", move, search.fen)
            return
        snapshot = replace(search.snapshot, best_move=move) if search.snapshot else None
        if snapshot is not None:
            self._latest_evaluation = snapshot
        self._latest_best_move = move
        self._publish(BestMoveChosen(fen=search.fen, move=move, snapshot=snapshot))

    async def _watch_exit(self, protocol: chess.engine.Protocol) -> None:
        code = await protocol.returncode
        if not self._closing:
            self._mark_failed(f"engine process exited with code {code}")

    def _mark_failed(self, reason: str) -> None:
        if self.failed:
            return
        logger.error("Evaluator unavailable: %s", reason)
        self.is_ready = False
        self.failed = True
        self._publish(EvaluatorFailed(reason))

    def _publish(self, event: EvaluatorEvent) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)
