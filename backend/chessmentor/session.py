"""Game session state machine: board, clocks, analysis pipeline and lifecycle."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine, Literal, Protocol

from .board import Board, MoveRecord, opposite, result_for_winner
from .config import settings
from .errors import (
    EvaluatorUnavailableError,
    IllegalMoveError,
    MentorServiceError,
    PersistenceError,
    SessionBusyError,
    SessionStateError,
    StalePositionResult,
)
from .evaluator import (
    BestMoveChosen,
    EvaluationSnapshot,
    EvaluationUpdate,
    EvaluatorClient,
    EvaluatorEvent,
    EvaluatorFailed,
    EvaluatorReady,
    depth_for_level,
)
from .mentor import MentorClient, MentorContext, MentorReply
from .quality import CHECKMATE_CP, MoveQuality, classify, empty_tally
from .store import GameRecord

logger = logging.getLogger(__name__)

Color = Literal["white", "black"]
Notifier = Callable[[str, str, dict], None]
ClosedHook = Callable[["GameSession"], None]

DEFAULT_INITIAL_SECONDS = 600


class SessionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CONCLUDING = "concluding"
    CLOSED = "closed"


class AnalysisState(str, Enum):
    IDLE = "idle"
    AWAITING_EVALUATION = "awaiting_evaluation"
    AWAITING_COMMENTARY = "awaiting_commentary"


def parse_time_control(label: str | None, default_initial: int = DEFAULT_INITIAL_SECONDS) -> tuple[int, int]:
    """``"10|5"`` is ten minutes plus a five second increment."""
    if not label:
        return default_initial, 0
    minutes, _, increment = label.partition("|")
    try:
        initial = int(float(minutes) * 60)
    except ValueError:
        return default_initial, 0
    try:
        bonus = int(increment) if increment else 0
    except ValueError:
        bonus = 0
    return max(0, initial), max(0, bonus)


@dataclass(frozen=True)
class SessionConfig:
    game_id: str
    color: Color
    initial_time_seconds: int | None = None
    time_control: str = "10|0"
    mentor_enabled: bool = True
    difficulty_level: int = 3

    @property
    def clock_seconds(self) -> tuple[int, int]:
        initial, increment = parse_time_control(self.time_control)
        if self.initial_time_seconds is not None:
            initial = self.initial_time_seconds
        return initial, increment


@dataclass(frozen=True)
class Insight:
    move_number: int
    move: str
    uci: str
    quality: MoveQuality
    commentary: str
    fen: str
    evaluation: int
    quality_source: str = "engine"
    mentor_quality: MoveQuality | None = None
    mentor_quality_source: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["quality"] = self.quality.value
        payload["mentor_quality"] = self.mentor_quality.value if self.mentor_quality else None
        return payload


@dataclass
class _PendingAnalysis:
    move_number: int
    record: MoveRecord
    fen_after: str
    pre_score: int | None
    pre_best_move: str | None
    mover_clock: int


class GameGateway(Protocol):
    def save(self, record: GameRecord) -> None: ...


@dataclass
class GameSession:
    """Single writer for one game.

    Moves are serialized by ``_lock``; evaluator results, engine replies and
    mentor replies are checked against the live position before they touch
    any state.
    """

    evaluator: EvaluatorClient
    mentor: MentorClient | None
    gateway: GameGateway
    notify: Notifier | None = None
    engine_delay: tuple[float, float] = field(
        default_factory=lambda: (settings.engine_move_delay_min, settings.engine_move_delay_max)
    )
    clock_interval: float = 1.0
    mentor_timeout: float = field(default_factory=lambda: settings.mentor_timeout_seconds)
    rng: random.Random = field(default_factory=random.Random)
    on_closed: ClosedHook | None = None

    def __post_init__(self) -> None:
        self.status = SessionStatus.PENDING
        self.analysis_state = AnalysisState.IDLE
        self.game_id: str | None = None
        self.saved_game_id: str | None = None
        self.board = Board()
        self.user_color: Color = "white"
        self.difficulty_level = 3
        self.mentor_enabled = True
        self.time_control = "10|0"
        self.increment_seconds = 0
        self.clock: dict[str, int] = {"white": 0, "black": 0}
        self.insights: list[Insight] = []
        self.quality_tally: dict[str, int] = empty_tally()
        self.moves: list[MoveRecord] = []
        self.result = "*"
        self.termination: str | None = None
        self.persistence_error: str | None = None
        self.started_at: datetime | None = None
        self.last_activity = time.monotonic()
        self._lock = asyncio.Lock()
        self._pending: _PendingAnalysis | None = None
        self._events: asyncio.Queue[EvaluatorEvent] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._analysis_task: asyncio.Task[None] | None = None
        self._engine_move_task: asyncio.Task[Any] | None = None
        self._engine_move_ply: int | None = None
        self._conclude_task: asyncio.Task[bool] | None = None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self, config: SessionConfig) -> None:
        if self.status != SessionStatus.PENDING:
            raise SessionStateError(f"Session already {self.status.value}.")
        initial, increment = config.clock_seconds
        self.game_id = config.game_id
        self.board = Board()
        self.user_color = config.color
        self.difficulty_level = config.difficulty_level
        self.mentor_enabled = config.mentor_enabled and self.mentor is not None
        self.time_control = config.time_control
        self.increment_seconds = increment
        self.clock = {"white": initial, "black": initial}
        self.insights = []
        self.quality_tally = empty_tally()
        self.moves = []
        self.result = "*"
        self.termination = None
        self.started_at = datetime.now(timezone.utc)
        self.last_activity = time.monotonic()
        self.status = SessionStatus.ACTIVE

        self._events = self.evaluator.subscribe()
        self._spawn(self._listen())
        self._spawn(self._run_clock())
        self._spawn(self._boot_evaluator())
        self._emit("session_started", self.to_state())

    async def apply_human_move(self, from_square: str, to_square: str, promotion: str | None = None) -> MoveRecord:
        async with self._lock:
            self._require_active()
            if self.board.turn != self.user_color:
                raise SessionStateError("It is not the player's turn.")
            self.last_activity = time.monotonic()
            if self.analysis_state != AnalysisState.IDLE:
                raise SessionBusyError("The previous move is still being analysed.")
            move = self.board.parse_move(from_square, to_square, promotion)

            pre_fen = self.board.to_fen()
            snapshot = self.evaluator.latest_evaluation
            if snapshot is not None and snapshot.fen != pre_fen:
                snapshot = None
            pre_score = snapshot.centipawns if snapshot else None
            pre_best = (snapshot.best_move or snapshot.pv_first_move) if snapshot else None

            record = self._commit_move(move)
            if self.mentor_enabled and self.evaluator.is_ready:
                self._pending = _PendingAnalysis(
                    move_number=len(self.moves),
                    record=record,
                    fen_after=self.board.to_fen(),
                    pre_score=pre_score,
                    pre_best_move=pre_best,
                    mover_clock=self.clock[record.color],
                )
                self.analysis_state = AnalysisState.AWAITING_EVALUATION

            outcome = self.board.outcome()
            if outcome is not None:
                if self._pending is not None:
                    post = CHECKMATE_CP if record.is_checkmate else 0
                    self._resolve_analysis(self._pending, post)
                self._begin_conclusion(outcome.result, outcome.termination)
            else:
                await self._request_evaluation()
            return record

    async def apply_engine_move(self, uci: str | None = None, expected_fen: str | None = None) -> MoveRecord | None:
        async with self._lock:
            if self.status != SessionStatus.ACTIVE or self.board.turn == self.user_color:
                return None
            fen = self.board.to_fen()
            if expected_fen is not None and expected_fen != fen:
                logger.debug("Dropping engine move planned for a stale position")
                return None
            if uci is None and self.evaluator.last_submitted_fen == fen:
                uci = self.evaluator.latest_best_move
            if not uci:
                if not self.evaluator.is_ready:
                    raise EvaluatorUnavailableError("No engine move available; the evaluator is not running.")
                return None
            try:
                move = self.board.parse_uci(uci)
            except IllegalMoveError:
                logger.warning("Evaluator suggested illegal move %s in %s", uci, fen)
                return None
            record = self._commit_move(move)
            outcome = self.board.outcome()
            if outcome is not None:
                self._begin_conclusion(outcome.result, outcome.termination)
            else:
                await self._request_evaluation()
            return record

    def tick(self) -> None:
        if self.status != SessionStatus.ACTIVE:
            return
        side = self.board.turn
        self.clock[side] = max(0, self.clock[side] - 1)
        self._emit("clock", dict(self.clock))
        if self.clock[side] > 0:
            return
        winner = opposite(side)
        if self.board.has_insufficient_material(winner):
            self._begin_conclusion("1/2-1/2", "timeout_vs_insufficient_material")
        else:
            self._begin_conclusion(result_for_winner(winner), "time_forfeit")

    async def resign(self) -> str:
        async with self._lock:
            self._require_active()
            result = "0-1" if self.user_color == "white" else "1-0"
            self._begin_conclusion(result, "resignation")
            return result

    async def abandon(self) -> bool:
        """Conclude a game nobody is playing any more; the result stays open."""
        async with self._lock:
            if self.status != SessionStatus.ACTIVE:
                return False
            self._begin_conclusion("*", "abandoned")
            return True

    async def ask(self, question: str) -> MentorReply:
        """Free-form question about the live position."""
        if self.mentor is None or not self.mentor_enabled:
            raise SessionStateError("The mentor is disabled for this game.")
        self.last_activity = time.monotonic()
        evaluation = self.evaluator.latest_evaluation
        fen = self.board.to_fen()
        if evaluation is not None and evaluation.fen != fen:
            evaluation = None
        last = self.moves[-1] if self.moves else None
        context = MentorContext(
            fen=fen,
            move=last.san if last else None,
            best_move=(evaluation.best_move or evaluation.pv_first_move) if evaluation else None,
            evaluation=evaluation.centipawns if evaluation else None,
            time_remaining=self.clock[self.user_color],
            recent_moves=self._recent_moves(),
            user_prompt=question,
        )
        reply = await asyncio.wait_for(self.mentor.request(context), timeout=self.mentor_timeout)
        self._emit("mentor_answer", {"question": question, "answer": reply.text})
        return reply

    async def retry_persistence(self) -> bool:
        if self.status != SessionStatus.CONCLUDING:
            raise SessionStateError(f"Nothing to save while {self.status.value}.")
        if self._conclude_task is not None and not self._conclude_task.done():
            return await asyncio.shield(self._conclude_task)
        return await self._persist()

    async def wait_concluded(self) -> bool:
        """Wait for the save that follows game end; ``True`` once closed."""
        if self._conclude_task is not None:
            await asyncio.shield(self._conclude_task)
        return self.status == SessionStatus.CLOSED

    async def close(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        await asyncio.gather(*(task for task in self._tasks if task is not current), return_exceptions=True)
        if self._events is not None:
            self.evaluator.unsubscribe(self._events)
            self._events = None
        await self.evaluator.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_engine_turn(self) -> bool:
        return self.status == SessionStatus.ACTIVE and self.board.turn != self.user_color

    def legal_destinations(self, square: str) -> list[str]:
        if self.status != SessionStatus.ACTIVE or self.board.turn != self.user_color:
            return []
        return sorted(self.board.legal_destinations(square))

    def to_state(self) -> dict[str, Any]:
        last = self.moves[-1] if self.moves else None
        evaluation = self.evaluator.latest_evaluation
        return {
            "game_id": self.game_id or self.saved_game_id,
            "status": self.status.value,
            "analysis_state": self.analysis_state.value,
            "fen": self.board.to_fen(),
            "turn": self.board.turn,
            "user_color": self.user_color,
            "difficulty_level": self.difficulty_level,
            "mentor_enabled": self.mentor_enabled,
            "time_control": self.time_control,
            "increment_seconds": self.increment_seconds,
            "clock": dict(self.clock),
            "moves": [record.san for record in self.moves],
            "last_move": asdict(last) if last else None,
            "insights": [insight.as_dict() for insight in self.insights],
            "quality_tally": dict(self.quality_tally),
            "result": self.result,
            "termination": self.termination,
            "evaluator_ready": self.evaluator.is_ready,
            "evaluation": evaluation.as_dict() if evaluation and evaluation.fen == self.board.to_fen() else None,
            "persistence_error": self.persistence_error,
        }

    def to_record(self) -> GameRecord:
        white = "You" if self.user_color == "white" else "Aristoteles"
        black = "Aristoteles" if self.user_color == "white" else "You"
        headers = {
            "Event": "Chess Mentor",
            "Site": "Chess Mentor",
            "Date": (self.started_at or datetime.now(timezone.utc)).strftime("%Y.%m.%d"),
            "White": white,
            "Black": black,
            "Result": self.result,
            "TimeControl": self.time_control,
        }
        if self.termination:
            headers["Termination"] = self.termination
        return GameRecord(
            game_id=self.game_id or self.saved_game_id or "",
            player_color=self.user_color,
            result=self.result,
            termination=self.termination,
            pgn=self.board.to_pgn(headers),
            final_fen=self.board.to_fen(),
            clocks=dict(self.clock),
            analysis_summary=dict(self.quality_tally),
            insights=[insight.as_dict() for insight in self.insights],
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_active(self) -> None:
        if self.status != SessionStatus.ACTIVE:
            raise SessionStateError(f"Game is {self.status.value}.")

    def _commit_move(self, move: Any) -> MoveRecord:
        mover = self.board.turn
        self.board, record = self.board.apply(move)
        self.clock[mover] += self.increment_seconds
        self.moves.append(record)
        self._emit(
            "player_move" if mover == self.user_color else "engine_move",
            {
                "uci": record.uci,
                "san": record.san,
                "fen": self.board.to_fen(),
                "clock": dict(self.clock),
            },
        )
        return record

    async def _request_evaluation(self) -> None:
        if self.status != SessionStatus.ACTIVE:
            return
        await self.evaluator.evaluate(self.board.to_fen(), level=self.difficulty_level)

    async def _boot_evaluator(self) -> None:
        if self.evaluator.is_ready:
            await self._request_evaluation()
        elif not self.evaluator.failed:
            # The ready event requests the first evaluation.
            if not await self.evaluator.start():
                self._emit("evaluator_unavailable", {"reason": "engine did not start"})

    async def _run_clock(self) -> None:
        while self.status == SessionStatus.ACTIVE:
            await asyncio.sleep(self.clock_interval)
            self.tick()

    async def _listen(self) -> None:
        assert self._events is not None
        while True:
            event = await self._events.get()
            try:
                await self._handle_event(event)
            except Exception as exc:
                logger.error("Failed to handle evaluator event %s: %s", type(event).__name__, exc)

    async def _handle_event(self, event: EvaluatorEvent) -> None:
        if isinstance(event, EvaluatorReady):
            await self._request_evaluation()
        elif isinstance(event, EvaluatorFailed):
            if self.analysis_state == AnalysisState.AWAITING_EVALUATION:
                self._abandon_analysis()
            self._emit("evaluator_unavailable", {"reason": event.reason})
        elif isinstance(event, EvaluationUpdate):
            snapshot = event.snapshot
            if snapshot.depth >= self._analysis_depth():
                self._on_settled_evaluation(snapshot)
        elif isinstance(event, BestMoveChosen):
            if event.snapshot is not None:
                self._on_settled_evaluation(event.snapshot)
            elif self._pending is not None and self._pending.fen_after == event.fen:
                self._abandon_analysis()
            self._maybe_schedule_engine_move(event)

    def _analysis_depth(self) -> int:
        return min(settings.analysis_min_depth, depth_for_level(self.difficulty_level))

    def _on_settled_evaluation(self, snapshot: EvaluationSnapshot) -> None:
        pending = self._pending
        if pending is None or self.analysis_state != AnalysisState.AWAITING_EVALUATION:
            return
        if snapshot.fen != pending.fen_after:
            return
        # The snapshot is from the opponent's point of view.
        self._resolve_analysis(pending, -snapshot.centipawns)

    def _resolve_analysis(self, pending: _PendingAnalysis, post_score: int) -> None:
        quality = classify(
            pending.pre_score,
            post_score,
            is_checkmating_move=pending.record.is_checkmate,
            matches_engine_best_move=pending.pre_best_move == pending.record.uci,
        )
        self.analysis_state = AnalysisState.AWAITING_COMMENTARY
        self._analysis_task = self._spawn(self._fetch_commentary(pending, quality, post_score))

    async def _fetch_commentary(self, pending: _PendingAnalysis, quality: MoveQuality, post_score: int) -> None:
        assert self.mentor is not None
        context = MentorContext(
            fen=pending.fen_after,
            move=pending.record.san,
            quality=quality,
            best_move=pending.pre_best_move,
            evaluation=post_score,
            time_remaining=pending.mover_clock,
            recent_moves=self._recent_moves(),
        )
        try:
            reply = await asyncio.wait_for(self.mentor.request(context), timeout=self.mentor_timeout)
            self._record_insight(pending, quality, post_score, reply)
        except StalePositionResult:
            logger.debug("Discarding commentary for move %s", pending.move_number)
        except (MentorServiceError, asyncio.TimeoutError) as exc:
            logger.warning("Mentor commentary for move %s failed: %s", pending.move_number, exc)
            self._emit("commentary_failed", {"move_number": pending.move_number})
        finally:
            if self._pending is pending:
                self._pending = None
                self.analysis_state = AnalysisState.IDLE

    def _record_insight(
        self,
        pending: _PendingAnalysis,
        quality: MoveQuality,
        post_score: int,
        reply: MentorReply,
    ) -> None:
        if self._pending is not pending:
            raise StalePositionResult(pending.fen_after)
        if self.insights and self.insights[-1].move_number >= pending.move_number:
            raise StalePositionResult(pending.fen_after)
        insight = Insight(
            move_number=pending.move_number,
            move=pending.record.san,
            uci=pending.record.uci,
            quality=quality,
            commentary=reply.text,
            fen=pending.fen_after,
            evaluation=post_score,
            mentor_quality=reply.quality,
            mentor_quality_source=reply.quality_source,
        )
        self.insights.append(insight)
        self.quality_tally[quality.value] += 1
        self._emit("insight", insight.as_dict())

    def _abandon_analysis(self) -> None:
        self._pending = None
        self.analysis_state = AnalysisState.IDLE

    def _recent_moves(self) -> tuple[str, ...]:
        tail = self.insights[-settings.mentor_recent_moves :]
        return tuple(f"{insight.move} ({insight.quality.value})" for insight in tail)

    def _maybe_schedule_engine_move(self, event: BestMoveChosen) -> None:
        if not self.is_engine_turn or not event.move:
            return
        if event.fen != self.board.to_fen():
            return
        ply = self.board.ply
        if self._engine_move_ply == ply:
            return
        self._engine_move_ply = ply
        low, high = self.engine_delay
        delay = self.rng.uniform(max(0.0, low), max(low, high))
        self._engine_move_task = self._spawn(self._delayed_engine_move(event.fen, event.move, delay))

    async def _delayed_engine_move(self, fen: str, uci: str, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.apply_engine_move(uci, expected_fen=fen)

    def _begin_conclusion(self, result: str, termination: str) -> None:
        self.status = SessionStatus.CONCLUDING
        self.result = result
        self.termination = termination
        if self.analysis_state == AnalysisState.AWAITING_EVALUATION:
            self._abandon_analysis()
        current = asyncio.current_task()
        if self._engine_move_task is not None and self._engine_move_task is not current:
            self._engine_move_task.cancel()
        self._emit("game_over", {"result": result, "termination": termination, "fen": self.board.to_fen()})
        self._conclude_task = self._spawn(self._conclude())

    async def _conclude(self) -> bool:
        task = self._analysis_task
        if task is not None and not task.done():
            await asyncio.wait({task}, timeout=self.mentor_timeout)
        return await self._persist()

    async def _persist(self) -> bool:
        record = self.to_record()
        try:
            await asyncio.to_thread(self.gateway.save, record)
        except PersistenceError as exc:
            self.persistence_error = str(exc)
            logger.error("Saving game %s failed: %s", record.game_id, exc)
            self._emit("persistence_failed", {"error": str(exc)})
            return False
        self.persistence_error = None
        self.status = SessionStatus.CLOSED
        self._emit("game_saved", {"result": self.result, "analysis_summary": record.analysis_summary})
        self.saved_game_id, self.game_id = self.game_id, None
        # The engine process is not needed once the game is stored.
        await self.evaluator.close()
        self._release()
        if self.on_closed is not None:
            self.on_closed(self)
        return True

    def _release(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        if self._events is not None:
            self.evaluator.unsubscribe(self._events)
            self._events = None

    def _emit(self, event_type: str, payload: dict) -> None:
        game_id = self.game_id or self.saved_game_id
        if self.notify is None or game_id is None:
            return
        try:
            self.notify(game_id, event_type, payload)
        except Exception as exc:
            logger.warning("Notifier failed for %s: %s", event_type, exc)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session task failed: %s", exc, exc_info=exc)
