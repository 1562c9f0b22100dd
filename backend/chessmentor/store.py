"""Persistent game repository backed by SQLAlchemy."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import SessionLocal
from .errors import PersistenceError
from .models import GameModel

ERROR_QUALITIES = ("Blunder", "Mistake")


@dataclass(frozen=True)
class GameRecord:
    """Snapshot written when a game concludes."""

    game_id: str
    player_color: str
    result: str
    termination: str | None
    pgn: str
    final_fen: str
    clocks: Dict[str, int]
    analysis_summary: Dict[str, int]
    insights: List[Dict[str, Any]] = field(default_factory=list)


class GameRepository:
    def __init__(self, session_factory: sessionmaker[Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def create_game(
        self,
        *,
        player_color: str,
        time_control: str,
        initial_time_seconds: int,
        increment_seconds: int,
        difficulty_level: int,
        mentor_enabled: bool,
        game_id: str | None = None,
    ) -> str:
        game_id = game_id or f"game_{uuid4().hex}"
        now = datetime.now(timezone.utc)
        try:
            with self._session_factory() as db:
                db.add(
                    GameModel(
                        game_id=game_id,
                        player_color=player_color,
                        status="active",
                        result="*",
                        time_control=time_control,
                        initial_time_seconds=initial_time_seconds,
                        increment_seconds=increment_seconds,
                        difficulty_level=difficulty_level,
                        mentor_enabled=mentor_enabled,
                        pgn="",
                        created_at=now,
                        updated_at=now,
                    )
                )
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not create game {game_id}: {exc}") from exc
        return game_id

    def save(self, record: GameRecord) -> None:
        try:
            with self._session_factory() as db:
                model = db.get(GameModel, record.game_id)
                if model is None:
                    model = GameModel(game_id=record.game_id, created_at=datetime.now(timezone.utc))
                    db.add(model)
                model.player_color = record.player_color
                model.status = "completed"
                model.result = record.result
                model.termination = record.termination
                model.pgn = record.pgn
                model.final_fen = record.final_fen
                model.clock_white = record.clocks.get("white")
                model.clock_black = record.clocks.get("black")
                model.analysis_summary = dict(record.analysis_summary)
                model.insights = list(record.insights)
                model.updated_at = datetime.now(timezone.utc)
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not save game {record.game_id}: {exc}") from exc

    def get_game(self, game_id: str) -> Dict[str, Any]:
        with self._session_factory() as db:
            model = db.get(GameModel, game_id)
            if not model:
                raise KeyError(game_id)
            return model.as_dict()

    def list_mistakes(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Blunders and mistakes from the most recent finished games."""
        with self._session_factory() as db:
            games = db.scalars(
                select(GameModel)
                .where(GameModel.insights.is_not(None))
                .order_by(GameModel.created_at.desc())
                .limit(limit)
            ).all()
            errors: List[Dict[str, Any]] = []
            for game in games:
                for insight in game.insights or []:
                    if insight.get("quality") in ERROR_QUALITIES:
                        errors.append({**insight, "game_id": game.game_id, "game_date": game.created_at})
        return errors


repository = GameRepository()
