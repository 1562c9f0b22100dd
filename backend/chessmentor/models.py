"""SQLAlchemy models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GameModel(Base):
    __tablename__ = "games"

    game_id = Column(String, primary_key=True)
    player_color = Column(String, nullable=False)
    status = Column(String, default="active", nullable=False)
    result = Column(String, default="*", nullable=False)
    termination = Column(String, nullable=True)
    time_control = Column(String, nullable=False, default="10|0")
    initial_time_seconds = Column(Integer, nullable=False, default=600)
    increment_seconds = Column(Integer, nullable=False, default=0)
    difficulty_level = Column(Integer, nullable=False, default=3)
    mentor_enabled = Column(Boolean, nullable=False, default=True)
    pgn = Column(Text, nullable=False, default="")
    final_fen = Column(String, nullable=True)
    clock_white = Column(Integer, nullable=True)
    clock_black = Column(Integer, nullable=True)
    analysis_summary = Column(JSON, nullable=True)
    insights = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.game_id,
            "player_color": self.player_color,
            "status": self.status,
            "result": self.result,
            "termination": self.termination,
            "time_control": self.time_control,
            "initial_time_seconds": self.initial_time_seconds,
            "increment_seconds": self.increment_seconds,
            "difficulty_level": self.difficulty_level,
            "mentor_enabled": self.mentor_enabled,
            "pgn": self.pgn,
            "final_fen": self.final_fen,
            "clocks": {"white": self.clock_white, "black": self.clock_black},
            "analysis_summary": self.analysis_summary,
            "insights": list(self.insights or []),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class SessionEventModel(Base):
    __tablename__ = "session_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String, index=True, nullable=False)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
