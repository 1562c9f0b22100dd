"""Pydantic schemas for the Chess Mentor API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

Color = Literal["white", "black"]
Quality = Literal["Best", "Good", "Mistake", "Blunder"]


class GameCreateRequest(BaseModel):
    color: Literal["white", "black", "auto"] = "white"
    time_control: str = Field("10|0", pattern=r"^\d+(\.\d+)?(\|\d+)?$")
    initial_time_seconds: Optional[int] = Field(None, ge=1)
    difficulty_level: int = Field(3, ge=1, le=4)
    mentor_enabled: bool = True


class MoveRequest(BaseModel):
    from_square: str = Field(..., min_length=2, max_length=2)
    to_square: str = Field(..., min_length=2, max_length=2)
    promotion: Optional[Literal["q", "r", "b", "n"]] = None


class MovePlayed(BaseModel):
    uci: str
    san: str
    color: Color
    from_square: str
    to_square: str
    promotion: Optional[str] = None
    is_checkmate: bool = False


class EvaluationState(BaseModel):
    fen: str
    depth: int
    score_cp: Optional[int] = None
    mate: Optional[int] = None
    centipawns: int
    pv: list[str] = []
    best_move: Optional[str] = None


class InsightResponse(BaseModel):
    move_number: int
    move: str
    uci: str
    quality: Quality
    commentary: str
    fen: str
    evaluation: int
    quality_source: str = "engine"
    mentor_quality: Optional[Quality] = None
    mentor_quality_source: Optional[str] = None


class ClockState(BaseModel):
    white: int
    black: int


class GameState(BaseModel):
    game_id: Optional[str] = None
    status: Literal["pending", "active", "concluding", "closed"]
    analysis_state: Literal["idle", "awaiting_evaluation", "awaiting_commentary"]
    fen: str
    turn: Color
    user_color: Color
    difficulty_level: int
    mentor_enabled: bool
    time_control: str
    increment_seconds: int
    clock: ClockState
    moves: list[str]
    last_move: Optional[MovePlayed] = None
    insights: list[InsightResponse]
    quality_tally: dict[str, int]
    result: str
    termination: Optional[str] = None
    evaluator_ready: bool
    evaluation: Optional[EvaluationState] = None
    persistence_error: Optional[str] = None


class MoveResponse(BaseModel):
    move: MovePlayed
    state: GameState


class LegalMovesResponse(BaseModel):
    square: str
    destinations: list[str]


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=500)


class AskResponse(BaseModel):
    answer: str
    quality: Optional[Quality] = None
    model: str


class SavedGame(BaseModel):
    game_id: str
    player_color: Color
    status: str
    result: str
    termination: Optional[str] = None
    time_control: str
    difficulty_level: int
    mentor_enabled: bool
    pgn: str
    final_fen: Optional[str] = None
    analysis_summary: Optional[dict[str, int]] = None
    insights: list[InsightResponse] = []
    created_at: datetime
    updated_at: datetime


class LabMistake(BaseModel):
    game_id: str
    game_date: datetime
    move_number: int
    move: str
    uci: Optional[str] = None
    quality: Quality
    commentary: str
    fen: str
    evaluation: int


class LabResponse(BaseModel):
    mistakes: list[LabMistake]


class LabHintRequest(BaseModel):
    fen: str = Field(..., min_length=1, max_length=100)
    reveal: bool = False


class LabHintResponse(BaseModel):
    text: str
    reveal: bool
    model: str


class SessionEvent(BaseModel):
    id: int
    game_id: str
    event_type: str
    payload: dict[str, Any]
    created_at: datetime


class SessionEventSummary(BaseModel):
    total_events: int
    counts_by_type: dict[str, int]
    last_event_at: Optional[datetime] = None


class SessionEventResponse(BaseModel):
    game_id: str
    events: list[SessionEvent]
    summary: SessionEventSummary
