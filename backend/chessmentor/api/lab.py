"""Review of past mistakes across saved games."""

from __future__ import annotations

import asyncio

import chess
from fastapi import APIRouter, Depends, HTTPException, Query

from ..errors import MentorServiceError
from ..mentor import MentorClient, MentorContext
from ..registry import registry
from ..schemas import LabHintRequest, LabHintResponse, LabMistake, LabResponse

router = APIRouter(prefix="/lab", tags=["lab"])

HINT_PROMPT = (
    "Give a subtle, ironic hint about the best move in this position without "
    "revealing the full answer. Be brief and stay in character."
)
SOLUTION_PROMPT = "What is the best move in this position? Explain briefly why it is superior."


def get_mentor() -> MentorClient:
    return MentorClient()


@router.get("/mistakes", response_model=LabResponse)
async def list_mistakes(limit: int = Query(50, ge=1, le=500)) -> LabResponse:
    entries = await asyncio.to_thread(registry.games.list_mistakes, limit)
    return LabResponse(mistakes=[LabMistake.model_validate(entry) for entry in entries])


@router.post("/hint", response_model=LabHintResponse)
async def position_hint(payload: LabHintRequest, mentor: MentorClient = Depends(get_mentor)) -> LabHintResponse:
    """Ask the mentor for a hint, or the full solution, on a stored position."""
    try:
        chess.Board(payload.fen)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid FEN") from None
    context = MentorContext(fen=payload.fen, user_prompt=SOLUTION_PROMPT if payload.reveal else HINT_PROMPT)
    try:
        reply = await mentor.request(context)
    except MentorServiceError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return LabHintResponse(text=reply.text, reveal=payload.reveal, model=reply.model)
