"""Game lifecycle endpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import Union

from fastapi import APIRouter, HTTPException, Path, Query
from fastapi.responses import Response

from ..errors import (
    ChessMentorError,
    EvaluatorUnavailableError,
    IllegalMoveError,
    MentorServiceError,
    PersistenceError,
    SessionStateError,
)
from ..registry import registry
from ..schemas import (
    AskRequest,
    AskResponse,
    GameCreateRequest,
    GameState,
    LegalMovesResponse,
    MovePlayed,
    MoveRequest,
    MoveResponse,
    SavedGame,
)
from ..session import GameSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/games", tags=["games"])


def _http_error(exc: ChessMentorError) -> HTTPException:
    if isinstance(exc, IllegalMoveError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, SessionStateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, MentorServiceError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, (EvaluatorUnavailableError, PersistenceError)):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


async def _live_session(game_id: str) -> GameSession:
    try:
        return registry.get(game_id)
    except KeyError:
        pass
    try:
        await asyncio.to_thread(registry.games.get_game, game_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Game not found") from None
    raise HTTPException(status_code=409, detail="Game is already finished")


def _state(session: GameSession) -> GameState:
    return GameState.model_validate(session.to_state())


@router.post("", response_model=GameState, status_code=201)
async def create_game(payload: GameCreateRequest) -> GameState:
    try:
        session = await registry.open(
            color=payload.color,
            time_control=payload.time_control,
            difficulty_level=payload.difficulty_level,
            mentor_enabled=payload.mentor_enabled,
            initial_time_seconds=payload.initial_time_seconds,
        )
    except ChessMentorError as exc:
        raise _http_error(exc) from exc
    return _state(session)


@router.get("/{game_id}", response_model=Union[GameState, SavedGame])
async def get_game(game_id: str = Path(..., description="Game identifier")) -> Union[GameState, SavedGame]:
    try:
        return _state(registry.get(game_id))
    except KeyError:
        pass
    try:
        saved = await asyncio.to_thread(registry.games.get_game, game_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Game not found") from None
    return SavedGame.model_validate(saved)


@router.post("/{game_id}/moves", response_model=MoveResponse)
async def make_move(
    payload: MoveRequest,
    game_id: str = Path(..., description="Game identifier"),
) -> MoveResponse:
    session = await _live_session(game_id)
    try:
        record = await session.apply_human_move(payload.from_square, payload.to_square, payload.promotion)
    except ChessMentorError as exc:
        raise _http_error(exc) from exc
    return MoveResponse(move=MovePlayed.model_validate(record, from_attributes=True), state=_state(session))


@router.get("/{game_id}/legal-moves", response_model=LegalMovesResponse)
async def legal_moves(
    game_id: str = Path(..., description="Game identifier"),
    square: str = Query(..., min_length=2, max_length=2),
) -> LegalMovesResponse:
    session = await _live_session(game_id)
    return LegalMovesResponse(square=square, destinations=session.legal_destinations(square))


@router.post("/{game_id}/resign", response_model=GameState)
async def resign(game_id: str = Path(..., description="Game identifier")) -> GameState:
    session = await _live_session(game_id)
    try:
        await session.resign()
    except ChessMentorError as exc:
        raise _http_error(exc) from exc
    await session.wait_concluded()
    return _state(session)


@router.post("/{game_id}/save", response_model=GameState)
async def retry_save(game_id: str = Path(..., description="Game identifier")) -> GameState:
    session = await _live_session(game_id)
    try:
        saved = await session.retry_persistence()
    except ChessMentorError as exc:
        raise _http_error(exc) from exc
    if not saved:
        raise HTTPException(status_code=503, detail=session.persistence_error or "Save failed")
    return _state(session)


@router.post("/{game_id}/ask", response_model=AskResponse)
async def ask_mentor(
    payload: AskRequest,
    game_id: str = Path(..., description="Game identifier"),
) -> AskResponse:
    session = await _live_session(game_id)
    try:
        reply = await session.ask(payload.question)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="The mentor did not answer in time.") from None
    except ChessMentorError as exc:
        raise _http_error(exc) from exc
    return AskResponse(answer=reply.text, quality=reply.quality.value, model=reply.model)


@router.get("/{game_id}/pgn")
async def export_pgn(game_id: str = Path(..., description="Game identifier")) -> Response:
    try:
        pgn = registry.get(game_id).to_record().pgn
    except KeyError:
        try:
            pgn = (await asyncio.to_thread(registry.games.get_game, game_id))["pgn"]
        except KeyError:
            raise HTTPException(status_code=404, detail="Game not found") from None
    headers = {"Content-Disposition": f'attachment; filename="{game_id}.pgn"'}
    return Response(content=pgn, media_type="application/x-chess-pgn", headers=headers)
