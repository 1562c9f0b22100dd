"""Analytics endpoints for recorded session events."""

from __future__ import annotations

import asyncio
from collections import Counter

from fastapi import APIRouter, HTTPException, Path

from ..database import SessionLocal
from ..models import GameModel, SessionEventModel
from ..schemas import SessionEvent, SessionEventResponse, SessionEventSummary
from ..streaming import publisher

router = APIRouter(prefix="/analytics", tags=["analytics"])


def _load_events(game_id: str) -> list[SessionEvent]:
    with SessionLocal() as db:
        game = db.get(GameModel, game_id)
        if not game:
            raise KeyError(game_id)
        events = (
            db.query(SessionEventModel)
            .filter(SessionEventModel.game_id == game_id)
            .order_by(SessionEventModel.created_at.asc(), SessionEventModel.id.asc())
            .all()
        )
        return [
            SessionEvent(
                id=event.id,
                game_id=event.game_id,
                event_type=event.event_type,
                payload=event.payload,
                created_at=event.created_at,
            )
            for event in events
        ]


@router.get("/games/{game_id}/events", response_model=SessionEventResponse)
async def get_game_events(game_id: str = Path(..., description="Game identifier")) -> SessionEventResponse:
    await publisher.settle(game_id)
    try:
        event_items = await asyncio.to_thread(_load_events, game_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Game not found") from None

    counts = Counter(event.event_type for event in event_items)
    summary = SessionEventSummary(
        total_events=len(event_items),
        counts_by_type=dict(counts),
        last_event_at=event_items[-1].created_at if event_items else None,
    )
    return SessionEventResponse(game_id=game_id, events=event_items, summary=summary)
