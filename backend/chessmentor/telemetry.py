"""Event logging helpers."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from .database import SessionLocal
from .models import SessionEventModel

logger = logging.getLogger(__name__)


def log_event(game_id: str, event_type: str, payload: dict) -> None:
    logger.info("game=%s event=%s", game_id, event_type)
    try:
        with SessionLocal() as db:
            db.add(SessionEventModel(game_id=game_id, event_type=event_type, payload=payload))
            db.commit()
    except SQLAlchemyError:
        logger.warning("Could not record %s event for %s", event_type, game_id, exc_info=True)
