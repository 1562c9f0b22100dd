"""Entry point for the Chess Mentor API service."""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import analytics, games, lab, stream
from .config import settings
from .database import init_db
from .registry import registry
from .streaming import publisher

if hasattr(asyncio, "WindowsProactorEventLoopPolicy"):
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.project_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(games.router, prefix=settings.api_prefix)
app.include_router(lab.router, prefix=settings.api_prefix)
app.include_router(analytics.router, prefix=settings.api_prefix)
app.include_router(stream.router)


@app.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.on_event("startup")
async def _startup() -> None:
    init_db()
    registry.start_sweeper()
    logger.info("Chess Mentor API ready (stockfish at %s)", settings.stockfish_path)


@app.on_event("shutdown")
async def _shutdown() -> None:
    await registry.close_all()
    await publisher.settle_all()
