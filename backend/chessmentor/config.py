"""Application configuration via environment variables."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]


def _default_stockfish_path() -> str:
    path = BASE_DIR / "bin" / ("stockfish.exe" if os.name == "nt" else "stockfish")
    return str(path.resolve())


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHESSMENTOR_")

    api_prefix: str = "/api/v1"
    project_name: str = "Chess Mentor API"
    allow_origins: list[str] = ["http://localhost:5173"]
    database_url: str = "sqlite:///../chessmentor.db"
    log_level: str = "INFO"

    stockfish_path: str = _default_stockfish_path()
    evaluator_ready_timeout: float = 10.0
    analysis_min_depth: int = 10
    engine_move_delay_min: float = 2.5
    engine_move_delay_max: float = 4.5

    mentor_llm_url: str = "https://api.openai.com/v1/chat/completions"
    mentor_llm_api_key: str | None = None
    mentor_llm_model: str = "gpt-4o"
    # Retried once when the service rejects mentor_llm_model.
    mentor_fallback_model: str = "gpt-4o-mini"
    mentor_temperature: float = 0.7
    mentor_max_tokens: int = 1000
    mentor_timeout_seconds: float = 20.0
    mentor_recent_moves: int = 5

    session_idle_seconds: float = 1800.0
    session_sweep_interval: float = 60.0


settings = Settings()
