"""Mentor commentary requests against an OpenAI-compatible chat service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

import chess
import httpx

from .briefing import position_briefing
from .config import settings
from .errors import MentorServiceError, UnsupportedModelError
from .quality import MoveQuality

logger = logging.getLogger(__name__)

CRITICAL_TIME_SECONDS = 60
MODERATE_TIME_SECONDS = 180

SYSTEM_PROMPT = """You are Aristoteles, a philosophical chess mentor with Socratic irony.

Personality:
- Wise but irreverent.
- Educational irony, never cruelty.
- You put a move in the context of the whole struggle, not just the move itself.
- A thinking partner, not a cold judge.

Layers of analysis, in priority order:
1. Time: under 60 seconds the clock is merciless, be understanding but still ironic;
   under 180 seconds quick decisions are needed; with lots of time left, expect more.
2. Momentum (last 3-5 moves): a string of errors calls for subtle encouragement;
   a good move after errors deserves recognition; consistency deserves respect.
3. Positional tension from the FEN: contested center, exposed king, fragile pawns,
   material advantage.
4. Tactical quality of the move:
   - Blunder: heavy irony plus one precise lesson.
   - Mistake: light provocation plus a subtle hint.
   - Good: reluctant recognition.
   - Best: genuine admiration (rare).

Feedback format: at most 2 sentences.
[Comment on time or momentum] + [specific tactical or positional point].
Never give generic feedback, never lecture, never demoralize."""

QUALITY_KEYWORDS: list[tuple[MoveQuality, tuple[str, ...]]] = [
    (
        MoveQuality.BLUNDER,
        ("blunder", "disaster", "catastroph", "gave away", "gift", "hung", "suicide", "throws away"),
    ),
    (
        MoveQuality.MISTAKE,
        ("mistake", "imprecise", "inaccura", "could be better", "dubious", "slip", "careless"),
    ),
    (
        MoveQuality.BEST,
        ("brilliant", "excellent", "masterful", "magnificent", "superb", "perfect", "best move"),
    ),
]

QualitySource = Literal["structured", "heuristic"]


@dataclass(frozen=True)
class MentorContext:
    fen: str
    move: str | None = None
    quality: MoveQuality | None = None
    best_move: str | None = None
    evaluation: int | None = None
    time_remaining: int | None = None
    recent_moves: tuple[str, ...] = ()
    user_prompt: str | None = None


@dataclass(frozen=True)
class MentorReply:
    text: str
    quality: MoveQuality
    quality_source: QualitySource
    model: str


def has_negative_momentum(recent_moves: tuple[str, ...] | list[str]) -> bool:
    return any("mistake" in entry.lower() or "blunder" in entry.lower() for entry in recent_moves)


def _format_clock(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes}:{secs:02d}"


def build_user_prompt(context: MentorContext) -> str:
    parts: list[str] = []

    if context.time_remaining is not None:
        parts.append(f"Time remaining: {_format_clock(context.time_remaining)}")
        if context.time_remaining < CRITICAL_TIME_SECONDS:
            parts.append("CRITICAL TIME PRESSURE - be understanding but ironic.")
        elif context.time_remaining < MODERATE_TIME_SECONDS:
            parts.append("Moderate time pressure - quick decisions are needed.")

    if context.recent_moves:
        parts.append(f"Recent moves: {', '.join(context.recent_moves)}")
        if has_negative_momentum(context.recent_moves):
            parts.append("NEGATIVE MOMENTUM detected - consider subtle encouragement.")

    parts.append(f"Position FEN: {context.fen}")
    mover = None
    if context.move:
        # The FEN is the position after the move, so the mover is the side not to move.
        mover = not chess.Board(context.fen).turn
    notes = position_briefing(context.fen, mover)
    if notes:
        parts.append("Position notes: " + " ".join(notes))

    if context.move:
        parts.append(f"Move played: {context.move}")
    if context.quality:
        parts.append(f"Move quality: {context.quality.value}")
    if context.best_move:
        parts.append(f"Engine's suggested best move: {context.best_move}")
    if context.evaluation is not None:
        sign = "+" if context.evaluation > 0 else ""
        parts.append(f"Evaluation: {sign}{context.evaluation}")

    if context.user_prompt:
        parts.append(f"\nSpecific question: {context.user_prompt}")

    parts.append("\nAnswer in at most 2 sentences, prioritising time pressure and momentum.")
    return "\n".join(parts)


def infer_quality_from_text(text: str) -> MoveQuality:
    """Approximate label from free text; a last resort, not an evaluation."""
    lowered = text.lower()
    for quality, keywords in QUALITY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return quality
    return MoveQuality.GOOD


def _first_message(data: dict[str, Any]) -> dict[str, Any]:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    message = choices[0].get("message")
    return message if isinstance(message, dict) else {}


def _structured_quality(data: dict[str, Any]) -> MoveQuality | None:
    candidates: list[Any] = [data.get("quality"), _first_message(data).get("quality")]
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        for quality in MoveQuality:
            if candidate.strip().lower() == quality.value.lower():
                return quality
    return None


def _extract_text(data: dict[str, Any]) -> str | None:
    content = _first_message(data).get("content")
    if isinstance(content, str) and content.strip():
        return content.strip()
    for key in ("response", "summary", "content", "message"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return response.reason_phrase


def _is_unsupported_model(status_code: int, message: str) -> bool:
    lowered = message.lower()
    return status_code in (400, 404) and ("model" in lowered or "not supported" in lowered)


class MentorClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        fallback_model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._http_client = http_client
        self.url = url or settings.mentor_llm_url
        self.api_key = api_key if api_key is not None else settings.mentor_llm_api_key
        self.model = model or settings.mentor_llm_model
        self.fallback_model = fallback_model or settings.mentor_fallback_model
        self.timeout = timeout if timeout is not None else settings.mentor_timeout_seconds

    async def request(self, context: MentorContext) -> MentorReply:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(context)},
        ]
        model = self.model
        try:
            data = await self._call(model, messages)
        except UnsupportedModelError as exc:
            if model == self.fallback_model:
                raise
            logger.warning("Model %s failed (%s), retrying with %s", model, exc, self.fallback_model)
            model = self.fallback_model
            data = await self._call(model, messages)

        text = _extract_text(data)
        if not text:
            raise MentorServiceError("Mentor response carried no text.")
        structured = _structured_quality(data)
        if structured is not None:
            return MentorReply(text=text, quality=structured, quality_source="structured", model=model)
        return MentorReply(text=text, quality=infer_quality_from_text(text), quality_source="heuristic", model=model)

    async def _call(self, model: str, messages: list[dict[str, str]]) -> dict[str, Any]:
        payload = {
            "model": model,
            "messages": messages,
            "temperature": settings.mentor_temperature,
            "max_tokens": settings.mentor_max_tokens,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            if self._http_client is not None:
                response = await self._http_client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise MentorServiceError(f"Mentor request failed: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            if _is_unsupported_model(response.status_code, message):
                raise UnsupportedModelError(model, message, response.status_code)
            raise MentorServiceError(message, response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise MentorServiceError("Mentor response was not JSON.", response.status_code) from exc
        if not isinstance(data, dict):
            raise MentorServiceError("Mentor response had an unexpected shape.", response.status_code)
        return data
