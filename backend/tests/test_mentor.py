import asyncio
import json

import chess
import httpx
import pytest

from chessmentor.briefing import material_balance, position_briefing
from chessmentor.errors import MentorServiceError, UnsupportedModelError
from chessmentor.mentor import (
    MentorClient,
    MentorContext,
    build_user_prompt,
    has_negative_momentum,
    infer_quality_from_text,
)
from chessmentor.quality import MoveQuality
from fakes import fen_after

AFTER_E4 = fen_after("e2e4")


def _client(handler, **kwargs):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("url", "https://llm.test/v1/chat/completions")
    kwargs.setdefault("api_key", "sk-test")
    kwargs.setdefault("model", "primary-model")
    kwargs.setdefault("fallback_model", "fallback-model")
    return MentorClient(http_client, **kwargs)


def _chat(content, **extra):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}], **extra})


def test_prompt_orders_time_momentum_then_position():
    context = MentorContext(
        fen=AFTER_E4,
        move="e4",
        quality=MoveQuality.GOOD,
        best_move="d2d4",
        evaluation=25,
        time_remaining=45,
        recent_moves=("Nf3 (Good)", "Qh5 (Blunder)"),
    )
    prompt = build_user_prompt(context)
    assert prompt.index("Time remaining: 0:45") < prompt.index("Recent moves") < prompt.index("Position FEN")
    assert "CRITICAL TIME PRESSURE" in prompt
    assert "NEGATIVE MOMENTUM" in prompt
    assert "Move played: e4" in prompt
    assert "Move quality: Good" in prompt
    assert "Engine's suggested best move: d2d4" in prompt
    assert "Evaluation: +25" in prompt
    assert prompt.rstrip().endswith("prioritising time pressure and momentum.")


def test_prompt_moderate_time_and_question():
    prompt = build_user_prompt(MentorContext(fen=AFTER_E4, time_remaining=150, user_prompt="Should I castle?"))
    assert "Moderate time pressure" in prompt
    assert "Specific question: Should I castle?" in prompt
    assert "Move played" not in prompt


def test_momentum_detection():
    assert has_negative_momentum(["e4 (Good)", "Qh5 (Mistake)"])
    assert not has_negative_momentum(["e4 (Good)", "Nf3 (Best)"])


def test_keyword_quality_inference():
    assert infer_quality_from_text("A blunder worthy of a tragedy.") == MoveQuality.BLUNDER
    assert infer_quality_from_text("Slightly imprecise, my friend.") == MoveQuality.MISTAKE
    assert infer_quality_from_text("Brilliant, Socrates would blush.") == MoveQuality.BEST
    assert infer_quality_from_text("The knight develops.") == MoveQuality.GOOD


def test_request_sends_chat_payload():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        return _chat("Courage precedes wisdom; your pawn claims the center.")

    reply = asyncio.run(_client(handler).request(MentorContext(fen=AFTER_E4, move="e4", quality=MoveQuality.GOOD)))
    assert reply.text.startswith("Courage")
    assert reply.quality == MoveQuality.GOOD
    assert reply.quality_source == "heuristic"
    assert reply.model == "primary-model"
    body = seen["body"]
    assert body["model"] == "primary-model"
    assert [message["role"] for message in body["messages"]] == ["system", "user"]
    assert "Aristoteles" in body["messages"][0]["content"]
    assert "max_tokens" in body and "temperature" in body
    assert seen["auth"] == "Bearer sk-test"


def test_structured_quality_wins_over_keywords():
    def handler(request):
        return _chat("What a blunder... of your opponent.", quality="best")

    reply = asyncio.run(_client(handler).request(MentorContext(fen=AFTER_E4)))
    assert reply.quality == MoveQuality.BEST
    assert reply.quality_source == "structured"


def test_alternative_response_shape():
    def handler(request):
        return httpx.Response(200, json={"response": "  A careless slip.  "})

    reply = asyncio.run(_client(handler).request(MentorContext(fen=AFTER_E4)))
    assert reply.text == "A careless slip."
    assert reply.quality == MoveQuality.MISTAKE


def test_unsupported_model_falls_back_once():
    models = []

    def handler(request):
        model = json.loads(request.content)["model"]
        models.append(model)
        if model == "primary-model":
            return httpx.Response(404, json={"error": {"message": "The model `primary-model` does not exist"}})
        return _chat("Fine.")

    reply = asyncio.run(_client(handler).request(MentorContext(fen=AFTER_E4)))
    assert models == ["primary-model", "fallback-model"]
    assert reply.model == "fallback-model"


def test_fallback_failure_is_not_retried_again():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"error": {"message": "model not supported"}})

    with pytest.raises(UnsupportedModelError):
        asyncio.run(_client(handler).request(MentorContext(fen=AFTER_E4)))
    assert len(calls) == 2


def test_server_error_raises_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "upstream exploded"})

    with pytest.raises(MentorServiceError) as info:
        asyncio.run(_client(handler).request(MentorContext(fen=AFTER_E4)))
    assert info.value.status_code == 500
    assert len(calls) == 1


def test_transport_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(MentorServiceError):
        asyncio.run(_client(handler).request(MentorContext(fen=AFTER_E4)))


def test_empty_reply_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"choices": [{"message": {"content": ""}}]})

    with pytest.raises(MentorServiceError):
        asyncio.run(_client(handler).request(MentorContext(fen=AFTER_E4)))


def test_malformed_choices_raise_mentor_error():
    def handler(request):
        return httpx.Response(200, json={"choices": ["not a message"]})

    with pytest.raises(MentorServiceError):
        asyncio.run(_client(handler).request(MentorContext(fen=AFTER_E4)))


def test_default_fallback_differs_from_primary_model():
    client = MentorClient()
    assert client.fallback_model == "gpt-4o-mini"
    assert client.model != client.fallback_model


def test_position_briefing():
    board = chess.Board()
    assert material_balance(board) == 0
    assert "Material is level." in position_briefing(chess.STARTING_FEN)
    up_a_queen = "rnb1kbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"
    assert any("White is up roughly 9 pawns" in note for note in position_briefing(up_a_queen))
