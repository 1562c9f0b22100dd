import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from chessmentor.errors import PersistenceError
from chessmentor.store import GameRecord, GameRepository


def _record(game_id, insights, result="0-1"):
    return GameRecord(
        game_id=game_id,
        player_color="white",
        result=result,
        termination="resignation",
        pgn='[Event "Chess Mentor"]\n\n1. e4 e5 0-1',
        final_fen="rnbqkbnr/pppp1ppp/8/4p3/4P3/8/PPPP1PPP/RNBQKBNR w KQkq - 0 2",
        clocks={"white": 590, "black": 598},
        analysis_summary={"Best": 0, "Good": 1, "Mistake": 0, "Blunder": 1},
        insights=insights,
    )


def _insight(move_number, move, quality):
    return {
        "move_number": move_number,
        "move": move,
        "uci": "d1h5",
        "quality": quality,
        "commentary": "Hmm.",
        "fen": "8/8/8/8/8/8/8/8 w - - 0 1",
        "evaluation": -150,
    }


def test_create_then_save_round_trip(repository):
    game_id = repository.create_game(
        player_color="white",
        time_control="10|0",
        initial_time_seconds=600,
        increment_seconds=0,
        difficulty_level=3,
        mentor_enabled=True,
    )
    assert game_id.startswith("game_")
    created = repository.get_game(game_id)
    assert created["result"] == "*"
    assert created["status"] == "active"

    repository.save(_record(game_id, [_insight(1, "e4", "Good"), _insight(3, "Qh5", "Blunder")]))
    saved = repository.get_game(game_id)
    assert saved["status"] == "completed"
    assert saved["result"] == "0-1"
    assert saved["termination"] == "resignation"
    assert saved["clocks"] == {"white": 590, "black": 598}
    assert saved["analysis_summary"]["Blunder"] == 1
    assert [entry["move"] for entry in saved["insights"]] == ["e4", "Qh5"]
    assert saved["pgn"].startswith('[Event "Chess Mentor"]')


def test_save_without_create_inserts(repository):
    repository.save(_record("game_orphan", []))
    assert repository.get_game("game_orphan")["player_color"] == "white"


def test_unknown_game_raises_key_error(repository):
    with pytest.raises(KeyError):
        repository.get_game("missing")


def test_list_mistakes_only_returns_errors(repository):
    repository.save(_record("game_a", [_insight(1, "e4", "Good"), _insight(3, "Qh5", "Blunder")]))
    repository.save(_record("game_b", [_insight(5, "Nxe5", "Mistake"), _insight(7, "O-O", "Best")]))
    mistakes = repository.list_mistakes()
    assert sorted((entry["game_id"], entry["move"], entry["quality"]) for entry in mistakes) == [
        ("game_a", "Qh5", "Blunder"),
        ("game_b", "Nxe5", "Mistake"),
    ]
    assert all(entry["game_date"] is not None for entry in mistakes)


def test_database_failure_becomes_persistence_error():
    def broken_factory():
        # No tables were created on this engine.
        return Session(bind=create_engine("sqlite://"))

    repository = GameRepository(broken_factory)
    with pytest.raises(PersistenceError):
        repository.save(_record("game_x", []))
    with pytest.raises(PersistenceError):
        repository.create_game(
            player_color="black",
            time_control="5|3",
            initial_time_seconds=300,
            increment_seconds=3,
            difficulty_level=1,
            mentor_enabled=False,
        )
