import chess
import pytest

from chessmentor.board import Board, opposite, result_for_winner
from chessmentor.errors import IllegalMoveError


def test_apply_returns_a_new_board():
    board = Board()
    after, record = board.apply(board.parse_move("e2", "e4"))
    assert board.to_fen() == chess.STARTING_FEN
    assert after.turn == "black"
    assert record.san == "e4"
    assert record.uci == "e2e4"
    assert record.color == "white"


def test_fold_matches_python_chess():
    moves = ["e2e4", "c7c5", "g1f3", "d7d6", "d2d4", "c5d4", "f3d4", "g8f6"]
    board = Board()
    reference = chess.Board()
    for uci in moves:
        board, _ = board.apply(board.parse_uci(uci))
        reference.push_uci(uci)
    assert board.to_fen() == reference.fen()
    assert board.history_san() == ["e4", "c5", "Nf3", "d6", "d4", "cxd4", "Nxd4", "Nf6"]
    assert board.ply == 8
    assert board.fullmove == 5


def test_illegal_move_rejected():
    board = Board()
    with pytest.raises(IllegalMoveError):
        board.parse_move("e2", "e5")
    with pytest.raises(IllegalMoveError):
        board.parse_move("z9", "e4")
    with pytest.raises(IllegalMoveError):
        board.parse_uci("e2")


def test_pawn_to_last_rank_promotes_to_queen_by_default():
    board = Board.from_fen("8/P6k/8/8/8/8/8/4K3 w - - 0 1")
    move = board.parse_move("a7", "a8")
    assert move.promotion == chess.QUEEN
    _, record = board.apply(move)
    assert record.promotion == "q"
    assert record.san.startswith("a8=Q")


def test_underpromotion():
    board = Board.from_fen("8/P6k/8/8/8/8/8/4K3 w - - 0 1")
    assert board.parse_move("a7", "a8", "n").promotion == chess.KNIGHT
    with pytest.raises(IllegalMoveError):
        board.parse_move("a7", "a8", "k")


def test_legal_destinations():
    board = Board()
    assert board.legal_destinations("g1") == {"f3", "h3"}
    assert board.legal_destinations("e7") == set()
    assert board.legal_destinations("xx") == set()


def test_checkmate_outcome():
    board = Board()
    for uci in ["f2f3", "e7e5", "g2g4", "d8h4"]:
        board, record = board.apply(board.parse_uci(uci))
    assert record.is_checkmate
    assert board.terminal_state() == "checkmate"
    outcome = board.outcome()
    assert outcome.result == "0-1"
    assert outcome.winner == "black"
    assert outcome.termination == "checkmate"


def test_stalemate_is_draw():
    board = Board.from_fen("7k/5Q2/6K1/8/8/8/8/8 b - - 0 1")
    assert board.terminal_state() == "draw"
    assert board.outcome().result == "1/2-1/2"


def test_insufficient_material():
    board = Board.from_fen("4k3/8/8/8/8/8/8/4K2Q w - - 0 1")
    assert board.has_insufficient_material("black")
    assert not board.has_insufficient_material("white")


def test_pgn_carries_headers_and_moves():
    board = Board()
    for uci in ["e2e4", "e7e5"]:
        board, _ = board.apply(board.parse_uci(uci))
    pgn = board.to_pgn({"White": "You", "Result": "*"})
    assert '[White "You"]' in pgn
    assert "1. e4 e5" in pgn


def test_result_helpers():
    assert opposite("white") == "black"
    assert result_for_winner("white") == "1-0"
    assert result_for_winner("black") == "0-1"
    assert result_for_winner(None) == "1/2-1/2"
