"""Wrapper around python-chess for move validation, FEN/PGN and outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import chess
import chess.pgn

from .errors import IllegalMoveError

TerminalState = Literal["checkmate", "draw", "none"]

_PROMOTION_PIECES = {"q": chess.QUEEN, "r": chess.ROOK, "b": chess.BISHOP, "n": chess.KNIGHT}


@dataclass(frozen=True)
class MoveRecord:
    uci: str
    san: str
    color: Literal["white", "black"]
    from_square: str
    to_square: str
    promotion: str | None
    is_checkmate: bool


@dataclass(frozen=True)
class Outcome:
    result: str
    termination: str
    winner: Literal["white", "black"] | None


def color_name(color: chess.Color) -> Literal["white", "black"]:
    return "white" if color == chess.WHITE else "black"


def opposite(color: str) -> Literal["white", "black"]:
    return "black" if color == "white" else "white"


def result_for_winner(winner: str | None) -> str:
    if winner == "white":
        return "1-0"
    if winner == "black":
        return "0-1"
    return "1/2-1/2"


class Board:
    def __init__(self, inner: chess.Board | None = None) -> None:
        self._board = inner if inner is not None else chess.Board()

    @classmethod
    def from_fen(cls, fen: str) -> "Board":
        return cls(chess.Board(fen))

    def to_fen(self) -> str:
        return self._board.fen()

    @property
    def turn(self) -> Literal["white", "black"]:
        return color_name(self._board.turn)

    @property
    def fullmove(self) -> int:
        return self._board.fullmove_number

    @property
    def ply(self) -> int:
        return self._board.ply()

    def parse_move(self, from_square: str, to_square: str, promotion: str | None = None) -> chess.Move:
        label = f"{from_square}{to_square}{promotion or ''}"
        try:
            origin = chess.parse_square(from_square.lower())
            target = chess.parse_square(to_square.lower())
        except ValueError:
            raise IllegalMoveError(label, self.to_fen()) from None
        piece = self._board.piece_at(origin)
        promo_piece: int | None = None
        if promotion:
            promo_piece = _PROMOTION_PIECES.get(promotion.lower())
            if promo_piece is None:
                raise IllegalMoveError(label, self.to_fen())
        elif piece and piece.piece_type == chess.PAWN and chess.square_rank(target) in (0, 7):
            promo_piece = chess.QUEEN
        move = chess.Move(origin, target, promotion=promo_piece)
        if move not in self._board.legal_moves:
            raise IllegalMoveError(label, self.to_fen())
        return move

    def parse_uci(self, uci: str) -> chess.Move:
        if len(uci) not in (4, 5):
            raise IllegalMoveError(uci, self.to_fen())
        return self.parse_move(uci[:2], uci[2:4], uci[4:] or None)

    def apply(self, move: chess.Move) -> tuple["Board", MoveRecord]:
        """Return the position after ``move`` plus its record; ``self`` is untouched."""
        if move not in self._board.legal_moves:
            raise IllegalMoveError(move.uci(), self.to_fen())
        san = self._board.san(move)
        color = self.turn
        after = self._board.copy(stack=True)
        after.push(move)
        record = MoveRecord(
            uci=move.uci(),
            san=san,
            color=color,
            from_square=chess.square_name(move.from_square),
            to_square=chess.square_name(move.to_square),
            promotion=chess.piece_symbol(move.promotion) if move.promotion else None,
            is_checkmate=after.is_checkmate(),
        )
        return Board(after), record

    def legal_destinations(self, square: str) -> set[str]:
        try:
            origin = chess.parse_square(square.lower())
        except ValueError:
            return set()
        return {
            chess.square_name(move.to_square)
            for move in self._board.legal_moves
            if move.from_square == origin
        }

    def terminal_state(self) -> TerminalState:
        if self._board.is_checkmate():
            return "checkmate"
        if self._board.is_game_over(claim_draw=True):
            return "draw"
        return "none"

    def outcome(self) -> Outcome | None:
        outcome = self._board.outcome(claim_draw=True)
        if outcome is None:
            return None
        winner = color_name(outcome.winner) if outcome.winner is not None else None
        return Outcome(
            result=outcome.result(),
            termination=outcome.termination.name.lower(),
            winner=winner,
        )

    def has_insufficient_material(self, color: str) -> bool:
        return self._board.has_insufficient_material(chess.WHITE if color == "white" else chess.BLACK)

    def history_san(self) -> list[str]:
        replay = self._board.root()
        sans: list[str] = []
        for move in self._board.move_stack:
            sans.append(replay.san(move))
            replay.push(move)
        return sans

    def to_pgn(self, headers: dict[str, str] | None = None) -> str:
        game = chess.pgn.Game.from_board(self._board)
        for key, value in (headers or {}).items():
            game.headers[key] = value
        exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=False)
        return game.accept(exporter)
