"""FEN-derived positional framing for the mentor prompt."""

from __future__ import annotations

import chess

_PIECE_VALUES = {
    chess.PAWN: 100,
    chess.KNIGHT: 320,
    chess.BISHOP: 330,
    chess.ROOK: 500,
    chess.QUEEN: 900,
}

_CENTER_SQUARES = [chess.D4, chess.E4, chess.D5, chess.E5]


def _color_name(color: chess.Color) -> str:
    return "White" if color == chess.WHITE else "Black"


def material_balance(board: chess.Board) -> int:
    """White material minus Black material, in centipawns."""
    total = 0
    for piece in board.piece_map().values():
        value = _PIECE_VALUES.get(piece.piece_type, 0)
        total += value if piece.color == chess.WHITE else -value
    return total


def material_brief(board: chess.Board) -> str:
    diff = material_balance(board)
    if abs(diff) < 80:
        return "Material is level."
    pawns = f"{abs(diff) / 100:.1f}".rstrip("0").rstrip(".")
    leader = "White" if diff > 0 else "Black"
    return f"{leader} is up roughly {pawns} pawns of material; the side ahead should not complicate."


def center_brief(board: chess.Board) -> str:
    contested = 0
    for square in _CENTER_SQUARES:
        white = len(board.attackers(chess.WHITE, square))
        black = len(board.attackers(chess.BLACK, square))
        if white and black:
            contested += 1
    if contested >= 3:
        return "The center is hotly contested."
    occupants = [board.piece_at(square) for square in _CENTER_SQUARES]
    white_count = sum(1 for piece in occupants if piece and piece.color == chess.WHITE)
    black_count = sum(1 for piece in occupants if piece and piece.color == chess.BLACK)
    if white_count - black_count >= 2:
        return "White dominates the central squares."
    if black_count - white_count >= 2:
        return "Black dominates the central squares."
    return ""


def king_exposure_brief(board: chess.Board, color: chess.Color) -> str:
    king = board.king(color)
    if king is None:
        return ""
    enemy = not color
    attacked = sum(1 for square in chess.SquareSet(chess.BB_KING_ATTACKS[king]) if board.is_attacked_by(enemy, square))
    shield_rank = chess.square_rank(king) + (1 if color == chess.WHITE else -1)
    shield = 0
    if 0 <= shield_rank < 8:
        for file_idx in range(max(0, chess.square_file(king) - 1), min(7, chess.square_file(king) + 1) + 1):
            piece = board.piece_at(chess.square(file_idx, shield_rank))
            if piece and piece.color == color and piece.piece_type == chess.PAWN:
                shield += 1
    if board.is_check() and board.turn == color:
        return f"{_color_name(color)}'s king is in check."
    if attacked >= 3 or (shield == 0 and attacked >= 1):
        return f"{_color_name(color)}'s king looks exposed."
    return ""


def structure_brief(board: chess.Board, color: chess.Color) -> str:
    pawns = board.pieces(chess.PAWN, color)
    files = [chess.square_file(square) for square in pawns]
    doubled = sum(1 for file_idx in set(files) if files.count(file_idx) > 1)
    isolated = sum(1 for file_idx in set(files) if file_idx - 1 not in files and file_idx + 1 not in files)
    if doubled + isolated >= 2:
        return f"{_color_name(color)}'s pawn structure is fragile."
    return ""


def position_briefing(fen: str, mover: chess.Color | None = None) -> list[str]:
    """Short factual sentences about the position, mover's concerns first."""
    board = chess.Board(fen)
    focus = mover if mover is not None else not board.turn
    statements = [
        king_exposure_brief(board, focus),
        structure_brief(board, focus),
        center_brief(board),
        material_brief(board),
        king_exposure_brief(board, not focus),
    ]
    return [statement for statement in statements if statement]
