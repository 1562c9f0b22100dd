"""Numeric move-quality classification."""

from __future__ import annotations

from enum import Enum


class MoveQuality(str, Enum):
    BEST = "Best"
    GOOD = "Good"
    MISTAKE = "Mistake"
    BLUNDER = "Blunder"


MISTAKE_THRESHOLD_CP = -30
BLUNDER_THRESHOLD_CP = -100
CHECKMATE_CP = 10000


def score_to_cp(score_cp: int | None, mate: int | None) -> int:
    """Fold a mate distance into a centipawn-comparable number.

    Shorter mates score higher than longer ones; ``mate`` of 0 means the side
    to move is already mated.
    """
    if mate is not None:
        if mate > 0:
            return CHECKMATE_CP - mate
        return -CHECKMATE_CP - mate
    return score_cp or 0


def classify(
    pre_move_score: int | None,
    post_move_score: int,
    *,
    is_checkmating_move: bool = False,
    matches_engine_best_move: bool = False,
) -> MoveQuality:
    """Label a move from the mover's point of view.

    Both scores are centipawns from the mover's perspective. Without a
    pre-move evaluation the move is treated as ``Good``.
    """
    if is_checkmating_move or matches_engine_best_move:
        return MoveQuality.BEST
    if pre_move_score is None:
        return MoveQuality.GOOD
    delta = post_move_score - pre_move_score
    if delta <= BLUNDER_THRESHOLD_CP:
        return MoveQuality.BLUNDER
    if delta <= MISTAKE_THRESHOLD_CP:
        return MoveQuality.MISTAKE
    return MoveQuality.GOOD


def empty_tally() -> dict[str, int]:
    return {quality.value: 0 for quality in MoveQuality}
