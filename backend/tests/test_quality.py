import pytest

from chessmentor.quality import CHECKMATE_CP, MoveQuality, classify, empty_tally, score_to_cp


@pytest.mark.parametrize(
    "delta, expected",
    [
        (50, MoveQuality.GOOD),
        (0, MoveQuality.GOOD),
        (-29, MoveQuality.GOOD),
        (-30, MoveQuality.MISTAKE),
        (-99, MoveQuality.MISTAKE),
        (-100, MoveQuality.BLUNDER),
        (-400, MoveQuality.BLUNDER),
    ],
)
def test_threshold_boundaries(delta, expected):
    assert classify(100, 100 + delta) == expected


def test_scenario_scores():
    assert classify(25, 25) == MoveQuality.GOOD
    assert classify(25, -150) == MoveQuality.BLUNDER


def test_missing_pre_move_score_is_good():
    assert classify(None, -500) == MoveQuality.GOOD


def test_checkmate_and_engine_match_are_best():
    assert classify(-300, -900, is_checkmating_move=True) == MoveQuality.BEST
    assert classify(None, 0, is_checkmating_move=True) == MoveQuality.BEST
    assert classify(40, 10, matches_engine_best_move=True) == MoveQuality.BEST


def test_score_to_cp_folds_mate():
    assert score_to_cp(35, None) == 35
    assert score_to_cp(None, None) == 0
    assert score_to_cp(None, 1) == CHECKMATE_CP - 1
    assert score_to_cp(None, 3) > score_to_cp(None, 5)
    assert score_to_cp(None, -2) == -CHECKMATE_CP + 2
    assert score_to_cp(None, 0) == -CHECKMATE_CP


def test_empty_tally():
    assert empty_tally() == {"Best": 0, "Good": 0, "Mistake": 0, "Blunder": 0}
