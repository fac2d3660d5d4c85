import math

from chesslab.services.classification import (
    calculate_loss,
    classify_game,
    classify_loss,
    classify_move,
    summarize_qualities,
)
from chesslab.services.engine import EngineEvaluation
from chesslab.services.scoring import EngineScore
from chesslab.services.timeline import build_timeline_from_moves

TIMELINE = build_timeline_from_moves(["e4", "e5"])
WHITE_MOVE = TIMELINE[0]
BLACK_MOVE = TIMELINE[1]


def cp(value):
    return EngineEvaluation(best_move="g1f3", score=EngineScore.cp(value), depth=18)


def mate(value):
    return EngineEvaluation(best_move="g1f3", score=EngineScore.mate(value), depth=18)


def label(move, before, after, forced=False):
    quality = classify_move(move, before, after, is_only_legal_move=forced)
    return quality.label if quality else None


def test_loss_band_boundaries():
    assert classify_loss(0).label == "Best"
    assert classify_loss(20).label == "Best"
    assert classify_loss(21).label == "Good"
    assert classify_loss(50).label == "Good"
    assert classify_loss(51).label == "Inaccuracy"
    assert classify_loss(99).label == "Inaccuracy"
    assert classify_loss(100).label == "Mistake"
    assert classify_loss(300).label == "Mistake"
    assert classify_loss(301).label == "Blunder"


def test_classify_white_move_by_loss():
    assert label(WHITE_MOVE, cp(30), cp(10)) == "Best"
    assert label(WHITE_MOVE, cp(30), cp(9)) == "Good"
    assert label(WHITE_MOVE, cp(0), cp(-300)) == "Mistake"
    assert label(WHITE_MOVE, cp(0), cp(-301)) == "Blunder"
    assert label(WHITE_MOVE, cp(0), cp(150)) == "Best"


def test_classify_black_move_uses_black_perspective():
    assert label(BLACK_MOVE, cp(-30), cp(-10)) == "Best"
    assert label(BLACK_MOVE, cp(0), cp(400)) == "Blunder"
    assert label(BLACK_MOVE, cp(0), cp(-400)) == "Best"
    assert calculate_loss(EngineScore.cp(0), EngineScore.cp(80), "black") == 80
    assert calculate_loss(EngineScore.cp(0), EngineScore.cp(80), "white") == 0


def test_forced_move_ignores_loss():
    quality = classify_move(WHITE_MOVE, cp(900), cp(-900), is_only_legal_move=True)
    assert quality.label == "Forced"
    assert quality.loss_centipawns == 0


def test_missing_evaluations_return_none():
    assert classify_move(WHITE_MOVE, None, cp(10)) is None
    assert classify_move(WHITE_MOVE, cp(10), None) is None
    assert classify_move(WHITE_MOVE, mate(3), None) is None
    empty = EngineEvaluation(best_move=None, score=None, depth=10)
    assert classify_move(WHITE_MOVE, empty, cp(10)) is None


def test_mate_distance_rules():
    assert label(WHITE_MOVE, mate(3), mate(5)) == "Good"
    assert label(WHITE_MOVE, mate(3), mate(3)) == "Good"
    assert label(WHITE_MOVE, mate(3), mate(2)) == "Best"
    assert label(BLACK_MOVE, mate(-3), mate(-5)) == "Good"
    assert label(BLACK_MOVE, mate(-3), mate(-2)) == "Best"


def test_mate_flips_to_opponent():
    quality = classify_move(WHITE_MOVE, mate(3), mate(-2))
    assert quality.label == "Blunder"
    assert math.isinf(quality.loss_centipawns)
    assert label(BLACK_MOVE, mate(-3), mate(2)) == "Blunder"


def test_missed_mate():
    quality = classify_move(WHITE_MOVE, mate(3), cp(500))
    assert quality.label == "Miss"
    assert math.isinf(quality.loss_centipawns)


def test_checkmate_on_board():
    assert label(WHITE_MOVE, mate(1), mate(0)) == "Best"
    assert label(BLACK_MOVE, mate(-1), mate(0)) == "Best"


def test_opponent_mate_rules():
    quality = classify_move(WHITE_MOVE, cp(0), mate(-4))
    assert quality.label == "Blunder"
    assert math.isinf(quality.loss_centipawns)
    assert label(WHITE_MOVE, mate(-3), mate(-2)) == "Good"
    assert label(BLACK_MOVE, cp(0), mate(6)) == "Blunder"


def test_new_mate_found():
    assert label(WHITE_MOVE, cp(100), mate(5)) == "Best"
    assert label(BLACK_MOVE, cp(-100), mate(-5)) == "Best"


def test_classification_is_idempotent():
    first = classify_move(WHITE_MOVE, cp(40), cp(-200))
    second = classify_move(WHITE_MOVE, cp(40), cp(-200))
    assert first == second
    assert first.label == "Mistake"
    assert first.loss_centipawns == 240


def test_classify_game_and_summary():
    evaluations = {0: cp(20), 1: cp(30)}
    qualities = classify_game(TIMELINE, evaluations)
    assert [quality.label if quality else None for quality in qualities] == ["Best", None]

    evaluations[2] = cp(400)
    qualities = classify_game(TIMELINE, evaluations)
    assert [quality.label for quality in qualities] == ["Best", "Blunder"]
    assert summarize_qualities(TIMELINE, qualities) == {
        "white": {"Best": 1},
        "black": {"Blunder": 1},
    }
