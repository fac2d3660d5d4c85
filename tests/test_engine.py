import asyncio
import shutil

import chess
import chess.engine
import pytest

from chesslab.services.engine import (
    EngineConfig,
    EngineError,
    EngineEvaluation,
    EngineLine,
    StockfishEngineEvaluator,
    info_to_line,
    lines_to_evaluation,
    score_from_pov,
)
from chesslab.services.engine_analysis import EngineGameSampler, sample_positions
from chesslab.services.scoring import EngineScore
from chesslab.services.timeline import build_timeline_from_moves


def config(path="stockfish"):
    return EngineConfig(path=path, depth=8, stream_depth=10, multipv=2, timeout_sec=10.0)


def test_score_from_pov_is_white_relative():
    assert score_from_pov(None) is None
    assert score_from_pov(chess.engine.PovScore(chess.engine.Cp(35), chess.BLACK)) == (
        EngineScore.cp(-35)
    )
    assert score_from_pov(chess.engine.PovScore(chess.engine.Mate(2), chess.BLACK)) == (
        EngineScore.mate(-2)
    )
    assert score_from_pov(chess.engine.PovScore(chess.engine.MateGiven, chess.WHITE)) == (
        EngineScore.mate(0)
    )


def test_info_to_line_and_evaluation():
    info = {
        "pv": [chess.Move.from_uci("e2e4"), chess.Move.from_uci("e7e5")],
        "score": chess.engine.PovScore(chess.engine.Cp(20), chess.WHITE),
    }
    line = info_to_line(info)
    assert line == EngineLine(move="e2e4", score=EngineScore.cp(20), pv=["e2e4", "e7e5"])

    lines = [line, EngineLine("d2d4", EngineScore.cp(15), ["d2d4"]), EngineLine("c2c4", None)]
    evaluation = lines_to_evaluation(lines, depth=12, max_lines=2)
    assert evaluation.best_move == "e2e4"
    assert evaluation.score == EngineScore.cp(20)
    assert evaluation.depth == 12
    assert evaluation.principal_variation == ["e2e4", "e7e5"]
    assert [item.move for item in evaluation.alternate_lines] == ["e2e4", "d2d4"]

    assert lines_to_evaluation([], depth=12, max_lines=3) is None
    assert lines_to_evaluation([EngineLine(None, None)], depth=12, max_lines=3) is None


def test_evaluator_requires_running_engine():
    evaluator = StockfishEngineEvaluator(config())
    with pytest.raises(EngineError):
        asyncio.run(evaluator.evaluate(chess.STARTING_FEN, 8))


def test_evaluator_reports_missing_binary():
    async def scenario():
        async with StockfishEngineEvaluator(config("/nonexistent/stockfish")):
            pass

    with pytest.raises(EngineError):
        asyncio.run(scenario())


@pytest.mark.skipif(shutil.which("stockfish") is None, reason="stockfish not installed")
def test_stockfish_evaluates_and_streams():
    async def scenario():
        async with StockfishEngineEvaluator(config(shutil.which("stockfish"))) as evaluator:
            single = await evaluator.evaluate(chess.STARTING_FEN, 8)
            updates = [update async for update in evaluator.evaluate_stream(chess.STARTING_FEN, 8)]
            bad = [update async for update in evaluator.evaluate_stream("not a fen", 8)]
            return single, updates, bad

    single, updates, bad = asyncio.run(scenario())
    assert single.best_move
    assert len(single.alternate_lines) <= 2
    assert updates[-1].done
    assert updates[-1].evaluation is not None
    assert all(not update.done for update in updates[:-1])
    assert bad[-1].error


class CountingEngine:
    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.seen = []

    async def evaluate(self, fen, depth):
        self.seen.append(fen)
        if fen in self.fail_on:
            raise EngineError("Engine timed out")
        return EngineEvaluation(best_move=None, score=EngineScore.cp(len(self.seen)), depth=depth)

    async def evaluate_stream(self, fen, depth):
        raise NotImplementedError
        yield


def test_sample_positions_includes_start_and_last_ply():
    timeline = build_timeline_from_moves(["e4", "e5", "Nf3", "Nc6", "Bb5"])
    assert [ply for ply, _ in sample_positions(timeline)] == [0, 1, 2, 3, 4, 5]
    assert [ply for ply, _ in sample_positions(timeline, stride=2)] == [0, 2, 4, 5]
    assert [ply for ply, _ in sample_positions(timeline, max_plies=2)] == [0, 1, 2]
    assert sample_positions(timeline)[0][1] == chess.STARTING_FEN
    assert sample_positions([]) == [(0, chess.STARTING_FEN)]


def test_game_sampler_records_errors():
    timeline = build_timeline_from_moves(["e4", "e5"])
    engine = CountingEngine(fail_on={timeline[0].fen})
    samples = asyncio.run(EngineGameSampler(engine, depth=10).sample(timeline))
    assert [sample.ply for sample in samples] == [0, 1, 2]
    assert samples[0].evaluation.depth == 10
    assert samples[1].evaluation is None
    assert samples[1].error == "Engine timed out"
    assert samples[2].evaluation is not None
