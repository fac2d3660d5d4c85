from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import chess

from chesslab.core.logging import get_logger
from chesslab.services.engine import EngineCapability, EngineError, EngineEvaluation
from chesslab.services.timeline import MoveSnapshot

logger = get_logger("chesslab.engine_analysis")

START_FEN = chess.STARTING_FEN


@dataclass(frozen=True)
class EngineSample:
    ply: int
    fen: str
    evaluation: Optional[EngineEvaluation]
    error: Optional[str] = None


class GameSampler(Protocol):
    async def sample(self, timeline: Sequence[MoveSnapshot]) -> list[EngineSample]: ...


def sample_positions(
    timeline: Sequence[MoveSnapshot], max_plies: Optional[int] = None, stride: int = 1
) -> list[tuple[int, str]]:
    moves = [move for move in timeline if max_plies is None or move.ply <= max_plies]
    start_fen = moves[0].fen_before if moves else START_FEN
    positions = [(0, start_fen)]
    step = max(stride, 1)
    for move in moves:
        if move.ply % step == 0 or move.ply == len(moves):
            positions.append((move.ply, move.fen))
    return positions


class EngineGameSampler:
    """Evaluates a timeline position by position; failures become sample errors."""

    def __init__(
        self,
        engine: EngineCapability,
        depth: int,
        max_plies: Optional[int] = None,
        stride: int = 1,
    ) -> None:
        self.engine = engine
        self.depth = depth
        self.max_plies = max_plies
        self.stride = stride

    async def sample(self, timeline: Sequence[MoveSnapshot]) -> list[EngineSample]:
        samples: list[EngineSample] = []
        cache: dict[str, EngineEvaluation] = {}
        for ply, fen in sample_positions(timeline, self.max_plies, self.stride):
            if fen in cache:
                samples.append(EngineSample(ply=ply, fen=fen, evaluation=cache[fen]))
                continue
            try:
                evaluation = await self.engine.evaluate(fen, self.depth)
            except EngineError as exc:
                logger.warning(
                    "sample.error",
                    extra={"event": "sample.error", "ply": ply, "error_message": str(exc)},
                )
                samples.append(EngineSample(ply=ply, fen=fen, evaluation=None, error=str(exc)))
                continue
            cache[fen] = evaluation
            samples.append(EngineSample(ply=ply, fen=fen, evaluation=evaluation))
        return samples
