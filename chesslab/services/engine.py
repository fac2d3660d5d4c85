from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, Optional, Protocol

import chess
import chess.engine

from chesslab.core.config import get_settings
from chesslab.core.logging import get_logger
from chesslab.services.scoring import EngineScore

logger = get_logger("chesslab.engine")


class EngineError(RuntimeError):
    pass


class EngineTimeout(EngineError):
    pass


@dataclass(frozen=True)
class EngineConfig:
    path: str
    depth: int
    stream_depth: int
    multipv: int
    timeout_sec: float


@dataclass(frozen=True)
class EngineLine:
    move: Optional[str]
    score: Optional[EngineScore]
    pv: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EngineEvaluation:
    best_move: Optional[str]
    score: Optional[EngineScore]
    depth: int
    principal_variation: list[str] = field(default_factory=list)
    alternate_lines: list[EngineLine] = field(default_factory=list)


@dataclass(frozen=True)
class StreamUpdate:
    evaluation: Optional[EngineEvaluation] = None
    error: Optional[str] = None
    done: bool = False


class EngineCapability(Protocol):
    async def evaluate(self, fen: str, depth: int) -> EngineEvaluation: ...

    def evaluate_stream(self, fen: str, depth: int) -> AsyncIterator[StreamUpdate]: ...


def score_from_pov(score: Optional[chess.engine.PovScore]) -> Optional[EngineScore]:
    if score is None:
        return None
    white_score = score.white()
    mate = white_score.mate()
    if mate is not None:
        return EngineScore.mate(mate)
    cp = white_score.score()
    return EngineScore.cp(cp) if cp is not None else None


def info_to_line(info: chess.engine.InfoDict) -> EngineLine:
    pv = [move.uci() for move in info.get("pv") or []]
    return EngineLine(
        move=pv[0] if pv else None,
        score=score_from_pov(info.get("score")),
        pv=pv,
    )


def lines_to_evaluation(
    lines: Iterable[EngineLine], depth: int, max_lines: int
) -> Optional[EngineEvaluation]:
    usable = [line for line in lines if line.move or line.score is not None]
    if not usable:
        return None
    top = usable[0]
    return EngineEvaluation(
        best_move=top.move,
        score=top.score,
        depth=depth,
        principal_variation=list(top.pv),
        alternate_lines=usable[: max(max_lines, 1)],
    )


class StockfishEngineEvaluator:
    def __init__(self, config: EngineConfig) -> None:
        self.config = config
        self._transport: Optional[asyncio.SubprocessTransport] = None
        self._engine: Optional[chess.engine.UciProtocol] = None
        self.name: Optional[str] = None

    async def __aenter__(self) -> "StockfishEngineEvaluator":
        try:
            self._transport, self._engine = await chess.engine.popen_uci(self.config.path)
        except (OSError, chess.engine.EngineError) as exc:
            raise EngineError(f"Unable to start engine at {self.config.path}: {exc}") from exc
        self.name = self._engine.id.get("name", "Stockfish")
        logger.info("engine.start", extra={"event": "engine.start", "engine_name": self.name})
        return self

    async def __aexit__(self, exc_type, exc, exc_tb) -> None:
        if self._engine:
            try:
                await self._engine.quit()
            except chess.engine.EngineError:
                logger.warning("engine.quit_failed", extra={"event": "engine.quit_failed"})
        self._engine = None
        self._transport = None

    def _require_engine(self) -> chess.engine.UciProtocol:
        if not self._engine:
            raise EngineError("Engine evaluator is not initialized.")
        return self._engine

    @staticmethod
    def _board(fen: str) -> chess.Board:
        try:
            return chess.Board(fen)
        except ValueError as exc:
            raise EngineError(f"Invalid FEN: {fen}") from exc

    async def evaluate(self, fen: str, depth: int) -> EngineEvaluation:
        engine = self._require_engine()
        board = self._board(fen)
        try:
            infos = await engine.analyse(
                board,
                chess.engine.Limit(depth=depth),
                multipv=max(self.config.multipv, 1),
            )
        except chess.engine.EngineError as exc:
            raise EngineError(str(exc)) from exc
        evaluation = lines_to_evaluation(
            [info_to_line(info) for info in infos],
            depth=max((info.get("depth") or 0) for info in infos) if infos else 0,
            max_lines=self.config.multipv,
        )
        if evaluation is None:
            raise EngineError("Engine returned no usable lines.")
        return evaluation

    async def evaluate_stream(self, fen: str, depth: int) -> AsyncIterator[StreamUpdate]:
        engine = self._require_engine()
        try:
            board = self._board(fen)
        except EngineError as exc:
            yield StreamUpdate(error=str(exc), done=True)
            return

        latest: dict[int, EngineLine] = {}
        reported_depth = 0
        try:
            with await engine.analysis(
                board,
                chess.engine.Limit(depth=depth),
                multipv=max(self.config.multipv, 1),
            ) as analysis:
                async for info in analysis:
                    if "pv" not in info and "score" not in info:
                        continue
                    index = int(info.get("multipv", 1))
                    latest[index] = info_to_line(info)
                    info_depth = int(info.get("depth") or 0)
                    if index != 1 or info_depth <= reported_depth:
                        continue
                    reported_depth = info_depth
                    evaluation = lines_to_evaluation(
                        [latest[key] for key in sorted(latest)],
                        depth=reported_depth,
                        max_lines=self.config.multipv,
                    )
                    if evaluation is not None:
                        yield StreamUpdate(evaluation=evaluation)
        except chess.engine.EngineError as exc:
            yield StreamUpdate(error=str(exc), done=True)
            return

        final = lines_to_evaluation(
            [latest[key] for key in sorted(latest)],
            depth=reported_depth,
            max_lines=self.config.multipv,
        )
        yield StreamUpdate(evaluation=final, done=True)


def get_engine_config() -> EngineConfig:
    settings = get_settings()
    return EngineConfig(
        path=settings.stockfish_path,
        depth=settings.engine_depth,
        stream_depth=settings.engine_stream_depth,
        multipv=settings.engine_multipv,
        timeout_sec=settings.engine_timeout_sec,
    )
