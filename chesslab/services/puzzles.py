from __future__ import annotations

import asyncio
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional, Sequence

import chess

from chesslab.core.config import get_settings
from chesslab.core.constants import (
    LABEL_BLUNDER,
    LABEL_MISS,
    PUZZLE_MAX_STARTING_DEFICIT_CP,
    PUZZLE_MIN_LOSS_CP,
    WHITE,
)
from chesslab.core.logging import get_logger, job_id_ctx
from chesslab.services.analytics import GameRecord, player_color
from chesslab.services.classification import calculate_loss, classify_move
from chesslab.services.engine import EngineError, EngineEvaluation
from chesslab.services.engine_analysis import GameSampler
from chesslab.services.scoring import (
    EngineScore,
    mating_side,
    side_to_move,
    to_mover_perspective,
    to_signed_centipawns,
)
from chesslab.services.timeline import (
    InvalidTranscript,
    MoveSnapshot,
    build_timeline,
    is_only_legal_move,
    time_spent_label,
)

logger = get_logger("chesslab.puzzles")

BatchListener = Callable[[list["Puzzle"]], None]


@dataclass(frozen=True)
class GameMeta:
    white: str
    white_rating: Optional[int]
    black: str
    black_rating: Optional[int]
    time_control: Optional[str]
    end_time: Optional[datetime]

    @classmethod
    def from_game(cls, game: GameRecord) -> "GameMeta":
        return cls(
            white=game.white.username,
            white_rating=game.white.rating,
            black=game.black.username,
            black_rating=game.black.rating,
            time_control=game.time_control,
            end_time=game.end_time,
        )


@dataclass(frozen=True)
class Puzzle:
    fen: str
    best_move_uci: str
    played_move_uci: str
    mover: str
    move_number: int
    evaluation_before: EngineScore
    evaluation_after: EngineScore
    game_meta: GameMeta
    description: str = ""
    time_spent_label: str = "Unknown"

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.fen, self.move_number, self.played_move_uci)


def describe_swing(
    before: Optional[EngineScore], after: Optional[EngineScore], mover: str
) -> str:
    previous = to_signed_centipawns(before)
    current = to_signed_centipawns(after)
    if previous is None or current is None:
        return "Evaluation swung here."
    drop = previous - current if mover == WHITE else current - previous
    if abs(drop) > 600:
        if abs(previous) < 150:
            return "It was equal but you blundered the game."
        return "You were dominating but slipped up."
    if abs(drop) > 250:
        return "You let the advantage slip in this move."
    return "A small mistake, but it changed the evaluation."


def _starting_advantage(move: MoveSnapshot, before: EngineScore) -> float:
    if before.is_mate:
        winner = mating_side(before, side_to_move(move.fen_before))
        mover = "White" if move.color == WHITE else "Black"
        return math.inf if winner == mover else -math.inf
    return float(to_mover_perspective(before.value, move.color))


def _gives_mate(move: MoveSnapshot, after: EngineScore) -> bool:
    if chess.Board(move.fen).is_checkmate():
        return True
    mover = "White" if move.color == WHITE else "Black"
    return mating_side(after, side_to_move(move.fen)) == mover


def _is_candidate(
    move: MoveSnapshot, eval_before: EngineEvaluation, eval_after: EngineEvaluation
) -> bool:
    before, after = eval_before.score, eval_after.score
    if before is None or after is None or not eval_before.best_move:
        return False
    if _gives_mate(move, after):
        return False
    if _starting_advantage(move, before) < -PUZZLE_MAX_STARTING_DEFICIT_CP:
        return False
    if eval_before.best_move[:4] == move.uci[:4]:
        return False

    loss = calculate_loss(before, after, move.color)
    if loss is not None and loss >= PUZZLE_MIN_LOSS_CP:
        return True
    quality = classify_move(move, eval_before, eval_after, is_only_legal_move(move.fen_before))
    return (
        quality is not None
        and quality.label in (LABEL_BLUNDER, LABEL_MISS)
        and math.isinf(quality.loss_centipawns)
    )


def find_puzzles_in_game(
    game: GameRecord,
    player: str,
    timeline: Sequence[MoveSnapshot],
    evaluations: Mapping[int, EngineEvaluation],
) -> list[Puzzle]:
    """Extract blunder positions played by ``player``; ``evaluations`` is keyed by ply."""
    color = player_color(game, player)
    if color is None:
        return []
    meta = GameMeta.from_game(game)
    puzzles: list[Puzzle] = []
    for move in timeline:
        if move.color != color:
            continue
        eval_before = evaluations.get(move.ply - 1)
        eval_after = evaluations.get(move.ply)
        if eval_before is None or eval_after is None:
            continue
        if not _is_candidate(move, eval_before, eval_after):
            continue
        puzzles.append(
            Puzzle(
                fen=move.fen_before,
                best_move_uci=eval_before.best_move,
                played_move_uci=move.uci,
                mover=move.color,
                move_number=move.move_number,
                evaluation_before=eval_before.score,
                evaluation_after=eval_after.score,
                game_meta=meta,
                description=describe_swing(eval_before.score, eval_after.score, move.color),
                time_spent_label=time_spent_label(move, timeline),
            )
        )
    return puzzles


class PuzzleSet:
    """Ordered, append-only collection of puzzles keyed by position and move."""

    def __init__(self, puzzles: Iterable[Puzzle] = ()) -> None:
        self._items: list[Puzzle] = []
        self._keys: set[tuple[str, int, str]] = set()
        self.merge(puzzles)

    def merge(self, puzzles: Iterable[Puzzle]) -> list[Puzzle]:
        added: list[Puzzle] = []
        for puzzle in puzzles:
            if puzzle.key in self._keys:
                continue
            self._keys.add(puzzle.key)
            self._items.append(puzzle)
            added.append(puzzle)
        return added

    def __contains__(self, puzzle: object) -> bool:
        return isinstance(puzzle, Puzzle) and puzzle.key in self._keys

    def __iter__(self):
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def to_list(self) -> list[Puzzle]:
        return list(self._items)


class PuzzleMiningJob:
    """Scans a player's games for puzzles in a background task.

    The first ``first_batch_size`` new puzzles (or whatever the scan finds,
    if fewer) are published together; every later game publishes its own
    batch. Cancelling keeps everything merged so far.
    """

    def __init__(
        self,
        games: Iterable[GameRecord],
        player: str,
        sampler: GameSampler,
        on_batch: Optional[BatchListener] = None,
        existing: Iterable[Puzzle] = (),
        first_batch_size: int = 2,
    ) -> None:
        self.games = list(games)
        self.player = player
        self.sampler = sampler
        self.on_batch = on_batch
        self.first_batch_size = max(first_batch_size, 1)
        self.job_id = uuid.uuid4().hex
        self._set = PuzzleSet(existing or ())
        self._pending: list[Puzzle] = []
        self._first_published = False
        self._first_batch: Optional[asyncio.Future] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def puzzles(self) -> list[Puzzle]:
        return self._set.to_list()

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self) -> "PuzzleMiningJob":
        if self._task is None:
            loop = asyncio.get_running_loop()
            self._first_batch = loop.create_future()
            self._task = loop.create_task(self._run())
        return self

    async def first_batch(self) -> list[Puzzle]:
        self.start()
        return await asyncio.shield(self._first_batch)

    async def wait(self) -> list[Puzzle]:
        if self._task is not None:
            await asyncio.wait({self._task})
            if not self._task.cancelled() and self._task.exception() is not None:
                raise self._task.exception()
        return self.puzzles

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info(
                "puzzles.cancel",
                extra={"event": "puzzles.cancel", "found": len(self._set)},
            )

    def _publish(self, batch: list[Puzzle]) -> None:
        logger.info(
            "puzzles.batch",
            extra={
                "event": "puzzles.batch",
                "count": len(batch),
                "first": not self._first_published,
            },
        )
        if self.on_batch and batch:
            self.on_batch(batch)

    def _publish_first(self) -> None:
        batch = list(self._pending)
        self._pending.clear()
        self._publish(batch)
        self._first_published = True
        if not self._first_batch.done():
            self._first_batch.set_result(batch)

    async def _scan(self, game: GameRecord) -> list[Puzzle]:
        if not game.pgn or player_color(game, self.player) is None:
            return []
        timeline = build_timeline(game.pgn)
        samples = await self.sampler.sample(timeline)
        evaluations = {
            sample.ply: sample.evaluation for sample in samples if sample.evaluation is not None
        }
        return find_puzzles_in_game(game, self.player, timeline, evaluations)

    async def _run(self) -> None:
        token = job_id_ctx.set(self.job_id)
        try:
            for game in self.games:
                try:
                    found = await self._scan(game)
                except (InvalidTranscript, EngineError) as exc:
                    logger.warning(
                        "puzzles.game_failed",
                        extra={
                            "event": "puzzles.game_failed",
                            "game_uuid": game.uuid,
                            "error_message": str(exc),
                        },
                    )
                    continue
                added = self._set.merge(found)
                if not added:
                    continue
                if self._first_published:
                    self._publish(added)
                    continue
                self._pending.extend(added)
                if len(self._pending) >= self.first_batch_size:
                    self._publish_first()

            if not self._first_published:
                self._publish_first()
            logger.info(
                "puzzles.complete",
                extra={
                    "event": "puzzles.complete",
                    "games": len(self.games),
                    "total": len(self._set),
                },
            )
        finally:
            if self._first_batch is not None and not self._first_batch.done():
                self._first_batch.set_result(list(self._pending))
            job_id_ctx.reset(token)


def mine_puzzles(
    games: Iterable[GameRecord],
    player: str,
    sampler: GameSampler,
    on_batch: Optional[BatchListener] = None,
    existing: Iterable[Puzzle] = (),
    first_batch_size: Optional[int] = None,
) -> PuzzleMiningJob:
    if first_batch_size is None:
        first_batch_size = get_settings().puzzle_first_batch_size
    job = PuzzleMiningJob(
        games,
        player,
        sampler,
        on_batch=on_batch,
        existing=existing,
        first_batch_size=first_batch_size,
    )
    return job.start()
