from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from chesslab.services.puzzles import GameMeta, Puzzle
from chesslab.services.scoring import EngineScore


class ScoreOut(BaseModel):
    kind: str = Field(pattern="^(cp|mate)$")
    value: int

    @classmethod
    def from_score(cls, score: EngineScore) -> "ScoreOut":
        return cls(kind=score.kind, value=score.value)

    def to_score(self) -> EngineScore:
        return EngineScore(kind=self.kind, value=self.value)


class GameMetaOut(BaseModel):
    white: str
    white_rating: Optional[int] = None
    black: str
    black_rating: Optional[int] = None
    time_control: Optional[str] = None
    end_time: Optional[datetime] = None


class PuzzleOut(BaseModel):
    fen: str
    best_move_uci: str
    played_move_uci: str
    mover: str = Field(pattern="^(white|black)$")
    move_number: int = Field(ge=1)
    evaluation_before: ScoreOut
    evaluation_after: ScoreOut
    game_meta: GameMetaOut
    description: str = ""
    time_spent_label: str = "Unknown"

    @classmethod
    def from_puzzle(cls, puzzle: Puzzle) -> "PuzzleOut":
        meta = puzzle.game_meta
        return cls(
            fen=puzzle.fen,
            best_move_uci=puzzle.best_move_uci,
            played_move_uci=puzzle.played_move_uci,
            mover=puzzle.mover,
            move_number=puzzle.move_number,
            evaluation_before=ScoreOut.from_score(puzzle.evaluation_before),
            evaluation_after=ScoreOut.from_score(puzzle.evaluation_after),
            game_meta=GameMetaOut(
                white=meta.white,
                white_rating=meta.white_rating,
                black=meta.black,
                black_rating=meta.black_rating,
                time_control=meta.time_control,
                end_time=meta.end_time,
            ),
            description=puzzle.description,
            time_spent_label=puzzle.time_spent_label,
        )

    def to_puzzle(self) -> Puzzle:
        return Puzzle(
            fen=self.fen,
            best_move_uci=self.best_move_uci,
            played_move_uci=self.played_move_uci,
            mover=self.mover,
            move_number=self.move_number,
            evaluation_before=self.evaluation_before.to_score(),
            evaluation_after=self.evaluation_after.to_score(),
            game_meta=GameMeta(**self.game_meta.model_dump()),
            description=self.description,
            time_spent_label=self.time_spent_label,
        )


class PuzzleSetOut(BaseModel):
    player: str
    puzzles: list[PuzzleOut] = Field(default_factory=list)
