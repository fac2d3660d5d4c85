from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from chesslab.core.constants import BLACK, MATE_SCORE_CP, SCORE_CP, SCORE_MATE, WHITE

EVAL_BAR_CLAMP_CP = 500


@dataclass(frozen=True)
class EngineScore:
    """Engine score in white's frame: centipawns or signed moves-to-mate."""

    kind: str
    value: int

    @classmethod
    def cp(cls, value: int) -> "EngineScore":
        return cls(kind=SCORE_CP, value=int(value))

    @classmethod
    def mate(cls, value: int) -> "EngineScore":
        return cls(kind=SCORE_MATE, value=int(value))

    @property
    def is_mate(self) -> bool:
        return self.kind == SCORE_MATE


def side_to_move(fen: Optional[str]) -> Optional[str]:
    if not fen:
        return None
    parts = fen.split()
    if len(parts) < 2:
        return None
    if parts[1] == "w":
        return WHITE
    if parts[1] == "b":
        return BLACK
    return None


def to_signed_centipawns(score: Optional[EngineScore]) -> Optional[int]:
    if score is None:
        return None
    if not score.is_mate:
        return score.value
    return MATE_SCORE_CP if score.value >= 0 else -MATE_SCORE_CP


def mating_side(score: Optional[EngineScore], to_move: Optional[str]) -> Optional[str]:
    """Return "White" or "Black" for the side delivering a forced mate.

    Mate-in-0 carries no reliable sign, so the winner is the side that just
    moved: the one not to move in the evaluated position.
    """
    if score is None or not score.is_mate:
        return None
    if score.value > 0:
        return "White"
    if score.value < 0:
        return "Black"
    if to_move == WHITE:
        return "Black"
    if to_move == BLACK:
        return "White"
    return None


def to_mover_perspective(cp: int, mover: str) -> int:
    return cp if mover == WHITE else -cp


def format_score(score: Optional[EngineScore]) -> str:
    if score is None:
        return "—"
    if score.is_mate:
        moves = abs(score.value)
        return "Checkmate" if moves == 0 else f"M{moves}"
    value = f"{score.value / 100:.2f}"
    return value if value.startswith("-") else f"+{value}"


def eval_percent(score: Optional[EngineScore], mate_winner: Optional[str] = None) -> float:
    if score is None:
        return 0.5
    if score.is_mate:
        if score.value > 0:
            return 1.0
        if score.value < 0:
            return 0.0
        if mate_winner == "White":
            return 1.0
        if mate_winner == "Black":
            return 0.0
        return 0.5
    cp = max(-EVAL_BAR_CLAMP_CP, min(EVAL_BAR_CLAMP_CP, score.value))
    return (cp + EVAL_BAR_CLAMP_CP) / (2 * EVAL_BAR_CLAMP_CP)


def describe_advantage(
    percent: float,
    score: Optional[EngineScore] = None,
    mate_winner: Optional[str] = None,
) -> str:
    if score is not None and score.is_mate:
        winner = mate_winner or ("White" if score.value > 0 else "Black")
        moves = abs(score.value)
        if moves == 0:
            return f"{winner} wins by checkmate"
        move_label = "move" if moves == 1 else "moves"
        return f"Checkmate in {moves} {move_label} for {winner}"
    if percent >= 0.8:
        return "Decisive advantage for White"
    if percent >= 0.65:
        return "White pressing"
    if percent <= 0.2:
        return "Decisive advantage for Black"
    if percent <= 0.35:
        return "Black pressing"
    return "Roughly balanced"
