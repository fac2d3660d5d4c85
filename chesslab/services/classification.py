from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from chesslab.core.constants import (
    BEST_LOSS_THRESHOLD,
    GOOD_LOSS_THRESHOLD,
    INACCURACY_LOSS_THRESHOLD,
    LABEL_BEST,
    LABEL_BLUNDER,
    LABEL_FORCED,
    LABEL_GOOD,
    LABEL_INACCURACY,
    LABEL_MISS,
    LABEL_MISTAKE,
    MISTAKE_LOSS_THRESHOLD,
    WHITE,
)
from chesslab.services.engine import EngineEvaluation
from chesslab.services.scoring import (
    EngineScore,
    mating_side,
    side_to_move,
    to_mover_perspective,
    to_signed_centipawns,
)
from chesslab.services.timeline import MoveSnapshot, is_only_legal_move


@dataclass(frozen=True)
class MoveQuality:
    label: str
    loss_centipawns: float
    description: str


@dataclass(frozen=True)
class QualityBand:
    max_loss: float
    label: str
    description: str


QUALITY_BANDS: tuple[QualityBand, ...] = (
    QualityBand(BEST_LOSS_THRESHOLD, LABEL_BEST, "Top engine choice keeps the evaluation."),
    QualityBand(
        GOOD_LOSS_THRESHOLD, LABEL_GOOD, "Solid move with only a slight drop in evaluation."
    ),
    QualityBand(
        INACCURACY_LOSS_THRESHOLD,
        LABEL_INACCURACY,
        "A softer move that gives the opponent chances.",
    ),
    QualityBand(
        MISTAKE_LOSS_THRESHOLD,
        LABEL_MISTAKE,
        "Significant drop; the position worsens noticeably.",
    ),
    QualityBand(math.inf, LABEL_BLUNDER, "Major error that swings the evaluation sharply."),
)


def _score(evaluation: Optional[EngineEvaluation]) -> Optional[EngineScore]:
    return evaluation.score if evaluation is not None else None


def classify_loss(loss: float) -> MoveQuality:
    for band in QUALITY_BANDS:
        if loss <= band.max_loss:
            return MoveQuality(label=band.label, loss_centipawns=loss, description=band.description)
    return MoveQuality(
        label=LABEL_BLUNDER, loss_centipawns=loss, description=QUALITY_BANDS[-1].description
    )


def calculate_loss(
    before: Optional[EngineScore], after: Optional[EngineScore], mover: str
) -> Optional[float]:
    before_cp = to_signed_centipawns(before)
    after_cp = to_signed_centipawns(after)
    if before_cp is None or after_cp is None:
        return None
    delta = to_mover_perspective(before_cp, mover) - to_mover_perspective(after_cp, mover)
    return float(max(delta, 0))


def _mate_override(
    move: MoveSnapshot,
    before: Optional[EngineScore],
    after: Optional[EngineScore],
) -> Optional[MoveQuality]:
    mover = "White" if move.color == WHITE else "Black"
    opponent = "Black" if mover == "White" else "White"
    before_winner = mating_side(before, side_to_move(move.fen_before))
    after_winner = mating_side(after, side_to_move(move.fen))

    if after is not None and after.is_mate and after.value == 0:
        if after_winner == mover:
            return MoveQuality(LABEL_BEST, 0.0, "Clinical conversion: delivers checkmate.")
        return MoveQuality(LABEL_BLUNDER, math.inf, "Allows checkmate on the board.")

    if before_winner == mover:
        if after_winner == mover:
            if abs(after.value) < abs(before.value):
                return MoveQuality(LABEL_BEST, 0.0, "Keeps the forced mate sequence on track.")
            return MoveQuality(
                LABEL_GOOD, 0.0, "Forced mate still on the board, but no closer to delivery."
            )
        if after_winner == opponent:
            return MoveQuality(
                LABEL_BLUNDER,
                math.inf,
                "Turns a winning mate into a forced mate for the opponent.",
            )
        if after is not None:
            return MoveQuality(LABEL_MISS, math.inf, "Misses a forced mate opportunity.")
        return None

    if after_winner == opponent:
        if before_winner == opponent:
            return MoveQuality(
                LABEL_GOOD, 0.0, "Forced mate already on board; no better defense exists."
            )
        return MoveQuality(
            LABEL_BLUNDER, math.inf, "Allows a forced mate to appear on the board."
        )

    if after_winner == mover:
        return MoveQuality(LABEL_BEST, 0.0, "Finds a forced mate.")
    return None


def classify_move(
    move: MoveSnapshot,
    eval_before: Optional[EngineEvaluation],
    eval_after: Optional[EngineEvaluation],
    is_only_legal_move: bool = False,
) -> Optional[MoveQuality]:
    if is_only_legal_move:
        return MoveQuality(LABEL_FORCED, 0.0, "Only legal move available in the position.")

    before = _score(eval_before)
    after = _score(eval_after)

    override = _mate_override(move, before, after)
    if override is not None:
        return override

    loss = calculate_loss(before, after, move.color)
    if loss is None:
        return None
    return classify_loss(loss)


def classify_game(
    timeline: Sequence[MoveSnapshot],
    evaluations: Mapping[int, EngineEvaluation],
) -> list[Optional[MoveQuality]]:
    """Classify every move; ``evaluations`` is keyed by ply, 0 being the start position."""
    qualities: list[Optional[MoveQuality]] = []
    for move in timeline:
        qualities.append(
            classify_move(
                move,
                evaluations.get(move.ply - 1),
                evaluations.get(move.ply),
                is_only_legal_move(move.fen_before),
            )
        )
    return qualities


def summarize_qualities(
    timeline: Sequence[MoveSnapshot], qualities: Sequence[Optional[MoveQuality]]
) -> dict[str, dict[str, int]]:
    counts: dict[str, Counter] = {"white": Counter(), "black": Counter()}
    for move, quality in zip(timeline, qualities):
        if quality is None:
            continue
        counts[move.color][quality.label] += 1
    return {color: dict(counter) for color, counter in counts.items()}
