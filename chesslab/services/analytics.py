from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence

from chesslab.core.config import get_settings
from chesslab.core.constants import BLACK, BUCKET_STRONGER, BUCKET_WEAKER, RATING_MODES, WHITE

WIN_RESULTS = {"win"}
DRAW_RESULTS = {
    "draw",
    "stalemate",
    "repetition",
    "agreed",
    "insufficient",
    "50move",
    "timevsinsufficient",
}
LOSS_RESULTS = {"checkmated", "resigned", "timeout", "abandoned", "lose", "time"}

OUTCOME_WIN = "win"
OUTCOME_DRAW = "draw"
OUTCOME_LOSS = "loss"

UNKNOWN_OPENING = "Unknown Opening"


@dataclass(frozen=True)
class PlayerSide:
    username: str
    rating: Optional[int]
    result: Optional[str]


@dataclass(frozen=True)
class GameRecord:
    uuid: str
    url: Optional[str]
    end_time: Optional[datetime]
    time_class: Optional[str]
    time_control: Optional[str]
    rated: Optional[bool]
    white: PlayerSide
    black: PlayerSide
    pgn: Optional[str]
    eco_url: Optional[str] = None


@dataclass(frozen=True)
class RatingDelta:
    mode: str
    current_rating: Optional[int]
    prior_rating: Optional[int]
    delta: int
    games: int


@dataclass(frozen=True)
class StreakSummary:
    best_win_streak: int
    best_loss_streak: int
    current_win_streak: int
    current_loss_streak: int


@dataclass(frozen=True)
class OpponentHighlight:
    username: str
    rating: int
    time_class: Optional[str]
    url: Optional[str]


@dataclass(frozen=True)
class StrengthSegment:
    bucket: str
    games: int
    wins: int
    win_rate: Optional[float]
    average_rating_diff: Optional[float]

    @property
    def insufficient_data(self) -> bool:
        return self.games == 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def _parse_side(payload: Any) -> PlayerSide:
    side = payload if isinstance(payload, dict) else {}
    rating = side.get("rating")
    return PlayerSide(
        username=str(side.get("username") or ""),
        rating=int(rating) if isinstance(rating, (int, float)) else None,
        result=side.get("result"),
    )


def parse_game(payload: dict[str, Any]) -> Optional[GameRecord]:
    uuid = payload.get("uuid") or payload.get("url")
    if not uuid:
        return None
    return GameRecord(
        uuid=str(uuid),
        url=payload.get("url"),
        end_time=parse_timestamp(payload.get("end_time")),
        time_class=payload.get("time_class"),
        time_control=payload.get("time_control"),
        rated=payload.get("rated"),
        white=_parse_side(payload.get("white")),
        black=_parse_side(payload.get("black")),
        pgn=payload.get("pgn"),
        eco_url=payload.get("eco") or payload.get("eco_url"),
    )


def _normalize(username: Optional[str]) -> str:
    return (username or "").strip().lower()


def player_color(game: GameRecord, player: str) -> Optional[str]:
    normalized = _normalize(player)
    if _normalize(game.white.username) == normalized:
        return WHITE
    if _normalize(game.black.username) == normalized:
        return BLACK
    return None


def _sides(game: GameRecord, player: str) -> Optional[tuple[PlayerSide, PlayerSide]]:
    color = player_color(game, player)
    if color == WHITE:
        return game.white, game.black
    if color == BLACK:
        return game.black, game.white
    return None


def player_outcome(game: GameRecord, player: str) -> Optional[str]:
    sides = _sides(game, player)
    if sides is None:
        return None
    result = sides[0].result
    if result in WIN_RESULTS:
        return OUTCOME_WIN
    if result in LOSS_RESULTS:
        return OUTCOME_LOSS
    if result in DRAW_RESULTS:
        return OUTCOME_DRAW
    opponent_result = sides[1].result
    if opponent_result in WIN_RESULTS:
        return OUTCOME_LOSS
    return OUTCOME_DRAW if result else None


def player_rating(game: GameRecord, player: str) -> Optional[int]:
    sides = _sides(game, player)
    return sides[0].rating if sides else None


def _chronological(games: Iterable[GameRecord]) -> list[GameRecord]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(games, key=lambda game: game.end_time or epoch)


def compute_rating_deltas(
    games: Iterable[GameRecord],
    player: str,
    now: Optional[datetime] = None,
    modes: Sequence[str] = RATING_MODES,
    window_days: Optional[int] = None,
) -> dict[str, RatingDelta]:
    if window_days is None:
        window_days = get_settings().rating_window_days
    reference = now or datetime.now(timezone.utc)
    window_start = reference - timedelta(days=window_days)
    ordered = [
        game
        for game in _chronological(games)
        if player_rating(game, player) is not None and game.end_time is not None
    ]

    deltas: dict[str, RatingDelta] = {}
    for mode in modes:
        mode_games = [game for game in ordered if game.time_class == mode]
        if not mode_games:
            deltas[mode] = RatingDelta(
                mode=mode, current_rating=None, prior_rating=None, delta=0, games=0
            )
            continue
        latest = mode_games[-1]
        # Baseline is the rating carried into the window; an empty window
        # falls back to the earliest game.
        before_window = [game for game in mode_games if game.end_time < window_start]
        if before_window and latest.end_time >= window_start:
            baseline = before_window[-1]
        else:
            baseline = mode_games[0]
        current_rating = player_rating(latest, player)
        prior_rating = player_rating(baseline, player)
        deltas[mode] = RatingDelta(
            mode=mode,
            current_rating=current_rating,
            prior_rating=prior_rating,
            delta=current_rating - prior_rating,
            games=len(mode_games),
        )
    return deltas


def rating_changes_by_game(games: Iterable[GameRecord], player: str) -> dict[str, Optional[int]]:
    changes: dict[str, Optional[int]] = {}
    last_rating: dict[Optional[str], int] = {}
    for game in _chronological(games):
        rating = player_rating(game, player)
        if rating is None:
            changes[game.uuid] = None
            continue
        previous = last_rating.get(game.time_class)
        changes[game.uuid] = rating - previous if previous is not None else None
        last_rating[game.time_class] = rating
    return changes


def compute_streaks(games: Iterable[GameRecord], player: str) -> StreakSummary:
    best_win = best_loss = 0
    wins = losses = 0
    for game in _chronological(games):
        outcome = player_outcome(game, player)
        if outcome is None:
            continue
        if outcome == OUTCOME_WIN:
            losses = 0
            wins += 1
        elif outcome == OUTCOME_LOSS:
            wins = 0
            losses += 1
        else:
            wins = losses = 0
        best_win = max(best_win, wins)
        best_loss = max(best_loss, losses)
    return StreakSummary(
        best_win_streak=best_win,
        best_loss_streak=best_loss,
        current_win_streak=wins,
        current_loss_streak=losses,
    )


def strongest_opponent_beaten(
    games: Iterable[GameRecord], player: str
) -> Optional[OpponentHighlight]:
    best: Optional[OpponentHighlight] = None
    for game in games:
        sides = _sides(game, player)
        if sides is None or player_outcome(game, player) != OUTCOME_WIN:
            continue
        opponent = sides[1]
        if opponent.rating is None:
            continue
        if best is None or opponent.rating > best.rating:
            best = OpponentHighlight(
                username=opponent.username,
                rating=opponent.rating,
                time_class=game.time_class,
                url=game.url,
            )
    return best


def opponent_strength_segments(
    games: Iterable[GameRecord], player: str, mode: str
) -> dict[str, StrengthSegment]:
    totals = {BUCKET_STRONGER: [0, 0, 0], BUCKET_WEAKER: [0, 0, 0]}
    for game in games:
        if game.time_class != mode or not game.rated:
            continue
        sides = _sides(game, player)
        if sides is None:
            continue
        me, opponent = sides
        if me.rating is None or opponent.rating is None:
            continue
        diff = opponent.rating - me.rating
        bucket = totals[BUCKET_STRONGER if diff >= 0 else BUCKET_WEAKER]
        bucket[0] += 1
        bucket[2] += diff
        if player_outcome(game, player) == OUTCOME_WIN:
            bucket[1] += 1

    segments: dict[str, StrengthSegment] = {}
    for key, (count, wins, diff_sum) in totals.items():
        segments[key] = StrengthSegment(
            bucket=key,
            games=count,
            wins=wins,
            win_rate=wins / count if count else None,
            average_rating_diff=diff_sum / count if count else None,
        )
    return segments


def opening_name(eco_url: Optional[str]) -> str:
    if not eco_url:
        return UNKNOWN_OPENING
    slug = eco_url.rstrip("/").rsplit("/", 1)[-1]
    return slug.replace("-", " ") or UNKNOWN_OPENING


def favorite_openings(
    games: Iterable[GameRecord], player: str
) -> dict[str, Optional[tuple[str, int]]]:
    counts = {WHITE: Counter(), BLACK: Counter()}
    for game in games:
        color = player_color(game, player)
        if color is None:
            continue
        counts[color][opening_name(game.eco_url)] += 1
    return {
        color: counter.most_common(1)[0] if counter else None for color, counter in counts.items()
    }
