from __future__ import annotations

import io
import re
from dataclasses import dataclass
from typing import Optional, Sequence

import chess
import chess.pgn

from chesslab.core.constants import BLACK, WHITE

CLOCK_REGEX = re.compile(r"\[%clk\s+([0-9:\.]+)\]")
HEADER_LINE_REGEX = re.compile(r"^\s*\[[^\]]*\]\s*$", re.MULTILINE)
COMMENT_REGEX = re.compile(r"\{[^}]*\}")
MOVE_NUMBER_REGEX = re.compile(r"^\d+\.+$")
RESULT_TOKENS = {"1-0", "0-1", "1/2-1/2", "*"}


class InvalidTranscript(ValueError):
    pass


@dataclass(frozen=True)
class AppliedMove:
    san: str
    uci: str
    fen_before: str
    fen: str
    color: str
    comment: str


@dataclass(frozen=True)
class MoveSnapshot:
    ply: int
    move_number: int
    color: str
    san: str
    uci: str
    fen: str
    fen_before: str
    clock: Optional[str] = None


def parse_clock_seconds(clock_value: Optional[str]) -> Optional[float]:
    if not clock_value:
        return None
    parts = clock_value.split(":")
    if len(parts) not in {2, 3}:
        return None
    try:
        seconds = float(parts[-1])
        minutes = int(parts[-2])
        hours = int(parts[-3]) if len(parts) == 3 else 0
    except ValueError:
        return None
    if minutes < 0 or hours < 0 or seconds < 0:
        return None
    return hours * 3600 + minutes * 60 + seconds


def extract_clock(comment: str) -> Optional[str]:
    if not comment:
        return None
    match = CLOCK_REGEX.search(comment)
    if not match:
        return None
    return match.group(1).strip()


def _has_movetext(transcript: str) -> bool:
    body = HEADER_LINE_REGEX.sub(" ", transcript)
    body = COMMENT_REGEX.sub(" ", body)
    for token in body.split():
        if token in RESULT_TOKENS or MOVE_NUMBER_REGEX.match(token):
            continue
        return True
    return False


def _color_of(board: chess.Board) -> str:
    return WHITE if board.turn == chess.WHITE else BLACK


def apply_moves(transcript: str) -> list[AppliedMove]:
    if not transcript or not transcript.strip():
        raise InvalidTranscript("Transcript is empty.")

    game = chess.pgn.read_game(io.StringIO(transcript))
    if game is None:
        raise InvalidTranscript("Unable to parse transcript.")
    if game.errors:
        raise InvalidTranscript(f"Invalid move in transcript: {game.errors[0]}")

    board = game.board()
    applied: list[AppliedMove] = []
    for node in game.mainline():
        move = node.move
        if move is None or not board.is_legal(move):
            raise InvalidTranscript(f"Illegal move at ply {len(applied) + 1}.")
        color = _color_of(board)
        fen_before = board.fen()
        san = board.san(move)
        board.push(move)
        applied.append(
            AppliedMove(
                san=san,
                uci=move.uci(),
                fen_before=fen_before,
                fen=board.fen(),
                color=color,
                comment=node.comment,
            )
        )

    if not applied and _has_movetext(transcript):
        raise InvalidTranscript("Transcript contains no readable moves.")
    return applied


def _snapshots(applied: Sequence[AppliedMove]) -> list[MoveSnapshot]:
    return [
        MoveSnapshot(
            ply=index + 1,
            move_number=index // 2 + 1,
            color=move.color,
            san=move.san,
            uci=move.uci,
            fen=move.fen,
            fen_before=move.fen_before,
            clock=extract_clock(move.comment),
        )
        for index, move in enumerate(applied)
    ]


def build_timeline(transcript: str) -> list[MoveSnapshot]:
    return _snapshots(apply_moves(transcript))


def build_timeline_from_moves(moves: Sequence[str], fen: Optional[str] = None) -> list[MoveSnapshot]:
    try:
        board = chess.Board(fen) if fen else chess.Board()
    except ValueError as exc:
        raise InvalidTranscript(f"Invalid starting position: {fen}") from exc

    applied: list[AppliedMove] = []
    for index, token in enumerate(moves):
        try:
            move = board.parse_san(token)
        except ValueError:
            try:
                move = chess.Move.from_uci(token)
            except ValueError as exc:
                raise InvalidTranscript(f"Malformed move {token!r} at ply {index + 1}.") from exc
            if not board.is_legal(move):
                raise InvalidTranscript(f"Illegal move {token!r} at ply {index + 1}.")
        color = _color_of(board)
        fen_before = board.fen()
        san = board.san(move)
        board.push(move)
        applied.append(
            AppliedMove(
                san=san,
                uci=move.uci(),
                fen_before=fen_before,
                fen=board.fen(),
                color=color,
                comment="",
            )
        )
    return _snapshots(applied)


def read_headers(transcript: str) -> dict[str, str]:
    headers = chess.pgn.read_headers(io.StringIO(transcript or ""))
    return dict(headers) if headers else {}


def is_only_legal_move(fen: str) -> bool:
    try:
        board = chess.Board(fen)
    except ValueError:
        return False
    return board.legal_moves.count() <= 1


def format_time_spent(seconds: Optional[int]) -> str:
    if seconds is None:
        return "Unknown"
    if seconds < 1:
        return "< 1s"
    if seconds < 60:
        return f"{seconds}s"
    minutes, rest = divmod(seconds, 60)
    return f"{minutes}m {rest}s" if rest else f"{minutes}m"


def time_spent_label(move: MoveSnapshot, timeline: Sequence[MoveSnapshot]) -> str:
    previous_same_color = None
    for candidate in timeline:
        if candidate.ply >= move.ply:
            break
        if candidate.color == move.color:
            previous_same_color = candidate
    if previous_same_color is None:
        return "Unknown"
    previous_clock = parse_clock_seconds(previous_same_color.clock)
    current_clock = parse_clock_seconds(move.clock)
    if previous_clock is None or current_clock is None:
        return "Unknown"
    return format_time_spent(int(round(max(0.0, previous_clock - current_clock))))
