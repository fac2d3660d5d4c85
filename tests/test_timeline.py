import chess
import pytest

from chesslab.services.timeline import (
    InvalidTranscript,
    apply_moves,
    build_timeline,
    build_timeline_from_moves,
    format_time_spent,
    is_only_legal_move,
    parse_clock_seconds,
    read_headers,
    time_spent_label,
)

PGN = """[Event "Live Chess"]
[White "alice"]
[Black "bob"]
[Result "*"]

1. e4 {[%clk 0:03:00]} 1... e5 {[%clk 0:02:58]} 2. Nf3 {[%clk 0:02:55]}
2... Nc6 {[%clk 0:02:50.5]} 3. Bb5 *
"""


def test_build_timeline_plies_and_clocks():
    timeline = build_timeline(PGN)
    assert [move.ply for move in timeline] == [1, 2, 3, 4, 5]
    assert [move.move_number for move in timeline] == [1, 1, 2, 2, 3]
    assert [move.color for move in timeline] == ["white", "black", "white", "black", "white"]
    assert [move.san for move in timeline] == ["e4", "e5", "Nf3", "Nc6", "Bb5"]
    assert timeline[0].uci == "e2e4"
    assert timeline[0].clock == "0:03:00"
    assert timeline[3].clock == "0:02:50.5"
    assert timeline[4].clock is None


def test_timeline_fens_replay():
    timeline = build_timeline(PGN)
    board = chess.Board()
    for move in timeline:
        assert move.fen_before == board.fen()
        board.push_uci(move.uci)
        assert move.fen == board.fen()


def test_build_timeline_is_deterministic():
    assert build_timeline(PGN) == build_timeline(PGN)


def test_bare_movetext_without_headers():
    timeline = build_timeline("1. d4 d5 2. c4")
    assert [move.san for move in timeline] == ["d4", "d5", "c4"]


def test_invalid_transcripts_raise():
    with pytest.raises(InvalidTranscript):
        build_timeline("")
    with pytest.raises(InvalidTranscript):
        build_timeline("   ")
    with pytest.raises(InvalidTranscript):
        build_timeline("1. e4 e5 2. Ke3")
    with pytest.raises(InvalidTranscript):
        apply_moves("1. e4 e5 2. Nf3 Nf3")


def test_timeline_from_move_list():
    timeline = build_timeline_from_moves(["e4", "e7e5", "Nf3"])
    assert [move.uci for move in timeline] == ["e2e4", "e7e5", "g1f3"]
    assert timeline[1].san == "e5"
    with pytest.raises(InvalidTranscript):
        build_timeline_from_moves(["e4", "e4"])


def test_read_headers():
    headers = read_headers(PGN)
    assert headers["White"] == "alice"
    assert headers["Black"] == "bob"


def test_only_legal_move():
    assert not is_only_legal_move(chess.STARTING_FEN)
    assert not is_only_legal_move("7k/8/8/8/8/8/8/K7 b - - 0 1")
    assert is_only_legal_move("7k/8/6K1/8/8/8/8/R7 b - - 0 1")
    assert not is_only_legal_move("not a fen")


def test_clock_parsing_and_time_spent():
    assert parse_clock_seconds("0:03:00") == 180
    assert parse_clock_seconds("1:05.5") == 65.5
    assert parse_clock_seconds("bad") is None
    assert parse_clock_seconds(None) is None

    assert format_time_spent(None) == "Unknown"
    assert format_time_spent(0) == "< 1s"
    assert format_time_spent(42) == "42s"
    assert format_time_spent(125) == "2m 5s"

    timeline = build_timeline(PGN)
    assert time_spent_label(timeline[0], timeline) == "Unknown"
    assert time_spent_label(timeline[2], timeline) == "5s"
    assert time_spent_label(timeline[3], timeline) == "8s"
    assert time_spent_label(timeline[4], timeline) == "Unknown"
