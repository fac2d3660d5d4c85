import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _resolve_database_url(url: str) -> str:
    prefix = "sqlite:///./"
    if url.startswith(prefix):
        relative_path = url[len(prefix) :]
        project_root = Path(__file__).resolve().parents[2]
        absolute_path = (project_root / relative_path).resolve()
        return f"sqlite:///{absolute_path.as_posix()}"
    return url


@dataclass(frozen=True)
class Settings:
    database_url: str
    chesscom_base_url: str
    chesscom_user_agent: str
    chesscom_archive_months: int
    stockfish_path: str
    engine_depth: int
    engine_stream_depth: int
    engine_multipv: int
    engine_timeout_sec: float
    puzzle_first_batch_size: int
    rating_window_days: int


def get_settings() -> Settings:
    return Settings(
        database_url=_resolve_database_url(os.getenv("DATABASE_URL", "sqlite:///./chesslab.db")),
        chesscom_base_url=os.getenv("CHESSCOM_BASE_URL", "https://api.chess.com"),
        chesscom_user_agent=os.getenv(
            "CHESSCOM_USER_AGENT", "ChessLab/0.1 (contact@example.com)"
        ),
        chesscom_archive_months=_get_int("CHESSCOM_ARCHIVE_MONTHS", 6),
        stockfish_path=os.getenv("STOCKFISH_PATH", "stockfish"),
        engine_depth=_get_int("ENGINE_DEPTH", 18),
        engine_stream_depth=_get_int("ENGINE_STREAM_DEPTH", 22),
        engine_multipv=_get_int("ENGINE_MULTIPV", 3),
        engine_timeout_sec=_get_float("ENGINE_TIMEOUT_SEC", 30.0),
        puzzle_first_batch_size=_get_int("PUZZLE_FIRST_BATCH_SIZE", 2),
        rating_window_days=_get_int("RATING_WINDOW_DAYS", 7),
    )
