from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx

from chesslab.core.config import get_settings
from chesslab.core.logging import get_logger
from chesslab.services.analytics import GameRecord, parse_game, player_rating

logger = get_logger("chesslab.chesscom")


class ChesscomError(RuntimeError):
    pass


@dataclass(frozen=True)
class PagingState:
    remaining: tuple[str, ...]


@dataclass(frozen=True)
class ArchivePage:
    games: list[GameRecord]
    has_more: bool
    paging_state: Optional[PagingState]


@dataclass(frozen=True)
class RatingPoint:
    timestamp: datetime
    rating: int


def parse_archive_url(archive_url: str) -> tuple[int, int]:
    parts = archive_url.rstrip("/").split("/")
    if len(parts) < 2:
        raise ChesscomError(f"Invalid archive URL: {archive_url}")
    try:
        return int(parts[-2]), int(parts[-1])
    except ValueError as exc:
        raise ChesscomError(f"Invalid archive URL: {archive_url}") from exc


class ChesscomClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.chesscom_base_url).rstrip("/")
        self.user_agent = user_agent or settings.chesscom_user_agent
        self.archive_months = settings.chesscom_archive_months
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ChesscomClient":
        return self

    async def __aexit__(self, exc_type, exc, exc_tb) -> None:
        await self.aclose()

    async def _get_json(self, url: str) -> dict[str, Any]:
        response = await self._client.get(url)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ChesscomError(f"Unexpected response payload from {url}.")
        return payload

    async def fetch_archives(self, username: str) -> list[str]:
        payload = await self._get_json(f"{self.base_url}/pub/player/{username}/games/archives")
        archives = payload.get("archives")
        if not isinstance(archives, list):
            raise ChesscomError("Unexpected archives response payload.")
        return [str(url) for url in archives]

    async def fetch_month(self, username: str, year: int, month: int) -> list[GameRecord]:
        url = f"{self.base_url}/pub/player/{username}/games/{year:04d}/{month:02d}"
        payload = await self._get_json(url)
        games = payload.get("games") or []
        if not isinstance(games, list):
            raise ChesscomError(f"Unexpected games payload for {year}/{month}.")
        parsed = [parse_game(item) for item in games if isinstance(item, dict)]
        return [game for game in parsed if game is not None]

    async def fetch_game_archive(
        self, username: str, paging_state: Optional[PagingState] = None
    ) -> ArchivePage:
        """Return one month of games, newest month first."""
        if paging_state is None:
            archives = await self.fetch_archives(username)
            remaining = tuple(reversed(archives))
        else:
            remaining = paging_state.remaining
        if not remaining:
            return ArchivePage(games=[], has_more=False, paging_state=None)

        year, month = parse_archive_url(remaining[0])
        games = await self.fetch_month(username, year, month)
        rest = remaining[1:]
        logger.info(
            "chesscom.month",
            extra={
                "event": "chesscom.month",
                "year": year,
                "month": month,
                "games": len(games),
            },
        )
        return ArchivePage(
            games=games,
            has_more=bool(rest),
            paging_state=PagingState(remaining=rest) if rest else None,
        )

    async def fetch_rating_series(self, username: str, mode: str) -> list[RatingPoint]:
        if self.archive_months <= 0:
            return []
        archives = await self.fetch_archives(username)
        points: list[RatingPoint] = []
        for archive_url in archives[-self.archive_months :]:
            year, month = parse_archive_url(archive_url)
            for game in await self.fetch_month(username, year, month):
                if game.time_class != mode or game.end_time is None:
                    continue
                rating = player_rating(game, username)
                if rating is not None:
                    points.append(RatingPoint(timestamp=game.end_time, rating=rating))
        points.sort(key=lambda point: point.timestamp)
        return points


def get_chesscom_client() -> ChesscomClient:
    return ChesscomClient()
