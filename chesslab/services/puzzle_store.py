from __future__ import annotations

import copy
from typing import Any, Iterable, Optional, Protocol

from sqlalchemy import select

from chesslab.core.constants import PUZZLE_NAMESPACE_PREFIX, PUZZLE_STORE_KEY
from chesslab.core.logging import get_logger
from chesslab.db.models import StoredValue
from chesslab.db.session import SessionFactory, SessionLocal, session_scope
from chesslab.schemas.puzzles import PuzzleOut, PuzzleSetOut
from chesslab.services.puzzles import Puzzle

logger = get_logger("chesslab.puzzle_store")


class KeyValueStore(Protocol):
    def get(self, key: str, namespace: str) -> Optional[Any]: ...

    def set(self, key: str, namespace: str, value: Any) -> None: ...


class MemoryKeyValueStore:
    def __init__(self) -> None:
        self._values: dict[tuple[str, str], Any] = {}

    def get(self, key: str, namespace: str) -> Optional[Any]:
        value = self._values.get((namespace, key))
        return copy.deepcopy(value)

    def set(self, key: str, namespace: str, value: Any) -> None:
        self._values[(namespace, key)] = copy.deepcopy(value)


class SqlKeyValueStore:
    """JSON values in the ``stored_values`` table, one row per (namespace, key)."""

    def __init__(self, session_factory: SessionFactory = SessionLocal) -> None:
        self.session_factory = session_factory

    def get(self, key: str, namespace: str) -> Optional[Any]:
        with session_scope(self.session_factory) as session:
            row = session.execute(
                select(StoredValue).where(
                    StoredValue.namespace == namespace, StoredValue.key == key
                )
            ).scalar_one_or_none()
            return row.payload_json if row is not None else None

    def set(self, key: str, namespace: str, value: Any) -> None:
        with session_scope(self.session_factory) as session:
            row = session.execute(
                select(StoredValue).where(
                    StoredValue.namespace == namespace, StoredValue.key == key
                )
            ).scalar_one_or_none()
            if row is None:
                session.add(StoredValue(namespace=namespace, key=key, payload_json=value))
            else:
                row.payload_json = value


def puzzle_namespace(player: str) -> str:
    return f"{PUZZLE_NAMESPACE_PREFIX}:{player.strip().lower()}"


def load_puzzles(store: KeyValueStore, player: str) -> list[Puzzle]:
    payload = store.get(PUZZLE_STORE_KEY, puzzle_namespace(player))
    if not payload:
        return []
    return [item.to_puzzle() for item in PuzzleSetOut.model_validate(payload).puzzles]


def save_puzzles(store: KeyValueStore, player: str, puzzles: Iterable[Puzzle]) -> None:
    payload = PuzzleSetOut(
        player=player.strip().lower(),
        puzzles=[PuzzleOut.from_puzzle(puzzle) for puzzle in puzzles],
    )
    store.set(PUZZLE_STORE_KEY, puzzle_namespace(player), payload.model_dump(mode="json"))
    logger.info(
        "puzzles.saved",
        extra={"event": "puzzles.saved", "count": len(payload.puzzles)},
    )
