from __future__ import annotations

import asyncio
import uuid
from contextlib import aclosing
from dataclasses import dataclass
from typing import Callable, Hashable, Iterable, Optional, Union

from chesslab.core.logging import get_logger, session_id_ctx
from chesslab.services.engine import (
    EngineCapability,
    EngineConfig,
    EngineError,
    EngineEvaluation,
    EngineTimeout,
)
from chesslab.services.engine_analysis import EngineSample

STATUS_IDLE = "idle"
STATUS_LOADING = "loading"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"

ENGINE_STREAM_ERROR = "Engine stream error"
ENGINE_TIMEOUT_ERROR = "Engine timed out"
ENGINE_EMPTY_ERROR = "Engine returned no evaluation"
ENGINE_MALFORMED_ERROR = "Engine returned a malformed evaluation"

logger = get_logger("chesslab.evaluation")


@dataclass(frozen=True)
class Idle:
    status: str = STATUS_IDLE


@dataclass(frozen=True)
class Loading:
    prior: Optional[EngineEvaluation] = None
    status: str = STATUS_LOADING


@dataclass(frozen=True)
class Success:
    evaluation: EngineEvaluation
    depth: int
    status: str = STATUS_SUCCESS


@dataclass(frozen=True)
class Failed:
    message: str
    prior: Optional[EngineEvaluation] = None
    status: str = STATUS_ERROR


EvaluationState = Union[Idle, Loading, Success, Failed]

StateListener = Callable[[Hashable, EvaluationState], None]


def displayed_evaluation(state: Optional[EvaluationState]) -> Optional[EngineEvaluation]:
    if isinstance(state, Success):
        return state.evaluation
    if isinstance(state, (Loading, Failed)):
        return state.prior
    return None


def merge_sample_evaluations(
    existing: dict[int, EvaluationState], samples: Iterable[EngineSample]
) -> dict[int, EvaluationState]:
    merged = dict(existing)
    for sample in samples:
        if sample.evaluation is not None:
            merged[sample.ply] = Success(evaluation=sample.evaluation, depth=sample.evaluation.depth)
        elif sample.error:
            merged[sample.ply] = Failed(
                message=sample.error, prior=displayed_evaluation(merged.get(sample.ply))
            )
    return merged


def evaluation_map(states: dict[int, EvaluationState]) -> dict[int, EngineEvaluation]:
    evaluations: dict[int, EngineEvaluation] = {}
    for key, state in states.items():
        evaluation = displayed_evaluation(state)
        if evaluation is not None:
            evaluations[key] = evaluation
    return evaluations


class EvaluationSession:
    """Tracks engine evaluations per position key for one review session.

    Each key has at most one acquisition in flight. Requesting a key again
    cancels the running acquisition before starting the next one, so a
    stale stream can never overwrite a newer result. Once data has been
    seen for a key, loading and error states keep it as ``prior``; a
    failed or cancelled request falls back to the deeper of the last
    success and the latest streamed candidate.
    """

    def __init__(
        self,
        engine: EngineCapability,
        timeout: Optional[float] = None,
        streaming: bool = True,
        on_change: Optional[StateListener] = None,
    ) -> None:
        self.engine = engine
        self.timeout = timeout
        self.streaming = streaming
        self._on_change = on_change
        self.session_id = uuid.uuid4().hex
        self._states: dict[Hashable, EvaluationState] = {}
        self._settled: dict[Hashable, Success] = {}
        self._tasks: dict[Hashable, asyncio.Task] = {}

    @classmethod
    def from_config(
        cls,
        engine: EngineCapability,
        config: EngineConfig,
        streaming: bool = True,
        on_change: Optional[StateListener] = None,
    ) -> "EvaluationSession":
        return cls(engine, timeout=config.timeout_sec, streaming=streaming, on_change=on_change)

    def get_evaluation_state(self, key: Hashable) -> EvaluationState:
        return self._states.get(key, Idle())

    @property
    def states(self) -> dict[Hashable, EvaluationState]:
        return dict(self._states)

    def is_active(self, key: Hashable) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def _set_state(self, key: Hashable, state: EvaluationState) -> None:
        self._states[key] = state
        if self._on_change:
            self._on_change(key, state)

    def _best_known(self, key: Hashable) -> Optional[EngineEvaluation]:
        return displayed_evaluation(self._states.get(key))

    def _fallback(self, key: Hashable) -> Optional[EngineEvaluation]:
        settled = self._settled.get(key)
        candidate = self._best_known(key)
        if settled is None:
            return candidate
        if candidate is None or candidate.depth <= settled.evaluation.depth:
            return settled.evaluation
        return candidate

    def request_evaluation(self, key: Hashable, fen: str, depth: int) -> Optional[asyncio.Task]:
        current = self._states.get(key)
        if isinstance(current, Success) and depth <= current.depth and not self.is_active(key):
            logger.debug(
                "evaluation.cached",
                extra={"event": "evaluation.cached", "key": str(key), "depth": depth},
            )
            return None

        self.cancel_evaluation(key, restore=False)
        self._set_state(key, Loading(prior=self._best_known(key)))
        task = asyncio.get_running_loop().create_task(self._acquire(key, fen, depth))
        self._tasks[key] = task
        task.add_done_callback(lambda finished, key=key: self._forget(key, finished))
        return task

    async def evaluate(self, key: Hashable, fen: str, depth: int) -> EvaluationState:
        task = self.request_evaluation(key, fen, depth)
        if task is not None:
            # wait() does not raise when a newer request cancels the task.
            await asyncio.wait({task})
        return self.get_evaluation_state(key)

    def cancel_evaluation(self, key: Hashable, restore: bool = True) -> None:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return
        task.cancel()
        logger.info("evaluation.cancel", extra={"event": "evaluation.cancel", "key": str(key)})
        if not restore:
            return
        if not isinstance(self._states.get(key), Loading):
            return
        settled = self._settled.get(key)
        fallback = self._fallback(key)
        if fallback is None:
            self._set_state(key, Idle())
        elif settled is not None and fallback is settled.evaluation:
            self._set_state(key, settled)
        else:
            self._set_state(key, Success(evaluation=fallback, depth=fallback.depth))

    def reset(self) -> None:
        for task in list(self._tasks.values()):
            if not task.done():
                task.cancel()
        self._tasks.clear()
        self._states.clear()
        self._settled.clear()

    async def aclose(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        self.reset()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, key: Hashable, finished: asyncio.Task) -> None:
        if self._tasks.get(key) is finished:
            del self._tasks[key]

    async def _acquire(self, key: Hashable, fen: str, depth: int) -> None:
        token = session_id_ctx.set(self.session_id)
        logger.info(
            "evaluation.start",
            extra={"event": "evaluation.start", "key": str(key), "depth": depth},
        )
        try:
            if self.timeout is not None:
                try:
                    await asyncio.wait_for(self._run(key, fen, depth), timeout=self.timeout)
                except asyncio.TimeoutError as exc:
                    raise EngineTimeout(ENGINE_TIMEOUT_ERROR) from exc
            else:
                await self._run(key, fen, depth)
        except EngineError as exc:
            message = str(exc) or ENGINE_STREAM_ERROR
            self._set_state(key, Failed(message=message, prior=self._fallback(key)))
            logger.warning(
                "evaluation.error",
                extra={"event": "evaluation.error", "key": str(key), "error_message": message},
            )
        except Exception as exc:
            self._set_state(
                key, Failed(message=ENGINE_MALFORMED_ERROR, prior=self._fallback(key))
            )
            logger.error(
                "evaluation.failed",
                extra={"event": "evaluation.failed", "key": str(key), "error_message": str(exc)},
                exc_info=True,
            )
        finally:
            session_id_ctx.reset(token)

    async def _run(self, key: Hashable, fen: str, depth: int) -> None:
        if not self.streaming:
            evaluation = await self.engine.evaluate(fen, depth)
            if evaluation is None:
                raise EngineError(ENGINE_EMPTY_ERROR)
            if not isinstance(evaluation, EngineEvaluation):
                raise EngineError(ENGINE_MALFORMED_ERROR)
            self._complete(key, evaluation, depth)
            return

        latest: Optional[EngineEvaluation] = None
        async with aclosing(self.engine.evaluate_stream(fen, depth)) as stream:
            async for update in stream:
                if update.error:
                    raise EngineError(update.error)
                if update.evaluation is not None:
                    latest = update.evaluation
                    if not update.done:
                        self._set_state(key, Loading(prior=latest))
                if update.done:
                    break
            else:
                raise EngineError(ENGINE_STREAM_ERROR)

        if latest is None:
            raise EngineError(ENGINE_EMPTY_ERROR)
        self._complete(key, latest, depth)

    def _complete(self, key: Hashable, evaluation: EngineEvaluation, depth: int) -> None:
        success = Success(evaluation=evaluation, depth=depth)
        self._settled[key] = success
        self._set_state(key, success)
        logger.info(
            "evaluation.success",
            extra={
                "event": "evaluation.success",
                "key": str(key),
                "depth": evaluation.depth,
            },
        )
