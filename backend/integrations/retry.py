"""
Bounded retry executor for transport calls.

Built on tenacity. The executor:
  - classifies every failure with integrations.errors.classify_error,
  - retries only retryable kinds, and never more than policy.max_attempts,
  - re-raises the original exception (never a wrapper),
  - reports every attempt (success or failure) to an optional hook,
  - lets a cancellation event cut the wait before the next attempt short.
    An attempt already in flight is never interrupted.

Callers that prefer not to branch on exceptions use ``run()``, which
returns a RetryResult carrying the final ErrorClassification.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from integrations.errors import ErrorClassification, classify_error

logger = structlog.get_logger()

T = TypeVar("T")

SOA_RETRY_SCHEDULE_MS = (5000, 15000, 30000)
SOA_MAX_ATTEMPTS = 3
SERVERLESS_MAX_ATTEMPTS = 5
BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 60000


# ── Policy ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RetryPolicy:
    """Inter-attempt delays. ``schedule_ms[i]`` is the wait after failure i+1."""

    schedule_ms: tuple[int, ...] = SOA_RETRY_SCHEDULE_MS
    max_attempts: int = SOA_MAX_ATTEMPTS

    @classmethod
    def fixed(cls, schedule_ms: Sequence[int], max_attempts: int | None = None) -> "RetryPolicy":
        """Fixed waits. Without ``max_attempts`` every listed wait is used once."""
        schedule = tuple(int(delay) for delay in schedule_ms)
        if max_attempts is None:
            max_attempts = len(schedule) + 1
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        return cls(schedule_ms=schedule, max_attempts=max_attempts)

    @classmethod
    def exponential(
        cls,
        max_attempts: int = SERVERLESS_MAX_ATTEMPTS,
        base_ms: int = BACKOFF_BASE_MS,
        cap_ms: int = BACKOFF_CAP_MS,
    ) -> "RetryPolicy":
        """min(2^attempt * base, cap) after each failed attempt (2s, 4s, 8s, ...)."""
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        schedule = tuple(min((2**attempt) * base_ms, cap_ms) for attempt in range(1, max_attempts))
        return cls(schedule_ms=schedule, max_attempts=max_attempts)

    def delay_ms(self, failed_attempt: int) -> int:
        """Wait after the given 1-based failed attempt."""
        if not self.schedule_ms:
            return 0
        index = min(failed_attempt - 1, len(self.schedule_ms) - 1)
        return self.schedule_ms[index]


# ── Attempt records / results ─────────────────────────────────────────────


@dataclass(frozen=True)
class AttemptRecord:
    operation: str
    attempt: int
    max_attempts: int
    succeeded: bool
    elapsed_ms: int
    classification: ErrorClassification | None = None
    delay_ms: int | None = None  # None when no further attempt follows


@dataclass
class RetryResult(Generic[T]):
    value: T | None = None
    error: BaseException | None = None
    classification: ErrorClassification | None = None
    attempts: int = 0
    cancelled: bool = False
    history: list[AttemptRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class RetryCancelled(Exception):
    """Raised internally when the cancellation event interrupts a wait."""


AttemptHook = Callable[[AttemptRecord], Any]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class _RunState:
    attempt: int = 0
    started: float = 0.0
    last_error: BaseException | None = None
    last_classification: ErrorClassification | None = None
    history: list[AttemptRecord] = field(default_factory=list)


# ── Executor ──────────────────────────────────────────────────────────────


class RetryExecutor:
    def __init__(
        self,
        policy: RetryPolicy,
        *,
        classifier: Callable[[BaseException], ErrorClassification] = classify_error,
        sleep: Sleep = asyncio.sleep,
        on_attempt: AttemptHook | None = None,
    ):
        self.policy = policy
        self.classifier = classifier
        self._sleep = sleep
        self.on_attempt = on_attempt

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str = "operation",
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        """Run ``operation`` under the policy; return its value or raise its last error."""
        result = await self.run(operation, name=name, cancel_event=cancel_event)
        return result.unwrap()

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str = "operation",
        cancel_event: asyncio.Event | None = None,
    ) -> RetryResult[T]:
        state = _RunState()

        async def attempt_once() -> T:
            state.attempt += 1
            state.started = time.perf_counter()
            return await operation()

        def should_retry(exc: BaseException) -> bool:
            if not isinstance(exc, Exception):
                return False
            classification = self.classifier(exc)
            state.last_error = exc
            state.last_classification = classification
            return classification.retryable

        def before_sleep(retry_state: RetryCallState) -> None:
            delay_ms = int(round(retry_state.next_action.sleep * 1000)) if retry_state.next_action else 0
            self._record(state, name, succeeded=False, delay_ms=delay_ms)
            logger.warning(
                "retry.attempt_failed",
                operation=name,
                attempt=state.attempt,
                max_attempts=self.policy.max_attempts,
                delay_ms=delay_ms,
                **state.last_classification.as_log_fields(),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=lambda retry_state: self.policy.delay_ms(retry_state.attempt_number) / 1000,
            retry=retry_if_exception(should_retry),
            before_sleep=before_sleep,
            sleep=self._cancellable_sleep(cancel_event),
            reraise=True,
        )

        try:
            value = await retrying(attempt_once)
        except RetryCancelled:
            logger.warning(
                "retry.cancelled",
                operation=name,
                attempts=state.attempt,
                **state.last_classification.as_log_fields(),
            )
            return RetryResult(
                error=state.last_error,
                classification=state.last_classification,
                attempts=state.attempt,
                cancelled=True,
                history=state.history,
            )
        except Exception as exc:
            if state.last_error is not exc:
                # Raised outside the retry predicate (e.g. a BaseException subclass path).
                state.last_error = exc
                state.last_classification = self.classifier(exc)
            self._record(state, name, succeeded=False, delay_ms=None)
            classification = state.last_classification
            reason = "non_retryable" if not classification.retryable else "attempts_exhausted"
            logger.error(
                "retry.gave_up",
                operation=name,
                reason=reason,
                attempts=state.attempt,
                max_attempts=self.policy.max_attempts,
                **classification.as_log_fields(),
            )
            return RetryResult(
                error=exc,
                classification=classification,
                attempts=state.attempt,
                history=state.history,
            )

        self._record(state, name, succeeded=True, delay_ms=None)
        if state.attempt > 1:
            logger.info("retry.succeeded_after_retries", operation=name, attempts=state.attempt)
        return RetryResult(value=value, attempts=state.attempt, history=state.history)

    def _record(self, state: _RunState, name: str, *, succeeded: bool, delay_ms: int | None) -> None:
        record = AttemptRecord(
            operation=name,
            attempt=state.attempt,
            max_attempts=self.policy.max_attempts,
            succeeded=succeeded,
            elapsed_ms=int((time.perf_counter() - state.started) * 1000),
            classification=None if succeeded else state.last_classification,
            delay_ms=delay_ms,
        )
        state.history.append(record)
        if self.on_attempt is not None:
            try:
                self.on_attempt(record)
            except Exception as exc:  # noqa: BLE001
                logger.error("retry.hook_failed", operation=name, attempt=record.attempt, error=str(exc))

    def _cancellable_sleep(self, cancel_event: asyncio.Event | None) -> Sleep:
        async def _sleep(seconds: float) -> None:
            if cancel_event is None:
                await self._sleep(seconds)
                return
            if cancel_event.is_set():
                raise RetryCancelled()

            sleeper = asyncio.ensure_future(self._sleep(seconds))
            waiter = asyncio.ensure_future(cancel_event.wait())
            try:
                done, _ = await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (sleeper, waiter):
                    if not task.done():
                        task.cancel()
            if waiter in done:
                raise RetryCancelled()

        return _sleep
