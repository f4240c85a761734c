"""Retry policy and process-wide circuit breaker.

The breaker guards calls into the document store: transient
:class:`~docrag.errors.StoreUnavailableError` failures are retried with
exponential backoff, and after ``failure_threshold`` exhausted calls the
circuit opens and every caller is rejected with
:class:`~docrag.errors.CircuitOpenError` until the cool-down elapses.

One breaker instance is shared by the ingestion coordinator and the
retrieval engine; it is passed to them explicitly rather than looked up
from a module global.

Usage::

    breaker = CircuitBreaker()
    doc = await breaker.call(lambda: store.save_document(doc))
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from docrag.config import settings
from docrag.errors import CircuitOpenError, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff for a fixed set of exceptions.

    Attributes
    ----------
    max_retries:
        Retries after the first attempt (``2`` means three attempts total).
    backoff:
        Delay in seconds before the first retry.
    multiplier:
        Factor applied to the delay after each retry. ``1.0`` gives a
        fixed backoff.
    retry_on:
        Exception types that count as transient. Anything else propagates
        immediately.
    """

    max_retries: int = 2
    backoff: float = 1.0
    multiplier: float = 2.0
    retry_on: tuple[type[BaseException], ...] = field(default=(StoreUnavailableError,))

    def delay_for(self, retry_number: int) -> float:
        """Return the sleep before retry *retry_number* (0-based)."""
        return self.backoff * (self.multiplier**retry_number)

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str = "operation") -> T:
        """Await *operation*, retrying on ``retry_on`` until the budget is spent.

        The last transient exception is re-raised unchanged when retries
        are exhausted.
        """
        retries = 0
        while True:
            try:
                return await operation()
            except self.retry_on as exc:
                if retries >= self.max_retries:
                    raise
                delay = self.delay_for(retries)
                retries += 1
                logger.warning(
                    "Retrying %s after %s (attempt %d of %d, sleeping %.2fs)",
                    label,
                    type(exc).__name__,
                    retries,
                    self.max_retries,
                    delay,
                )
                await asyncio.sleep(delay)


@dataclass(frozen=True)
class CircuitState:
    """Snapshot of the breaker's counters."""

    failure_count: int
    is_open: bool
    last_failure_at: float | None


class CircuitBreaker:
    """Shared fast-fail guard around store calls.

    Parameters
    ----------
    failure_threshold:
        Consecutive failed calls (after their own retries) that open the
        circuit.
    cooldown_seconds:
        How long the circuit stays open before closing itself.
    retry_policy:
        Per-call retry policy; defaults to ``settings.store_max_retries``
        retries of :class:`StoreUnavailableError` with exponential backoff.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        failure_threshold: int = settings.circuit_failure_threshold,
        cooldown_seconds: float = settings.circuit_cooldown_seconds,
        *,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.store_max_retries,
            backoff=settings.store_backoff,
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._failure_count = 0
        self._open = False
        self._last_failure_at: float | None = None

    # -- state ----------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_reset_locked()
            return CircuitState(self._failure_count, self._open, self._last_failure_at)

    @property
    def is_open(self) -> bool:
        return self.state.is_open

    def reset(self) -> None:
        with self._lock:
            self._close_locked()

    def _close_locked(self) -> None:
        self._open = False
        self._failure_count = 0

    def _maybe_reset_locked(self) -> None:
        if self._open and self._last_failure_at is not None:
            if self._clock() - self._last_failure_at >= self.cooldown_seconds:
                self._close_locked()
                logger.info("Circuit reset after %.0fs cool-down", self.cooldown_seconds)

    def _check_closed(self) -> None:
        with self._lock:
            self._maybe_reset_locked()
            if not self._open:
                return
            elapsed = self._clock() - (self._last_failure_at or 0.0)
            retry_after = max(self.cooldown_seconds - elapsed, 0.0)
        raise CircuitOpenError(
            f"Store is recovering, please try again in {retry_after:.0f} seconds",
            retry_after=retry_after,
        )

    def _record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._clock()
            failures = self._failure_count
            if failures >= self.failure_threshold and not self._open:
                self._open = True
                logger.error(
                    "Circuit opened after %d failures, blocking store calls for %.0fs",
                    failures,
                    self.cooldown_seconds,
                )
                return
        logger.warning("Store failure #%d, circuit opens at %d", failures, self.failure_threshold)

    def _record_success(self) -> None:
        with self._lock:
            self._failure_count = 0

    # -- public API -----------------------------------------------------------

    async def call(self, operation: Callable[[], Awaitable[T]], *, label: str = "store call") -> T:
        """Run *operation* through the breaker.

        Raises
        ------
        CircuitOpenError
            The circuit is open; *operation* was not attempted.
        StoreUnavailableError
            Retries were exhausted. The failure has been counted.
        """
        self._check_closed()
        try:
            result = await self.retry_policy.run(operation, label=label)
        except self.retry_policy.retry_on:
            self._record_failure()
            raise
        self._record_success()
        return result
