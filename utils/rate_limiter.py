#!/usr/bin/env python3
"""Concurrency limiting and server rate-limit cooperation for GitHub API calls.

``RateLimiter`` bounds how many operations run at once; extra operations wait
in FIFO order for a free slot. ``ThrottleGuard`` reacts to rate-limit signals
raised by the API client by sleeping for the server-advertised duration.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from configs.config import Config
from utils import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitedError(Exception):
    """Raised by the API client when GitHub signals a rate limit.

    ``secondary`` distinguishes abuse-detection limits from an exhausted
    primary quota. ``retry_after`` is the server-advertised wait in seconds.
    """

    def __init__(self, message: str, retry_after: float, secondary: bool = False) -> None:
        super().__init__(message)
        self.retry_after = retry_after
        self.secondary = secondary
        self.code = "RATE_LIMIT"


class RateLimitExhaustedError(Exception):
    """Raised when a call stays rate limited after its dedicated retries."""

    def __init__(self, message: str, secondary: bool = False) -> None:
        super().__init__(message)
        self.secondary = secondary
        self.code = "RATE_LIMIT"


class RateLimiter:
    """Runs scheduled operations with at most ``concurrency_limit`` in flight.

    Backed by a thread pool whose work queue is FIFO, so queued operations
    are admitted in submission order as slots free up.
    """

    def __init__(self, concurrency_limit: int = 10, name: str = "github") -> None:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")
        self.concurrency_limit = concurrency_limit
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=concurrency_limit, thread_name_prefix=f"{name}-worker")
        self._lock = threading.Lock()
        self._pending: List[Future] = []
        self._active = 0
        self._peak_active = 0
        logger.debug(f"Rate limiter initialized: concurrency_limit={concurrency_limit}")

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    @property
    def peak_active(self) -> int:
        with self._lock:
            return self._peak_active

    def _run(self, operation: Callable[[], T]) -> T:
        with self._lock:
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)
        try:
            return operation()
        finally:
            with self._lock:
                self._active -= 1

    def _forget(self, future: Future) -> None:
        with self._lock:
            try:
                self._pending.remove(future)
            except ValueError:
                pass

    def schedule(self, operation: Callable[[], T]) -> "Future[T]":
        """Queue ``operation`` and return a future for its result."""
        future = self._executor.submit(self._run, operation)
        with self._lock:
            self._pending.append(future)
        future.add_done_callback(self._forget)
        return future

    def cancel_pending(self, futures: Optional[Iterable[Future]] = None) -> int:
        """Abandon queued operations that have not started yet.

        In-flight operations are left to complete or fail on their own.

        Args:
            futures: Only consider these futures (as returned by ``schedule``);
                every queued operation when None

        Returns:
            Number of operations cancelled
        """
        with self._lock:
            pending = list(self._pending) if futures is None else list(futures)
        cancelled = sum(1 for future in pending if future.cancel())
        if cancelled:
            logger.info(f"Cancelled {cancelled} queued operations")
        return cancelled

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "RateLimiter":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)


class ThrottleGuard:
    """Waits out GitHub rate limits before handing failures to the backoff policy.

    Primary rate limits are retried at most ``primary_max_retries`` times and
    secondary (abuse detection) limits at most ``secondary_max_retries`` times;
    after that the call fails with ``RateLimitExhaustedError``.
    """

    def __init__(
        self,
        primary_max_retries: int = 3,
        secondary_max_retries: int = 2,
        max_wait_s: float = 900,
        *,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.primary_max_retries = primary_max_retries
        self.secondary_max_retries = secondary_max_retries
        self.max_wait_s = max_wait_s
        self._sleep = sleep

    @classmethod
    def from_config(cls, **kwargs) -> "ThrottleGuard":
        return cls(**Config.get_rate_limit_config(), **kwargs)

    def call(self, operation: Callable[[], T], context: str) -> T:
        retries: Dict[bool, int] = {False: 0, True: 0}
        while True:
            try:
                return operation()
            except RateLimitedError as e:
                kind = "Secondary rate limit" if e.secondary else "Rate limit"
                budget = self.secondary_max_retries if e.secondary else self.primary_max_retries
                count = retries[e.secondary]
                if count >= budget:
                    logger.error(f"{kind} retry exhausted for {context}")
                    raise RateLimitExhaustedError(
                        f"{kind} retry exhausted for {context} after {count} retries", secondary=e.secondary
                    ) from e
                retries[e.secondary] = count + 1
                wait_s = max(0.0, min(float(e.retry_after), float(self.max_wait_s)))
                logger.warning(f"{kind} hit for {context}. Retrying after {wait_s:.0f}s (attempt {count + 1})")
                metrics.incr("throttle.wait", value=wait_s, context=context, secondary=e.secondary)
                self._sleep(wait_s)
