#!/usr/bin/env python3
"""Exponential backoff with jitter for individual GitHub API calls."""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Optional, TypeVar

from configs.config import Config
from utils import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error codes attached to network-level failures by the API client
TRANSIENT_ERROR_CODES = frozenset({
    "CONNECTION_RESET",
    "TIMEOUT",
    "DNS_FAILURE",
    "CONNECTION_REFUSED",
})

RETRYABLE_STATUSES = frozenset({408, 429})

JITTER_RATIO = 0.25


class RetryExhaustedError(Exception):
    """Raised when a retryable call kept failing after every allowed retry."""

    def __init__(self, context: str, attempts: int, last_error: Exception) -> None:
        super().__init__(f"[{context}] All {attempts} attempts failed: {last_error}")
        self.context = context
        self.attempts = attempts
        self.last_error = last_error
        self.code = getattr(last_error, "code", "UNKNOWN")


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_retryable(exc: BaseException) -> bool:
    """Classify a failure as transient (retry) or terminal (propagate).

    Transient failures carry a known network error code, or an HTTP status
    of 408, 429 or 5xx.
    """
    if getattr(exc, "code", None) in TRANSIENT_ERROR_CODES:
        return True
    status = _status_of(exc)
    if status is None:
        return False
    return status in RETRYABLE_STATUSES or 500 <= status < 600


class BackoffPolicy:
    """Retries an operation on transient failures with capped exponential delays.

    Attempt k (k >= 1) waits ``min(initial_delay_s * multiplier ** (k - 1), max_delay_s)``
    plus up to 25% random jitter before re-invoking the operation.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay_s: float = 1.0,
        multiplier: float = 2.0,
        max_delay_s: float = 30.0,
        *,
        sleep: Callable[[float], Any] = time.sleep,
        rand: Callable[[], float] = random.random,
        should_retry: Callable[[BaseException], bool] = is_retryable,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.initial_delay_s = initial_delay_s
        self.multiplier = multiplier
        self.max_delay_s = max_delay_s
        self._sleep = sleep
        self._rand = rand
        self._should_retry = should_retry

    @classmethod
    def from_config(cls, **kwargs) -> "BackoffPolicy":
        return cls(**Config.get_retry_config(), **kwargs)

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retry ``attempt`` (1-based), jitter included."""
        base = min(self.initial_delay_s * (self.multiplier ** (attempt - 1)), self.max_delay_s)
        return base + self._rand() * base * JITTER_RATIO

    def execute(
        self,
        operation: Callable[[], T],
        context: str,
        run_attempt: Optional[Callable[[Callable[[], T]], T]] = None,
    ) -> T:
        """Run ``operation``, retrying transient failures.

        Args:
            operation: Zero-argument callable performing a single API call
            context: Label used in logs and in the exhaustion error
            run_attempt: Runs one attempt of ``operation`` and returns its result,
                e.g. by submitting it to a rate limiter. Delays between attempts
                are slept by the caller of ``execute``, outside ``run_attempt``.
                Defaults to calling ``operation`` directly.

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: If every attempt failed with a transient error
            Exception: The original error when it is not retryable
        """
        total = self.max_retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(total):
            if attempt > 0:
                delay = self.delay_for(attempt)
                logger.info(f"[{context}] Retry attempt {attempt}/{self.max_retries} after {delay * 1000:.0f}ms delay")
                metrics.incr("backoff.retry", context=context, attempt=attempt)
                self._sleep(delay)
            try:
                if run_attempt is None:
                    return operation()
                return run_attempt(operation)
            except Exception as e:
                if not self._should_retry(e):
                    logger.debug(f"[{context}] Error is not retryable: {e}")
                    raise
                logger.warning(f"[{context}] Request failed (attempt {attempt + 1}/{total}): {e}")
                last_error = e
        logger.error(f"[{context}] All {total} attempts failed")
        raise RetryExhaustedError(context, total, last_error) from last_error
