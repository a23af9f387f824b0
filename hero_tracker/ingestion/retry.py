"""
Retry controller for provider calls.

Backoff schedule: before attempt ``k+1`` (0-based ``k``) wait
``base_delay_ms × 3**k`` — 5 s, 15 s, 45 s … with the default base. No wait
follows the final attempt. Non-retryable errors propagate immediately.

``sleep`` is injectable so tests (and the orchestrator's cancellation-aware
wait) can replace the timer without patching ``time``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

import httpx

from hero_tracker.ingestion.rates_client import TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_FACTOR = 3


def is_retryable(exc: BaseException) -> bool:
    """Default classification: transient provider failures are retryable."""
    if isinstance(exc, TransientProviderError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    # TimeoutException is a TransportError subclass
    return isinstance(exc, httpx.TransportError)


def backoff_delay_ms(attempt_index: int, base_delay_ms: int) -> int:
    """Delay after the failed attempt ``attempt_index`` (0-based)."""
    return base_delay_ms * BACKOFF_FACTOR ** attempt_index


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay_ms: int = 5000,
    *,
    is_retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> T:
    """Invoke ``operation`` up to ``max_attempts`` times.

    Args:
        operation: Zero-argument callable to attempt.
        max_attempts: Total attempts including the first (>= 1).
        base_delay_ms: Delay after the first failure; multiplied by 3 each
            subsequent failure.
        is_retryable: Predicate deciding whether a failure is worth retrying.
        sleep: Suspension function taking seconds.
        label: Human-readable name used in log lines.

    Returns:
        The first successful result of ``operation``.

    Raises:
        ValueError: If ``max_attempts < 1``.
        Exception: The most recent failure once attempts are exhausted, or
            the first non-retryable failure.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}.")

    for attempt in range(max_attempts):
        try:
            return operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt + 1 >= max_attempts:
                logger.warning(
                    "%s: attempt %d/%d failed (%s); giving up.",
                    label, attempt + 1, max_attempts, exc,
                )
                raise
            delay_ms = backoff_delay_ms(attempt, base_delay_ms)
            logger.warning(
                "%s: attempt %d/%d failed (%s); retrying in %.1fs.",
                label, attempt + 1, max_attempts, exc, delay_ms / 1000,
            )
            sleep(delay_ms / 1000)

    raise AssertionError("unreachable")
