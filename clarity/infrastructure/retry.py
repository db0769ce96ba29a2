"""
Linear-backoff retry for model calls.

Attempt n (1-based) failing with a retryable error waits n * step seconds before
attempt n + 1. Non-retryable errors propagate on the attempt that raised them.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from clarity.config import LLM_BACKOFF_STEP_SECONDS
from clarity.errors import RetryableModelError
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event

logger = get_logger(__name__)


def _before_sleep(stage: str) -> Callable[[RetryCallState], None]:
    def hook(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        counter(f"{stage}.retry")
        logger.warning(
            "%s attempt %d failed (%s), retrying in %.1fs",
            stage,
            retry_state.attempt_number,
            exc,
            delay,
        )
        log_event(
            f"{stage}.retry_scheduled",
            attempt=retry_state.attempt_number,
            delay=delay,
            status=getattr(exc, "status_code", None),
        )

    return hook


def linear_retrying(
    retries: int,
    stage: str = "llm",
    step: float = LLM_BACKOFF_STEP_SECONDS,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> Retrying:
    """Build a Retrying controller making retries + 1 attempts in total."""
    if retries < 0:
        raise ValueError("retries must be >= 0")

    return Retrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_incrementing(start=step, increment=step),
        retry=retry_if_exception_type(RetryableModelError),
        before_sleep=_before_sleep(stage),
        sleep=sleep_fn,
        reraise=True,
    )
