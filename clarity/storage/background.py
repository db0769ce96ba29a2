"""
Best-effort background writes with a dead-letter log.

Remote mirrors are written off the caller's path: the caller's operation is
complete once local persistence succeeds. Each task reports through its own
Result; failed tasks land in `dead_letters` and are logged, never raised.
"""

from __future__ import annotations

import concurrent.futures
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from clarity.errors import RemoteStoreError, Result
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event

logger = get_logger(__name__)

DEAD_LETTER_LIMIT = 100


@dataclass(frozen=True)
class DeadLetter:
    label: str
    error: str
    failed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class BackgroundWriter:
    """
    Runs remote writes on a single worker thread, in submission order.

    With inline=True tasks run synchronously on submit; the returned future is
    already resolved. Components built without a writer use this mode; the
    threaded writer is owned and shut down by ClaritySession.
    """

    def __init__(self, inline: bool = False, max_dead_letters: int = DEAD_LETTER_LIMIT) -> None:
        self.inline = inline
        self.dead_letters: deque[DeadLetter] = deque(maxlen=max_dead_letters)
        self._executor = (
            None
            if inline
            else concurrent.futures.ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="clarity-remote"
            )
        )

    def submit(
        self,
        label: str,
        fn: Callable[..., Any],
        *args: Any,
        event: str = "remote.write_failed",
    ) -> concurrent.futures.Future[Result[Any]]:
        """
        Schedule `fn(*args)` and return a future resolving to its Result.

        Side Effects:
            - Runs fn on the worker thread (or inline)
            - On RemoteStoreError: appends a DeadLetter, logs `event`, counts it
        """
        if self._executor is None:
            future: concurrent.futures.Future[Result[Any]] = concurrent.futures.Future()
            future.set_result(self._run(label, fn, args, event))
            return future
        return self._executor.submit(self._run, label, fn, args, event)

    def _run(
        self, label: str, fn: Callable[..., Any], args: tuple[Any, ...], event: str
    ) -> Result[Any]:
        try:
            return Result.success(fn(*args))
        except RemoteStoreError as e:
            self.dead_letters.append(DeadLetter(label=label, error=str(e)))
            counter(event)
            log_event(event, task=label, error=str(e))
            logger.warning("Best-effort write %s failed: %s", label, e)
            return Result.failure(e)

    def flush(self, timeout: float | None = None) -> None:
        """Block until every task submitted so far has finished."""
        if self._executor is None:
            return
        marker = self._executor.submit(lambda: None)
        marker.result(timeout=timeout)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
