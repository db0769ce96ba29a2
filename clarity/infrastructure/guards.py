"""In-flight guards preventing overlapping runs of the same operation."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator

from clarity.errors import OperationInFlight
from clarity.observability.telemetry import counter


class InFlightGuard:
    """Boolean guard per operation kind (e.g. "loading", "updating")."""

    def __init__(self) -> None:
        self._held: set[str] = set()

    def is_busy(self, *operations: str) -> bool:
        if not operations:
            return bool(self._held)
        return any(op in self._held for op in operations)

    @contextlib.contextmanager
    def hold(self, operation: str, *blocking: str) -> Iterator[None]:
        """Hold `operation` for the duration of the block.

        Raises OperationInFlight if `operation` or any of `blocking` is already held.
        """
        busy = [op for op in (operation, *blocking) if op in self._held]
        if busy:
            counter("guard.rejected")
            raise OperationInFlight(f"{operation} rejected: {', '.join(busy)} in flight")
        self._held.add(operation)
        try:
            yield
        finally:
            self._held.discard(operation)
