"""
Error taxonomy for Clarity.

Every failure the analysis layer can observe maps to exactly one ErrorKind.
Collaborator-facing best-effort calls return a Result instead of raising, so the
caller decides explicitly whether to swallow or propagate.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Closed set of failure kinds."""

    TRANSIENT = "transient"  # 429, 5xx, network unreachable
    CLIENT = "client"  # non-retryable 4xx from the model provider
    PARSE = "parse"  # response repair exhausted
    VALIDATION = "validation"  # valid JSON missing required fields
    LOCAL_PERSISTENCE = "local_persistence"
    REMOTE_PERSISTENCE = "remote_persistence"
    COLLABORATOR = "collaborator"  # entry store, notes workspace


class ClarityError(RuntimeError):
    kind: ErrorKind = ErrorKind.COLLABORATOR


class RetryableModelError(ClarityError):
    """Rate limit, server error or unreachable host. status_code is None for network errors."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ModelRequestError(ClarityError):
    """Non-success status that retrying cannot fix."""

    kind = ErrorKind.CLIENT

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class ParseFailure(ClarityError):
    """Raised when no repair pass yields parseable JSON."""

    kind = ErrorKind.PARSE

    def __init__(self, message: str, tail: str = ""):
        super().__init__(message)
        self.tail = tail


class LocalPersistenceError(ClarityError):
    kind = ErrorKind.LOCAL_PERSISTENCE


class RemoteStoreError(ClarityError):
    kind = ErrorKind.REMOTE_PERSISTENCE


class CollaboratorError(ClarityError):
    kind = ErrorKind.COLLABORATOR

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OperationInFlight(ClarityError):
    """A second run was requested while the same operation is still running."""

    kind = ErrorKind.CLIENT


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        if self.error is None:
            return None
        if isinstance(self.error, ClarityError):
            return self.error.kind
        return ErrorKind.COLLABORATOR

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> Result[T]:
        return cls(error=error)

    def unwrap(self) -> T | None:
        if self.error is not None:
            raise self.error
        return self.value
