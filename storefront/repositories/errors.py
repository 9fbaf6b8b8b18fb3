"""Typed repository failures.

Repository methods degrade to a safe default by default; with
``raise_errors=True`` they raise one of these instead so the caller can tell
a missing record from an infrastructure failure.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class RepositoryError(Exception):
    """Base class for repository failures."""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(self, message: str, entity: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.entity = entity
        self.cause = cause


class RecordNotFoundError(RepositoryError):
    """The record does not exist in the relational store."""

    kind = ErrorKind.NOT_FOUND


class TransientStoreError(RepositoryError):
    """Retries were exhausted on a transient failure."""

    kind = ErrorKind.TRANSIENT


class PermanentStoreError(RepositoryError):
    """The store rejected the call (constraint violation, bad input, ...)."""

    kind = ErrorKind.PERMANENT
