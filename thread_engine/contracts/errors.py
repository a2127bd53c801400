"""
Exception Contracts

Exceptions carry an immutable Error so callers can record them as data
(audit log, API payloads) without string parsing.

Inside the engine, not-found reads and unmet bump preconditions are NOT
exceptions; they are represented as None / empty results / False. The API
boundary turns a missing or hidden thread into ThreadNotFoundError or
ThreadNotVisibleError so every error response carries the same payload.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional, Tuple

from .base import Error, ErrorCode


class ThreadEngineError(Exception):
    """Root of every error raised by the engine or its fact store."""

    code: ErrorCode = ErrorCode.STORE_UNAVAILABLE

    def __init__(self, message: str, context: Tuple[Tuple[str, str], ...] = ()):
        super().__init__(message)
        self.error = Error(
            code=self.code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple(context)
        )


class FactStoreError(ThreadEngineError):
    """Raised by fact store implementations. Propagated unchanged by the core."""


class StoreUnavailableError(FactStoreError):
    """The store could not read or persist a transaction."""
    code = ErrorCode.STORE_UNAVAILABLE


class TransactionConflictError(FactStoreError):
    """A batch contradicts itself (assert + retract of one fact, two values for a cardinality-one attribute)."""
    code = ErrorCode.TRANSACTION_CONFLICT


class SchemaViolationError(FactStoreError):
    """Unknown attribute, or a value of the wrong type for an attribute."""
    code = ErrorCode.SCHEMA_VIOLATION


class IntegrityError(FactStoreError):
    """The persisted hash chain does not verify."""
    code = ErrorCode.TIMELINE_CORRUPTION

    def __init__(self, message: str, sequence: Optional[int] = None):
        context = (("sequence", str(sequence)),) if sequence is not None else ()
        super().__init__(message, context)
        self.sequence = sequence


class GroupMismatchError(ThreadEngineError):
    """A tag or thread would end up attached across two groups."""
    code = ErrorCode.GROUP_MISMATCH


class ThreadNotFoundError(ThreadEngineError):
    """No fact references the requested thread."""
    code = ErrorCode.THREAD_NOT_FOUND


class ThreadNotVisibleError(ThreadEngineError):
    """The thread exists but the requesting user may not see it."""
    code = ErrorCode.THREAD_NOT_VISIBLE
