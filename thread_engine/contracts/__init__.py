"""
Contracts Module

This module defines the explicit interfaces and data transfer objects
that form the contracts between layers. All inter-layer communication
MUST use these contracts.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Errors are data (Error/ErrorCode) carried by a small exception tree
3. All timestamps use UTC and are never mutated
4. Entities are addressed by EntityRef, never by storage-internal keys
"""

from .base import EPOCH, Error, ErrorCode, Timestamp, TimeRange
from .errors import (
    FactStoreError,
    GroupMismatchError,
    IntegrityError,
    SchemaViolationError,
    StoreUnavailableError,
    ThreadEngineError,
    ThreadNotFoundError,
    ThreadNotVisibleError,
    TransactionConflictError,
)
from .facts import (
    EntityKind,
    EntityRef,
    Fact,
    FactPattern,
    HistoryEntry,
    Op,
    Transaction,
    TxOp,
    TxReport,
    assert_fact,
    retract_fact,
)
from .threads import Message, TagSummary, Thread

__all__ = [
    'EPOCH',
    'Error',
    'ErrorCode',
    'Timestamp',
    'TimeRange',
    'ThreadEngineError',
    'FactStoreError',
    'StoreUnavailableError',
    'TransactionConflictError',
    'SchemaViolationError',
    'IntegrityError',
    'GroupMismatchError',
    'ThreadNotFoundError',
    'ThreadNotVisibleError',
    'EntityKind',
    'EntityRef',
    'Fact',
    'FactPattern',
    'HistoryEntry',
    'Op',
    'Transaction',
    'TxOp',
    'TxReport',
    'assert_fact',
    'retract_fact',
    'Message',
    'TagSummary',
    'Thread',
]
