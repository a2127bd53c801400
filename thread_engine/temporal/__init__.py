"""
Temporal Immutability Layer
===========================

INVARIANTS:
- All state is derived from the append-only transaction log
- No mutation of stored data
- Same log -> same derived state (deterministic)

Modules:
- clock: Injectable time source for transaction instants
- fact_log: Append-only, hash-chained transaction storage
"""

from .clock import ClockExhausted, LogicalClock
from .fact_log import FactLog, LogState

__all__ = [
    'ClockExhausted',
    'LogicalClock',
    'FactLog',
    'LogState',
]
