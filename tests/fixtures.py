"""
Test Fixtures

Deterministic clocks, engines and seed data shared by the test packages.
All timestamps are fixed - no wall-clock reads unless a test asks for one.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable

from thread_engine.contracts.base import Timestamp
from thread_engine.engine import ThreadEngine
from thread_engine.ingestion import (
    add_user_to_group_txn, create_group_txn, create_message_txn, create_tag_txn
)
from thread_engine.observability import ObservabilityEngine
from thread_engine.storage import InMemoryFactStore
from thread_engine.temporal.clock import LogicalClock


# =============================================================================
# FIXED TIMESTAMPS (deterministic)
# =============================================================================

T0 = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
NOW = Timestamp(T0 + timedelta(days=30))


def at(**offset) -> Timestamp:
    """Timestamp relative to T0, e.g. at(minutes=5)."""
    return Timestamp(T0 + timedelta(**offset))


def stepping_clock(start: datetime = T0, step: timedelta = timedelta(seconds=1),
                   count: int = 5000) -> LogicalClock:
    """Replay clock ticking `step` apart, one tick per committed transaction."""
    return LogicalClock.from_ticks(start + step * i for i in range(count))


# =============================================================================
# BUILDERS
# =============================================================================

def make_store(clock: LogicalClock = None, observability: ObservabilityEngine = None) -> InMemoryFactStore:
    return InMemoryFactStore(clock=clock or stepping_clock(), observability=observability)


def make_engine(clock: LogicalClock = None) -> ThreadEngine:
    return ThreadEngine(clock=clock or stepping_clock())


def seed_group(engine: ThreadEngine, group_id: str, user_ids: Iterable[str],
               tag_ids: Iterable[str] = ()):
    engine.commit(create_group_txn(group_id))
    for user_id in user_ids:
        engine.commit(add_user_to_group_txn(group_id, user_id))
    for tag_id in tag_ids:
        engine.commit(create_tag_txn(tag_id, group_id))


def post(engine: ThreadEngine, message_id: str, thread_id: str, group_id: str,
         user_id: str, created_at: Timestamp, mentioned: Iterable[str] = ()):
    return engine.commit(create_message_txn(
        message_id, thread_id, group_id, user_id, created_at,
        content=f"message {message_id}", mentioned_user_ids=mentioned
    ))
