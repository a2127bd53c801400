"""
Engine Orchestration Module

Unified interface wiring the fact store, the thread core and
observability together.

DESIGN PRINCIPLES:
==================
1. Layers communicate ONLY through contracts
2. Reads take one snapshot per call and hold no state between calls
3. Writes go through `commit`, which is audited
4. Store errors propagate unchanged; nothing here retries
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional
import os
import time

from .contracts.audit import AuditEventType
from .contracts.base import Timestamp
from .contracts.errors import ThreadEngineError
from .contracts.facts import TxOp, TxReport
from .contracts.threads import TagSummary, Thread
from .core import (
    RecencyCalculator, SubscriptionManager, TagDirectory,
    ThreadRepository, VisibilityEvaluator
)
from .observability import ObservabilityConfig, ObservabilityEngine
from .storage import FactStoreConfig, InMemoryFactStore, Snapshot, create_fact_store
from .temporal.clock import LogicalClock


@dataclass
class RecencyConfig:
    """Defaults for recent-thread listings."""
    window_days: int = 7
    limit: int = 10

    def __post_init__(self):
        if self.window_days < 0:
            raise ValueError("window_days must not be negative")
        if self.limit < 0:
            raise ValueError("limit must not be negative")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class EngineConfig:
    """Unified configuration for the engine."""
    storage: FactStoreConfig = None
    recency: RecencyConfig = None
    observability: ObservabilityConfig = None

    def __post_init__(self):
        self.storage = self.storage or FactStoreConfig()
        self.recency = self.recency or RecencyConfig()
        self.observability = self.observability or ObservabilityConfig()

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """Build configuration from THREAD_ENGINE_* environment variables."""
        backend_type = os.environ.get("THREAD_ENGINE_STORAGE_BACKEND", "memory")
        storage_dir = os.environ.get("THREAD_ENGINE_STORAGE_DIR")
        if backend_type == "file" and not storage_dir:
            storage_dir = os.path.join(os.getcwd(), "data", "facts")

        return cls(
            storage=FactStoreConfig(backend_type=backend_type, storage_dir=storage_dir),
            recency=RecencyConfig(
                window_days=_env_int("THREAD_ENGINE_RECENT_WINDOW_DAYS", 7),
                limit=_env_int("THREAD_ENGINE_RECENT_LIMIT", 10)
            ),
            observability=ObservabilityConfig(
                log_level=os.environ.get("THREAD_ENGINE_LOG_LEVEL", "INFO"),
                retention=_env_int("THREAD_ENGINE_AUDIT_RETENTION", 10_000)
            )
        )


class ThreadEngine:
    """
    Thread & Subscription Engine.

    LAYER FLOW:
    ===========
    Reads:  FactStore -> ThreadRepository -> Visibility / Recency -> caller
    Writes: SubscriptionManager (batch) -> commit -> FactStore

    The engine keeps no per-thread or per-user state of its own.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[InMemoryFactStore] = None,
        clock: Optional[LogicalClock] = None
    ):
        self._config = config or EngineConfig()
        self._observability = ObservabilityEngine(self._config.observability)
        self._store = store or create_fact_store(
            self._config.storage, clock=clock, observability=self._observability
        )

        self._repository = ThreadRepository(self._store)
        self._tags = TagDirectory(self._store)
        self._visibility = VisibilityEvaluator(self._store)
        self._subscriptions = SubscriptionManager(
            self._store, self._tags, observability=self._observability
        )
        self._recency = RecencyCalculator(
            self._store,
            repository=self._repository,
            visibility=self._visibility,
            tags=self._tags,
            observability=self._observability
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def store(self) -> InMemoryFactStore:
        return self._store

    @property
    def observability(self) -> ObservabilityEngine:
        return self._observability

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._subscriptions

    # =========================================================================
    # WRITE INTERFACE
    # =========================================================================

    def commit(self, ops: Iterable[TxOp]) -> TxReport:
        """Apply one batch as a single transaction."""
        try:
            return self._store.apply_transaction(ops)
        except ThreadEngineError as e:
            self._observability.log_audit(
                action="commit_failed",
                layer="engine",
                event_type=AuditEventType.ERROR,
                metadata=(("code", e.error.code.name), ("message", e.error.message))
            )
            raise

    def hide_thread(self, user_id: str, thread_id: str) -> TxReport:
        with self._subscriptions.pair_lock(user_id, thread_id):
            return self.commit(self._subscriptions.hide_thread_txn(user_id, thread_id))

    def show_thread(self, user_id: str, thread_id: str) -> TxReport:
        with self._subscriptions.pair_lock(user_id, thread_id):
            return self.commit(self._subscriptions.show_thread_txn(user_id, thread_id))

    def unsubscribe(self, user_id: str, thread_id: str) -> TxReport:
        with self._subscriptions.pair_lock(user_id, thread_id):
            return self.commit(self._subscriptions.unsubscribe_txn(user_id, thread_id))

    def tag_thread(self, group_id: str, thread_id: str, tag_id: str) -> TxReport:
        """
        Build and commit the tagging batch.

        The batch is built and applied under the store's write lock so the
        fan-out set cannot go stale between the read and the commit.
        """
        with self._store.write_lock:
            ops = self._subscriptions.tag_thread_txn(group_id, thread_id, tag_id)
            return self.commit(ops)

    def bump_last_open(self, user_id: str, thread_id: str) -> bool:
        return self._subscriptions.update_thread_last_open(user_id, thread_id)

    # =========================================================================
    # READ INTERFACE
    # =========================================================================

    def snapshot(self) -> Snapshot:
        return self._store.current_snapshot()

    def thread_by_id(self, thread_id: str) -> Optional[Thread]:
        return self._timed("thread_by_id", self._repository.thread_by_id, thread_id)

    def threads_by_id(self, thread_ids: Iterable[str]) -> List[Thread]:
        return self._repository.threads_by_id(thread_ids)

    def thread_group_id(self, thread_id: str) -> Optional[str]:
        return self._repository.thread_group_id(thread_id)

    def can_user_see_thread(self, user_id: str, thread_id: str) -> bool:
        return self._timed(
            "can_user_see_thread", self._visibility.can_user_see_thread, user_id, thread_id
        )

    def thread_has_tags(self, thread_id: str) -> bool:
        return self._visibility.thread_has_tags(thread_id)

    def last_open_at(self, thread_id: str, user_id: str) -> Timestamp:
        """
        Last-open watermark by thread id.

        An unknown thread has no hides and no messages, so it yields the epoch.
        """
        snap = self._store.current_snapshot()
        thread = self._repository.thread_by_id(thread_id, snap) or Thread(id=thread_id, group_id=None)
        return self._recency.last_open_at(thread, user_id, snap)

    def open_threads_for_user(self, user_id: str) -> List[Thread]:
        return self._recency.open_threads_for_user(user_id)

    def recent_threads(
        self,
        user_id: str,
        group_id: str,
        window_days: Optional[int] = None,
        limit: Optional[int] = None,
        now: Optional[Timestamp] = None
    ) -> List[Thread]:
        return self._recency.recent_threads(
            user_id,
            group_id,
            window_days=self._config.recency.window_days if window_days is None else window_days,
            limit=self._config.recency.limit if limit is None else limit,
            now=now
        )

    def newest_message_time(self, thread_id: str) -> Optional[Timestamp]:
        return self._recency.newest_message_time(thread_id)

    def users_subscribed_to_thread(self, thread_id: str) -> FrozenSet[str]:
        return self._subscriptions.users_subscribed_to_thread(thread_id)

    def users_with_thread_open(self, thread_id: str) -> FrozenSet[str]:
        return self._subscriptions.users_with_thread_open(thread_id)

    def subscribed_thread_ids_for_user(self, user_id: str) -> FrozenSet[str]:
        return self._subscriptions.subscribed_thread_ids_for_user(user_id)

    def tag_ids_for_user(self, user_id: str) -> FrozenSet[str]:
        return self._tags.tag_ids_for_user(user_id)

    def users_subscribed_to_tag(self, tag_id: str) -> FrozenSet[str]:
        return self._tags.users_subscribed_to_tag(tag_id)

    def tag_summaries(self, group_id: str) -> List[TagSummary]:
        return self._tags.tag_summaries(group_id)

    def _timed(self, operation: str, fn, *args):
        started = time.time()
        result = fn(*args)
        self._observability.collect_metric(
            "read_duration_ms",
            (time.time() - started) * 1000,
            {"operation": operation}
        )
        return result

    # =========================================================================
    # OBSERVABILITY INTERFACE
    # =========================================================================

    def get_audit_report(self) -> dict:
        return self._observability.generate_audit_report()

    def verify_integrity(self):
        return self._store.verify_integrity()
