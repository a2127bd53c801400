"""
Recency & Last-Open Calculator
==============================

LAST-OPEN-AT:
=============
For a (user, thread) pair, the latest of:
- every instant at which the user's `open-thread` fact for the thread was
  retracted (read from full history, not current state)
- every creation time of a message the user wrote in the thread
- the epoch, when neither exists

Because history only grows, the value never decreases.

RANKING:
========
`recent_threads` orders by each thread's newest message, newest first.
Equal newest-message times keep thread id order.
"""

from __future__ import annotations
from datetime import timedelta
from typing import List, Optional
import time

from ..contracts.base import EPOCH, Timestamp
from ..contracts.facts import EntityRef
from ..contracts.schema import MESSAGE_CREATED_AT, MESSAGE_THREAD, OPEN_THREAD
from ..contracts.threads import Thread
from ..observability import ObservabilityEngine
from ..storage import FactStore, Snapshot
from .repository import ThreadRepository, pull_thread
from .tags import TagDirectory
from .visibility import VisibilityEvaluator


class RecencyCalculator:
    """
    Computes last-open watermarks and recency-ranked thread lists.

    Pure reads: every call works from one snapshot.
    """

    def __init__(
        self,
        store: FactStore,
        repository: Optional[ThreadRepository] = None,
        visibility: Optional[VisibilityEvaluator] = None,
        tags: Optional[TagDirectory] = None,
        observability: Optional[ObservabilityEngine] = None
    ):
        self._store = store
        self._repository = repository or ThreadRepository(store)
        self._visibility = visibility or VisibilityEvaluator(store)
        self._tags = tags or TagDirectory(store)
        self._observability = observability

    def _snapshot(self, snapshot: Optional[Snapshot]) -> Snapshot:
        return snapshot or self._store.current_snapshot()

    # =========================================================================
    # Last-open watermark
    # =========================================================================

    def last_open_at(
        self,
        thread: Thread,
        user_id: str,
        snapshot: Optional[Snapshot] = None
    ) -> Timestamp:
        snap = self._snapshot(snapshot)
        thread_ref = EntityRef.thread(thread.id)

        hides_at = [
            entry.instant
            for entry in self._store.history_of(OPEN_THREAD, EntityRef.user(user_id), snap)
            if not entry.added and entry.value == thread_ref
        ]
        messages_at = [m.created_at for m in thread.messages if m.user_id == user_id]

        return max([EPOCH] + hides_at + messages_at, key=lambda t: t.value)

    def thread_add_last_open_at(
        self,
        thread: Thread,
        user_id: str,
        snapshot: Optional[Snapshot] = None
    ) -> Thread:
        return thread.with_last_open_at(self.last_open_at(thread, user_id, snapshot))

    # =========================================================================
    # Thread lists
    # =========================================================================

    def open_threads_for_user(
        self,
        user_id: str,
        snapshot: Optional[Snapshot] = None
    ) -> List[Thread]:
        """
        Threads open for the user, ordered by thread id.

        Each is annotated with its last-open time, and its tags are cut
        down to the tags the user can currently see.
        """
        started = time.time()
        snap = self._snapshot(snapshot)
        visible_tags = self._tags.tag_ids_for_user(user_id, snap)

        thread_ids = sorted(
            v.id for v in snap.values(EntityRef.user(user_id), OPEN_THREAD)
            if isinstance(v, EntityRef)
        )
        threads = []
        for thread in self._repository.threads_by_id(thread_ids, snap):
            thread = thread.with_tag_ids(thread.tag_ids & visible_tags)
            threads.append(self.thread_add_last_open_at(thread, user_id, snap))

        self._timing("open_threads_for_user", started)
        return threads

    def recent_threads(
        self,
        user_id: str,
        group_id: str,
        window_days: int = 7,
        limit: int = 10,
        now: Optional[Timestamp] = None,
        snapshot: Optional[Snapshot] = None
    ) -> List[Thread]:
        """
        Group threads with a message newer than `now - window_days`,
        visible to the user, newest activity first, at most `limit`.
        """
        if window_days < 0:
            raise ValueError("window_days must not be negative")
        if limit < 0:
            raise ValueError("limit must not be negative")

        started = time.time()
        snap = self._snapshot(snapshot)
        now = now or Timestamp.now()
        cutoff = now.value - timedelta(days=window_days)

        candidates = []
        for thread_id in self._repository.thread_ids_in_group(group_id, snap):
            thread = pull_thread(snap, thread_id)
            if thread is None or not thread.messages:
                continue
            if not any(m.created_at.value > cutoff for m in thread.messages):
                continue
            if not self._visibility.can_user_see_thread(user_id, thread_id, snap):
                continue
            candidates.append(self.thread_add_last_open_at(thread, user_id, snap))

        # stable sort: ties stay in thread id order
        candidates.sort(key=lambda t: t.newest_message_at.value, reverse=True)

        self._timing("recent_threads", started)
        return candidates[:limit]

    def newest_message_time(
        self,
        thread_id: str,
        snapshot: Optional[Snapshot] = None
    ) -> Optional[Timestamp]:
        snap = self._snapshot(snapshot)
        times = [
            created_at
            for message in snap.referrers(MESSAGE_THREAD, EntityRef.thread(thread_id))
            for created_at in [snap.value(message, MESSAGE_CREATED_AT)]
            if isinstance(created_at, Timestamp)
        ]
        if not times:
            return None
        return max(times, key=lambda t: t.value)

    def _timing(self, operation: str, started: float):
        if self._observability:
            self._observability.collect_metric(
                "read_duration_ms",
                (time.time() - started) * 1000,
                {"operation": operation}
            )
