"""
Subscription & Open-State Manager
=================================

Builds the transactions that open, hide, subscribe and unsubscribe a
user relative to a thread, and that tag a thread.

RULES:
1. Builders return a complete batch and never commit it; the caller does.
2. Hiding only touches `open-thread`; `subscribed-thread` is left alone.
3. Tagging fans out subscription + open state to the tag's broadcast
   list, skipping users already subscribed to the thread.
4. The last-open bump is the one operation that commits, and it commits
   twice: a hide, then a show. Re-asserting an open thread is dropped by
   the store, so a single transaction would never move the timestamp.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, FrozenSet, List, Optional, Tuple
import threading

from ..contracts.audit import AuditEventType
from ..contracts.base import ErrorCode
from ..contracts.errors import GroupMismatchError
from ..contracts.facts import EntityRef, Transaction, assert_fact, retract_fact
from ..contracts.schema import (
    OPEN_THREAD, SUBSCRIBED_THREAD, THREAD_GROUP, THREAD_TAG
)
from ..observability import ObservabilityEngine
from ..storage import FactStore, Snapshot
from .tags import TagDirectory


class KeyedLocks:
    """
    One lock per key, alive only while some caller holds or waits on it.

    Entries are reference counted and dropped on the last release, so the
    table never outgrows the number of keys in use at once.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], List] = {}

    @contextmanager
    def hold(self, key: Tuple[str, str]):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class SubscriptionManager:
    """
    Transaction builders for per-user thread state.

    The only in-process state is the lock table that serializes writes to
    one (user, thread) pair. Callers committing hide, show or unsubscribe
    batches take `pair_lock` so they cannot interleave with a bump.
    """

    def __init__(
        self,
        store: FactStore,
        tags: Optional[TagDirectory] = None,
        observability: Optional[ObservabilityEngine] = None
    ):
        self._store = store
        self._tags = tags or TagDirectory(store)
        self._observability = observability
        self._pair_locks = KeyedLocks()

    def pair_lock(self, user_id: str, thread_id: str):
        """Context manager serializing open-state writes for one (user, thread)."""
        return self._pair_locks.hold((user_id, thread_id))

    @property
    def active_pair_locks(self) -> int:
        return len(self._pair_locks)

    def _snapshot(self, snapshot: Optional[Snapshot]) -> Snapshot:
        return snapshot or self._store.current_snapshot()

    # =========================================================================
    # Queries
    # =========================================================================

    def users_subscribed_to_thread(
        self, thread_id: str, snapshot: Optional[Snapshot] = None
    ) -> FrozenSet[str]:
        refs = self._snapshot(snapshot).referrers(SUBSCRIBED_THREAD, EntityRef.thread(thread_id))
        return frozenset(r.id for r in refs)

    def users_with_thread_open(
        self, thread_id: str, snapshot: Optional[Snapshot] = None
    ) -> FrozenSet[str]:
        refs = self._snapshot(snapshot).referrers(OPEN_THREAD, EntityRef.thread(thread_id))
        return frozenset(r.id for r in refs)

    def subscribed_thread_ids_for_user(
        self, user_id: str, snapshot: Optional[Snapshot] = None
    ) -> FrozenSet[str]:
        values = self._snapshot(snapshot).values(EntityRef.user(user_id), SUBSCRIBED_THREAD)
        return frozenset(v.id for v in values if isinstance(v, EntityRef))

    def is_thread_open(self, user_id: str, thread_id: str, snapshot: Optional[Snapshot] = None) -> bool:
        return self._snapshot(snapshot).holds(
            EntityRef.user(user_id), OPEN_THREAD, EntityRef.thread(thread_id)
        )

    # =========================================================================
    # Transaction builders
    # =========================================================================

    def hide_thread_txn(self, user_id: str, thread_id: str) -> Transaction:
        return (
            retract_fact(EntityRef.user(user_id), OPEN_THREAD, EntityRef.thread(thread_id)),
        )

    def show_thread_txn(self, user_id: str, thread_id: str) -> Transaction:
        return (
            assert_fact(EntityRef.user(user_id), OPEN_THREAD, EntityRef.thread(thread_id)),
        )

    def unsubscribe_txn(self, user_id: str, thread_id: str) -> Transaction:
        user = EntityRef.user(user_id)
        thread = EntityRef.thread(thread_id)
        return (
            retract_fact(user, SUBSCRIBED_THREAD, thread),
            retract_fact(user, OPEN_THREAD, thread),
        )

    def tag_thread_txn(
        self,
        group_id: str,
        thread_id: str,
        tag_id: str,
        snapshot: Optional[Snapshot] = None
    ) -> Transaction:
        """
        Attach a tag to a thread, creating the thread if needed.

        The batch must be committed as one transaction. Raises
        GroupMismatchError when the tag has no owning group, or when the
        tag or an existing thread belongs to another group.
        """
        snap = self._snapshot(snapshot)
        group = EntityRef.group(group_id)
        thread = EntityRef.thread(thread_id)
        tag = EntityRef.tag(tag_id)

        tag_group_id = self._tags.tag_group_id(tag_id, snap)
        if tag_group_id is None:
            raise GroupMismatchError(
                f"Tag {tag_id} has no owning group",
                (("tag_id", tag_id), ("group_id", group_id))
            )
        if tag_group_id != group_id:
            raise GroupMismatchError(
                f"Tag {tag_id} belongs to group {tag_group_id}, not {group_id}",
                (("tag_id", tag_id), ("group_id", group_id))
            )

        thread_group = snap.value(thread, THREAD_GROUP)
        if isinstance(thread_group, EntityRef) and thread_group != group:
            raise GroupMismatchError(
                f"Thread {thread_id} belongs to group {thread_group.id}, not {group_id}",
                (("thread_id", thread_id), ("group_id", group_id))
            )

        ops = []
        if thread_group is None:
            ops.append(assert_fact(thread, THREAD_GROUP, group))
        ops.append(assert_fact(thread, THREAD_TAG, tag))

        already_subscribed = self.users_subscribed_to_thread(thread_id, snap)
        broadcast = self._tags.users_subscribed_to_tag(tag_id, snap)
        for user_id in sorted(broadcast - already_subscribed):
            user = EntityRef.user(user_id)
            ops.append(assert_fact(user, SUBSCRIBED_THREAD, thread))
            ops.append(assert_fact(user, OPEN_THREAD, thread))

        return tuple(ops)

    # =========================================================================
    # Last-open bump
    # =========================================================================

    def update_thread_last_open(self, user_id: str, thread_id: str) -> bool:
        """
        Move the user's last-open time for the thread to now.

        Commits a hide and then a show as two separate transactions. Does
        nothing and returns False when the thread is not open for the user.
        The pair is not atomic with respect to the store, but it runs under
        `pair_lock`, so hides, shows and unsubscribes taken through the same
        lock never land between the precondition check and the show.
        """
        with self.pair_lock(user_id, thread_id):
            if not self.is_thread_open(user_id, thread_id):
                self._audit(
                    "bump_skipped", AuditEventType.STATE_CHANGE, thread_id,
                    (("user_id", user_id), ("reason", ErrorCode.PRECONDITION_NOT_MET.name))
                )
                self._metric("bumps_skipped_total")
                return False

            hidden = self._store.apply_transaction(self.hide_thread_txn(user_id, thread_id))
            shown = self._store.apply_transaction(self.show_thread_txn(user_id, thread_id))

        self._audit(
            "bump_committed", AuditEventType.STATE_CHANGE, thread_id,
            (("user_id", user_id), ("hide_tx", str(hidden.tx)), ("show_tx", str(shown.tx)))
        )
        self._metric("bumps_total")
        return True

    def _audit(self, action: str, event_type: AuditEventType, entity_id: str, metadata: tuple):
        if self._observability:
            self._observability.log_audit(
                action=action,
                layer="core",
                event_type=event_type,
                entity_id=entity_id,
                metadata=metadata
            )

    def _metric(self, name: str):
        if self._observability:
            self._observability.collect_metric(name, 1)
