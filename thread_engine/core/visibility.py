"""
Visibility Evaluator
====================

Decides whether a user may see a thread.

A user can see a thread if ANY of:
1. No fact mentions the thread yet (a new thread the caller is about to fill)
2. The user is subscribed to it
3. The user is mentioned in it
4. The user belongs to the group owning one of its tags

Rule 1 is checked first since it answers without further reads.
"""

from __future__ import annotations
from typing import Optional

from ..contracts.facts import EntityRef
from ..contracts.schema import (
    GROUP_USER, SUBSCRIBED_THREAD, TAG_GROUP, THREAD_MENTIONED, THREAD_TAG
)
from ..storage import FactStore, Snapshot


class VisibilityEvaluator:

    def __init__(self, store: FactStore):
        self._store = store

    def can_user_see_thread(
        self,
        user_id: str,
        thread_id: str,
        snapshot: Optional[Snapshot] = None
    ) -> bool:
        snap = snapshot or self._store.current_snapshot()
        user = EntityRef.user(user_id)
        thread = EntityRef.thread(thread_id)

        if not snap.exists(thread):
            return True
        if snap.holds(user, SUBSCRIBED_THREAD, thread):
            return True
        if snap.holds(thread, THREAD_MENTIONED, user):
            return True
        for tag in snap.values(thread, THREAD_TAG):
            group = snap.value(tag, TAG_GROUP)
            if isinstance(group, EntityRef) and snap.holds(group, GROUP_USER, user):
                return True
        return False

    def thread_has_tags(self, thread_id: str, snapshot: Optional[Snapshot] = None) -> bool:
        snap = snapshot or self._store.current_snapshot()
        return bool(snap.values(EntityRef.thread(thread_id), THREAD_TAG))
