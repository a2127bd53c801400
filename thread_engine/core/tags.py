"""
Tag queries.

A tag belongs to one group, and its broadcast list is that group's
current membership. There is no separate per-user tag subscription.
"""

from __future__ import annotations
from typing import FrozenSet, List, Optional

from ..contracts.facts import EntityRef
from ..contracts.schema import GROUP_USER, TAG_GROUP, TAG_NAME, THREAD_TAG
from ..contracts.threads import TagSummary
from ..storage import FactStore, Snapshot


class TagDirectory:
    """Read-only tag lookups over a snapshot."""

    def __init__(self, store: FactStore):
        self._store = store

    def _snapshot(self, snapshot: Optional[Snapshot]) -> Snapshot:
        return snapshot or self._store.current_snapshot()

    def tag_group_id(self, tag_id: str, snapshot: Optional[Snapshot] = None) -> Optional[str]:
        group = self._snapshot(snapshot).value(EntityRef.tag(tag_id), TAG_GROUP)
        return group.id if isinstance(group, EntityRef) else None

    def tag_ids_for_user(self, user_id: str, snapshot: Optional[Snapshot] = None) -> FrozenSet[str]:
        """Tags owned by any group the user currently belongs to."""
        snap = self._snapshot(snapshot)
        tag_ids = set()
        for group in snap.referrers(GROUP_USER, EntityRef.user(user_id)):
            tag_ids.update(t.id for t in snap.referrers(TAG_GROUP, group))
        return frozenset(tag_ids)

    def users_subscribed_to_tag(self, tag_id: str, snapshot: Optional[Snapshot] = None) -> FrozenSet[str]:
        snap = self._snapshot(snapshot)
        group = snap.value(EntityRef.tag(tag_id), TAG_GROUP)
        if not isinstance(group, EntityRef):
            return frozenset()
        return frozenset(u.id for u in snap.values(group, GROUP_USER))

    def tag_summaries(self, group_id: str, snapshot: Optional[Snapshot] = None) -> List[TagSummary]:
        """
        Tags of a group with their counters, busiest first.

        Equal thread counts fall back to tag id order.
        """
        snap = self._snapshot(snapshot)
        summaries = []
        for tag in snap.referrers(TAG_GROUP, EntityRef.group(group_id)):
            name = snap.value(tag, TAG_NAME)
            summaries.append(TagSummary(
                id=tag.id,
                group_id=group_id,
                name=name if isinstance(name, str) else None,
                threads_count=len(snap.referrers(THREAD_TAG, tag)),
                subscribers_count=len(self.users_subscribed_to_tag(tag.id, snap))
            ))
        summaries.sort(key=lambda s: (-s.threads_count, s.id))
        return summaries
