"""
Thread Repository
=================

Assembles thread aggregates from the fact store.

The projection is fixed: group, tags, mentioned users, and messages with
author, creation time and content. Aggregates are rebuilt from a snapshot
on every call; nothing is cached.
"""

from __future__ import annotations
from typing import Iterable, List, Optional

from ..contracts.base import Timestamp
from ..contracts.facts import EntityRef
from ..contracts.schema import (
    MESSAGE_CONTENT, MESSAGE_CREATED_AT, MESSAGE_THREAD, MESSAGE_USER,
    THREAD_GROUP, THREAD_MENTIONED, THREAD_TAG
)
from ..contracts.threads import Message, Thread
from ..storage import FactStore, Snapshot


def _ids(refs: Iterable) -> frozenset:
    return frozenset(r.id for r in refs if isinstance(r, EntityRef))


def pull_message(snapshot: Snapshot, message_ref: EntityRef, thread_id: str) -> Optional[Message]:
    """A message needs a creation time to be placed on the thread; others are skipped."""
    created_at = snapshot.value(message_ref, MESSAGE_CREATED_AT)
    if not isinstance(created_at, Timestamp):
        return None
    author = snapshot.value(message_ref, MESSAGE_USER)
    content = snapshot.value(message_ref, MESSAGE_CONTENT)
    return Message(
        id=message_ref.id,
        thread_id=thread_id,
        user_id=author.id if isinstance(author, EntityRef) else None,
        created_at=created_at,
        content=content if isinstance(content, str) else None
    )


def pull_thread(snapshot: Snapshot, thread_id: str) -> Optional[Thread]:
    """
    Pull the thread projection for one id.

    Returns None when no fact in the snapshot mentions the thread.
    """
    ref = EntityRef.thread(thread_id)
    if not snapshot.exists(ref):
        return None

    group = snapshot.value(ref, THREAD_GROUP)
    messages = [
        m for m in (
            pull_message(snapshot, message_ref, thread_id)
            for message_ref in snapshot.referrers(MESSAGE_THREAD, ref)
        )
        if m is not None
    ]
    messages.sort(key=lambda m: (m.created_at.value, m.id))

    return Thread(
        id=thread_id,
        group_id=group.id if isinstance(group, EntityRef) else None,
        tag_ids=_ids(snapshot.values(ref, THREAD_TAG)),
        mentioned_ids=_ids(snapshot.values(ref, THREAD_MENTIONED)),
        messages=tuple(messages)
    )


class ThreadRepository:
    """
    Read-only access to thread aggregates.

    Every public method reads one snapshot (the current one unless a
    snapshot is passed in), so a single call never mixes two bases.
    """

    def __init__(self, store: FactStore):
        self._store = store

    def _snapshot(self, snapshot: Optional[Snapshot]) -> Snapshot:
        return snapshot or self._store.current_snapshot()

    def thread_by_id(self, thread_id: str, snapshot: Optional[Snapshot] = None) -> Optional[Thread]:
        return pull_thread(self._snapshot(snapshot), thread_id)

    def threads_by_id(
        self,
        thread_ids: Iterable[str],
        snapshot: Optional[Snapshot] = None
    ) -> List[Thread]:
        """Batch pull. Missing ids are omitted, so the result may be shorter than the input."""
        snap = self._snapshot(snapshot)
        threads = []
        for thread_id in thread_ids:
            thread = pull_thread(snap, thread_id)
            if thread is not None:
                threads.append(thread)
        return threads

    def thread_group_id(self, thread_id: str, snapshot: Optional[Snapshot] = None) -> Optional[str]:
        group = self._snapshot(snapshot).value(EntityRef.thread(thread_id), THREAD_GROUP)
        return group.id if isinstance(group, EntityRef) else None

    def thread_ids_in_group(self, group_id: str, snapshot: Optional[Snapshot] = None) -> List[str]:
        refs = self._snapshot(snapshot).referrers(THREAD_GROUP, EntityRef.group(group_id))
        return sorted(r.id for r in refs)
