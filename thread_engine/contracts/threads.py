"""
Thread Aggregate Contracts

Value types handed out by the core. They are rebuilt from a snapshot on
every read and never cached.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, Optional, Tuple

from .base import Timestamp


@dataclass(frozen=True)
class Message:
    """A message as seen by the engine. The content is opaque."""
    id: str
    thread_id: str
    user_id: Optional[str]
    created_at: Timestamp
    content: Optional[str] = None


@dataclass(frozen=True)
class Thread:
    """
    Thread aggregate assembled from facts.

    `messages` are ordered by creation time. `last_open_at` is only set
    when the aggregate was annotated for a specific user.
    """
    id: str
    group_id: Optional[str]
    tag_ids: FrozenSet[str] = field(default_factory=frozenset)
    mentioned_ids: FrozenSet[str] = field(default_factory=frozenset)
    messages: Tuple[Message, ...] = field(default_factory=tuple)
    last_open_at: Optional[Timestamp] = None

    @property
    def newest_message_at(self) -> Optional[Timestamp]:
        if not self.messages:
            return None
        return max(self.messages, key=lambda m: m.created_at.value).created_at

    def with_last_open_at(self, last_open_at: Timestamp) -> Thread:
        return replace(self, last_open_at=last_open_at)

    def with_tag_ids(self, tag_ids: Iterable[str]) -> Thread:
        return replace(self, tag_ids=frozenset(tag_ids))


@dataclass(frozen=True)
class TagSummary:
    """Tag with the counters shown on a group's tag listing."""
    id: str
    group_id: str
    name: Optional[str]
    threads_count: int
    subscribers_count: int
