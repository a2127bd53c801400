"""
Ingestion Builders

RESPONSIBILITY: Transactions for the producers outside the core
(group/tag administration, message ingestion)
ALLOWED INPUTS: Plain ids, names, timestamps
OUTPUTS: Transaction batches ready for `FactStore.apply_transaction`

WHAT THIS LAYER MUST NOT DO:
============================
- Read the store
- Check permissions or group invariants
- Commit anything
"""

from __future__ import annotations
from typing import Iterable, Optional

from ..contracts.base import Timestamp
from ..contracts.facts import EntityRef, Transaction, assert_fact, retract_fact
from ..contracts.schema import (
    GROUP_NAME, GROUP_USER, MESSAGE_CONTENT, MESSAGE_CREATED_AT,
    MESSAGE_THREAD, MESSAGE_USER, SUBSCRIBED_THREAD, TAG_GROUP, TAG_NAME,
    THREAD_GROUP, THREAD_MENTIONED
)


def create_group_txn(group_id: str, name: Optional[str] = None) -> Transaction:
    group = EntityRef.group(group_id)
    return (assert_fact(group, GROUP_NAME, name or group_id),)


def add_user_to_group_txn(group_id: str, user_id: str) -> Transaction:
    return (assert_fact(EntityRef.group(group_id), GROUP_USER, EntityRef.user(user_id)),)


def remove_user_from_group_txn(group_id: str, user_id: str) -> Transaction:
    return (retract_fact(EntityRef.group(group_id), GROUP_USER, EntityRef.user(user_id)),)


def create_tag_txn(tag_id: str, group_id: str, name: Optional[str] = None) -> Transaction:
    tag = EntityRef.tag(tag_id)
    return (
        assert_fact(tag, TAG_GROUP, EntityRef.group(group_id)),
        assert_fact(tag, TAG_NAME, name or tag_id),
    )


def create_message_txn(
    message_id: str,
    thread_id: str,
    group_id: str,
    user_id: str,
    created_at: Timestamp,
    content: Optional[str] = None,
    mentioned_user_ids: Iterable[str] = ()
) -> Transaction:
    """
    Post a message to a thread.

    Also asserts the thread's group, the mentions, and the author's
    subscription to the thread. Re-posting the same message id with the
    same data deduplicates to nothing.
    """
    message = EntityRef.message(message_id)
    thread = EntityRef.thread(thread_id)
    author = EntityRef.user(user_id)

    ops = [
        assert_fact(thread, THREAD_GROUP, EntityRef.group(group_id)),
        assert_fact(message, MESSAGE_THREAD, thread),
        assert_fact(message, MESSAGE_USER, author),
        assert_fact(message, MESSAGE_CREATED_AT, created_at),
    ]
    if content is not None:
        ops.append(assert_fact(message, MESSAGE_CONTENT, content))
    for mentioned in sorted(set(mentioned_user_ids)):
        ops.append(assert_fact(thread, THREAD_MENTIONED, EntityRef.user(mentioned)))
    ops.append(assert_fact(author, SUBSCRIBED_THREAD, thread))
    return tuple(ops)


__all__ = [
    'create_group_txn',
    'add_user_to_group_txn',
    'remove_user_from_group_txn',
    'create_tag_txn',
    'create_message_txn',
]
