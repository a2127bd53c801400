"""
Fact Contracts
==============

The vocabulary shared by the fact store and everything built on it.

A FACT is an (entity, attribute, value) triple that was asserted or
retracted by a numbered transaction. Facts are never modified; the
current truth is a fold over the facts in transaction order.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from .base import Timestamp


class EntityKind(Enum):
    """The kinds of entity the engine knows about."""
    USER = "user"
    GROUP = "group"
    TAG = "tag"
    THREAD = "thread"
    MESSAGE = "message"


@dataclass(frozen=True)
class EntityRef:
    """
    Stable reference to an entity.

    The opaque id is the caller's identifier; the store keys its indexes
    by the whole ref, so ids of different kinds never collide.
    """
    kind: EntityKind
    id: str

    def __post_init__(self):
        if not self.id or not isinstance(self.id, str):
            raise ValueError("EntityRef id must be a non-empty string")

    @staticmethod
    def user(user_id: str) -> EntityRef:
        return EntityRef(EntityKind.USER, user_id)

    @staticmethod
    def group(group_id: str) -> EntityRef:
        return EntityRef(EntityKind.GROUP, group_id)

    @staticmethod
    def tag(tag_id: str) -> EntityRef:
        return EntityRef(EntityKind.TAG, tag_id)

    @staticmethod
    def thread(thread_id: str) -> EntityRef:
        return EntityRef(EntityKind.THREAD, thread_id)

    @staticmethod
    def message(message_id: str) -> EntityRef:
        return EntityRef(EntityKind.MESSAGE, message_id)


FactValue = Union[EntityRef, Timestamp, str]


@dataclass(frozen=True)
class Fact:
    """
    Immutable datom.

    `added` is True for an assertion, False for a retraction.
    `tx` is the number of the transaction that recorded it.
    """
    entity: EntityRef
    attribute: str
    value: FactValue
    tx: int
    added: bool = True

    @property
    def triple(self) -> Tuple[EntityRef, str, FactValue]:
        return (self.entity, self.attribute, self.value)


class Op(Enum):
    ASSERT = "assert"
    RETRACT = "retract"


@dataclass(frozen=True)
class TxOp:
    """One requested mutation inside a transaction batch."""
    op: Op
    entity: EntityRef
    attribute: str
    value: FactValue

    @property
    def triple(self) -> Tuple[EntityRef, str, FactValue]:
        return (self.entity, self.attribute, self.value)


Transaction = Tuple[TxOp, ...]


def assert_fact(entity: EntityRef, attribute: str, value: FactValue) -> TxOp:
    return TxOp(op=Op.ASSERT, entity=entity, attribute=attribute, value=value)


def retract_fact(entity: EntityRef, attribute: str, value: FactValue) -> TxOp:
    return TxOp(op=Op.RETRACT, entity=entity, attribute=attribute, value=value)


@dataclass(frozen=True)
class FactPattern:
    """
    Query pattern for the store. Unbound (None) positions match anything.
    """
    entity: Optional[EntityRef] = None
    attribute: Optional[str] = None
    value: Optional[FactValue] = None


@dataclass(frozen=True)
class HistoryEntry:
    """One assertion or retraction of a relation, with its transaction time."""
    value: FactValue
    added: bool
    tx: int
    instant: Timestamp


@dataclass(frozen=True)
class TxReport:
    """
    Outcome of applying a transaction batch.

    A no-op report (every op deduplicated away) carries the unchanged
    basis in both `basis_before` and `basis_after`, and `tx` is None.
    """
    tx: Optional[int]
    instant: Optional[Timestamp]
    datoms: Tuple[Fact, ...]
    basis_before: int
    basis_after: int

    @property
    def is_noop(self) -> bool:
        return self.tx is None
