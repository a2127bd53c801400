"""
Attribute Schema
================

The relation names the engine reads and writes. The store enforces
cardinality and value types; it never interprets meaning.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .base import Timestamp
from .facts import EntityKind, EntityRef, FactValue


class Cardinality(Enum):
    ONE = "one"
    MANY = "many"


class ValueType(Enum):
    REF = "ref"
    INSTANT = "instant"
    STRING = "string"


@dataclass(frozen=True)
class Attribute:
    """Schema entry for one relation."""
    name: str
    entity_kind: EntityKind
    cardinality: Cardinality
    value_type: ValueType
    ref_kind: Optional[EntityKind] = None

    def accepts(self, entity: EntityRef, value: FactValue) -> bool:
        if entity.kind is not self.entity_kind:
            return False
        if self.value_type is ValueType.REF:
            return isinstance(value, EntityRef) and value.kind is self.ref_kind
        if self.value_type is ValueType.INSTANT:
            return isinstance(value, Timestamp)
        return isinstance(value, str)


# Relation names
THREAD_GROUP = "thread-group"
THREAD_TAG = "thread-tag"
THREAD_MENTIONED = "thread-mentioned"
MESSAGE_THREAD = "message-thread"
MESSAGE_USER = "message-user"
MESSAGE_CREATED_AT = "message-created-at"
MESSAGE_CONTENT = "message-content"
OPEN_THREAD = "open-thread"
SUBSCRIBED_THREAD = "subscribed-thread"
GROUP_USER = "group-user"
GROUP_NAME = "group-name"
TAG_GROUP = "tag-group"
TAG_NAME = "tag-name"


SCHEMA: Dict[str, Attribute] = {
    a.name: a for a in (
        Attribute(THREAD_GROUP, EntityKind.THREAD, Cardinality.ONE, ValueType.REF, EntityKind.GROUP),
        Attribute(THREAD_TAG, EntityKind.THREAD, Cardinality.MANY, ValueType.REF, EntityKind.TAG),
        Attribute(THREAD_MENTIONED, EntityKind.THREAD, Cardinality.MANY, ValueType.REF, EntityKind.USER),
        Attribute(MESSAGE_THREAD, EntityKind.MESSAGE, Cardinality.ONE, ValueType.REF, EntityKind.THREAD),
        Attribute(MESSAGE_USER, EntityKind.MESSAGE, Cardinality.ONE, ValueType.REF, EntityKind.USER),
        Attribute(MESSAGE_CREATED_AT, EntityKind.MESSAGE, Cardinality.ONE, ValueType.INSTANT),
        Attribute(MESSAGE_CONTENT, EntityKind.MESSAGE, Cardinality.ONE, ValueType.STRING),
        Attribute(OPEN_THREAD, EntityKind.USER, Cardinality.MANY, ValueType.REF, EntityKind.THREAD),
        Attribute(SUBSCRIBED_THREAD, EntityKind.USER, Cardinality.MANY, ValueType.REF, EntityKind.THREAD),
        Attribute(GROUP_USER, EntityKind.GROUP, Cardinality.MANY, ValueType.REF, EntityKind.USER),
        Attribute(GROUP_NAME, EntityKind.GROUP, Cardinality.ONE, ValueType.STRING),
        Attribute(TAG_GROUP, EntityKind.TAG, Cardinality.ONE, ValueType.REF, EntityKind.GROUP),
        Attribute(TAG_NAME, EntityKind.TAG, Cardinality.ONE, ValueType.STRING),
    )
}
