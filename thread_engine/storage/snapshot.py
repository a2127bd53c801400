"""
Snapshots and Fact Indexes
==========================

A Snapshot is a read-consistent view of the store as of one transaction
number (its basis). It never copies the store: every read folds the
append-only index lists up to the basis, so a snapshot taken before a
write keeps answering exactly as it did.

INVARIANTS:
- Index lists only grow, in transaction order
- A fact with tx > basis is invisible to the snapshot
- Current truth = fold of assertions/retractions in tx order
"""

from __future__ import annotations
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..contracts.base import Timestamp
from ..contracts.facts import EntityRef, Fact, FactPattern, FactValue, HistoryEntry
from ..temporal.fact_log import FactLog


class FactIndexes:
    """
    Append-only covering indexes over every fact ever written.

    Only the store's writer appends; readers copy a slice under the GIL.
    """

    def __init__(self):
        self._all: List[Fact] = []
        self._by_entity_attr: Dict[Tuple[EntityRef, str], List[Fact]] = {}
        self._by_attr_value: Dict[Tuple[str, FactValue], List[Fact]] = {}
        self._by_attr: Dict[str, List[Fact]] = {}
        self._by_entity: Dict[EntityRef, List[Fact]] = {}
        self._by_ref_value: Dict[EntityRef, List[Fact]] = {}

    def add(self, fact: Fact):
        self._all.append(fact)
        self._by_entity_attr.setdefault((fact.entity, fact.attribute), []).append(fact)
        self._by_attr_value.setdefault((fact.attribute, fact.value), []).append(fact)
        self._by_attr.setdefault(fact.attribute, []).append(fact)
        self._by_entity.setdefault(fact.entity, []).append(fact)
        if isinstance(fact.value, EntityRef):
            self._by_ref_value.setdefault(fact.value, []).append(fact)

    def candidates(self, pattern: FactPattern) -> List[Fact]:
        """Facts from the most selective index for the pattern (superset of matches)."""
        e, a, v = pattern.entity, pattern.attribute, pattern.value
        if e is not None and a is not None:
            return list(self._by_entity_attr.get((e, a), ()))
        if a is not None and v is not None:
            return list(self._by_attr_value.get((a, v), ()))
        if e is not None:
            return list(self._by_entity.get(e, ()))
        if isinstance(v, EntityRef):
            return list(self._by_ref_value.get(v, ()))
        if a is not None:
            return list(self._by_attr.get(a, ()))
        return list(self._all)

    def mentions(self, ref: EntityRef) -> List[Fact]:
        """Every fact with `ref` as entity or as value."""
        return list(self._by_entity.get(ref, ())) + list(self._by_ref_value.get(ref, ()))


def _matches(fact: Fact, pattern: FactPattern) -> bool:
    if pattern.entity is not None and fact.entity != pattern.entity:
        return False
    if pattern.attribute is not None and fact.attribute != pattern.attribute:
        return False
    if pattern.value is not None and fact.value != pattern.value:
        return False
    return True


def fold_current(facts: Iterable[Fact]) -> Dict[Tuple[EntityRef, str, FactValue], Fact]:
    """Fold facts (in tx order) into the currently-held triples -> asserting fact."""
    held: Dict[Tuple[EntityRef, str, FactValue], Fact] = {}
    for fact in facts:
        if fact.added:
            held[fact.triple] = fact
        else:
            held.pop(fact.triple, None)
    return held


class Snapshot:
    """
    Point-in-time read handle.

    Obtained from `FactStore.current_snapshot()` or `FactStore.as_of()`.
    """

    def __init__(self, indexes: FactIndexes, log: FactLog, basis: int):
        self._indexes = indexes
        self._log = log
        self._basis = basis

    @property
    def basis(self) -> int:
        """Transaction number this snapshot reflects (0 = empty store)."""
        return self._basis

    @property
    def instant(self) -> Optional[Timestamp]:
        if self._basis == 0:
            return None
        return self._log.instant_of(self._basis)

    def _visible(self, facts: Iterable[Fact], pattern: FactPattern) -> List[Fact]:
        return [f for f in facts if f.tx <= self._basis and _matches(f, pattern)]

    # -------------------------------------------------------------------------
    # Current-state reads
    # -------------------------------------------------------------------------

    def datoms(self, pattern: FactPattern) -> Tuple[Fact, ...]:
        """Facts matching the pattern that hold as of the basis."""
        facts = self._visible(self._indexes.candidates(pattern), pattern)
        return tuple(fold_current(facts).values())

    def values(self, entity: EntityRef, attribute: str) -> FrozenSet[FactValue]:
        return frozenset(
            f.value for f in self.datoms(FactPattern(entity=entity, attribute=attribute))
        )

    def value(self, entity: EntityRef, attribute: str) -> Optional[FactValue]:
        """Single value of a cardinality-one attribute, or None."""
        held = self.datoms(FactPattern(entity=entity, attribute=attribute))
        if not held:
            return None
        return max(held, key=lambda f: f.tx).value

    def referrers(self, attribute: str, value: FactValue) -> FrozenSet[EntityRef]:
        """Entities that currently hold `attribute = value`."""
        return frozenset(
            f.entity for f in self.datoms(FactPattern(attribute=attribute, value=value))
        )

    def holds(self, entity: EntityRef, attribute: str, value: FactValue) -> bool:
        return bool(self.datoms(FactPattern(entity=entity, attribute=attribute, value=value)))

    def exists(self, ref: EntityRef) -> bool:
        """
        True when any fact up to the basis mentions `ref`, retracted or not.

        Entities have no separate creation step; first reference creates them.
        """
        return any(f.tx <= self._basis for f in self._indexes.mentions(ref))

    # -------------------------------------------------------------------------
    # History reads
    # -------------------------------------------------------------------------

    def history(self, entity: EntityRef, attribute: str) -> Tuple[HistoryEntry, ...]:
        """Every assertion and retraction of the relation up to the basis, in tx order."""
        pattern = FactPattern(entity=entity, attribute=attribute)
        return tuple(
            HistoryEntry(
                value=f.value,
                added=f.added,
                tx=f.tx,
                instant=self._log.instant_of(f.tx)
            )
            for f in self._visible(self._indexes.candidates(pattern), pattern)
        )

    def __repr__(self) -> str:
        return f"Snapshot(basis={self._basis})"
