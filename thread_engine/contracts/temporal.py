from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple
import hashlib
import json

from .base import Timestamp
from .facts import Fact


@dataclass(frozen=True)
class TxSequence:
    """
    Immutable transaction position in the log.
    Sequence 0 is the empty store.
    """
    value: int

    def next(self) -> 'TxSequence':
        return TxSequence(self.value + 1)

    def __lt__(self, other: 'TxSequence') -> bool:
        return self.value < other.value

    def __le__(self, other: 'TxSequence') -> bool:
        return self.value <= other.value


def digest_datoms(datoms: Tuple[Fact, ...]) -> str:
    """Deterministic digest of a transaction's datoms."""
    rows = [
        [_ref_key(d.entity), d.attribute, _value_key(d.value), d.added]
        for d in datoms
    ]
    return hashlib.sha256(json.dumps(rows, sort_keys=True).encode('utf-8')).hexdigest()


def _ref_key(ref) -> str:
    return f"{ref.kind.value}:{ref.id}"


def _value_key(value) -> str:
    if isinstance(value, Timestamp):
        return f"instant:{value.to_iso()}"
    if isinstance(value, str):
        return f"string:{value}"
    return f"ref:{_ref_key(value)}"


@dataclass(frozen=True)
class TxLogEntry:
    """
    Immutable log entry for one committed transaction.
    INVARIANTS:
    - Once written, never modified.
    - Entries form a hash chain for integrity verification.
    """
    sequence: TxSequence
    instant: Timestamp
    datoms: Tuple[Fact, ...]
    previous_hash: str
    entry_hash: str

    @staticmethod
    def compute_hash(
        sequence: TxSequence,
        instant: Timestamp,
        datoms: Tuple[Fact, ...],
        previous_hash: str
    ) -> str:
        hash_content = (
            f"{sequence.value}|"
            f"{instant.to_iso()}|"
            f"{digest_datoms(datoms)}|"
            f"{previous_hash}"
        )
        return hashlib.sha256(hash_content.encode()).hexdigest()

    @staticmethod
    def create(
        sequence: TxSequence,
        instant: Timestamp,
        datoms: Tuple[Fact, ...],
        previous_hash: str
    ) -> 'TxLogEntry':
        """Factory for deterministic entry creation."""
        return TxLogEntry(
            sequence=sequence,
            instant=instant,
            datoms=datoms,
            previous_hash=previous_hash,
            entry_hash=TxLogEntry.compute_hash(sequence, instant, datoms, previous_hash)
        )
