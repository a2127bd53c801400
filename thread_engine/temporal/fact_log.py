"""
Immutable Fact Log
==================

Append-only transaction storage with sequence numbering.

INVARIANTS:
- No updates or deletes - append only
- Every entry has a monotonic sequence number (the transaction number)
- Every entry has a strictly later instant than the one before it
- Hash chain for integrity verification

This is the SOURCE OF TRUTH for all engine state.
Indexes are DERIVED from this log, never stored separately.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple

from ..contracts.base import Error, ErrorCode, Timestamp
from ..contracts.facts import Fact
from ..contracts.temporal import TxLogEntry, TxSequence


@dataclass(frozen=True)
class LogState:
    """
    Immutable snapshot of log state.
    """
    head_sequence: TxSequence
    head_hash: str
    entry_count: int


class FactLog:
    """
    Append-only transaction log.

    GUARANTEES:
    ===========
    1. NO updates - entries are immutable once written
    2. NO deletes - log only grows
    3. Deterministic - same entries in same order -> same head hash
    4. Verifiable - hash chain ensures integrity
    """

    def __init__(self):
        self._entries: List[TxLogEntry] = []
        self._sequence_counter = TxSequence(0)
        self._head_hash = ""

    @property
    def state(self) -> LogState:
        """Get current log state (immutable snapshot)."""
        return LogState(
            head_sequence=self._sequence_counter,
            head_hash=self._head_hash,
            entry_count=len(self._entries)
        )

    @property
    def head_instant(self) -> Optional[Timestamp]:
        if not self._entries:
            return None
        return self._entries[-1].instant

    def prepare(self, instant: Timestamp, datoms: Tuple[Fact, ...]) -> TxLogEntry:
        """
        Build the next entry without appending it.

        Callers that persist entries write the prepared entry first and
        only then `append` it, so a failed write never reaches the log.
        """
        return TxLogEntry.create(
            sequence=self._sequence_counter.next(),
            instant=instant,
            datoms=datoms,
            previous_hash=self._head_hash
        )

    def append(self, entry: TxLogEntry) -> TxLogEntry:
        """
        Append a prepared entry.

        This is the ONLY write operation.
        """
        self._check_next(entry)
        self._entries.append(entry)
        self._sequence_counter = entry.sequence
        self._head_hash = entry.entry_hash
        return entry

    def load_verified_entry(self, entry: TxLogEntry) -> bool:
        """
        Load an existing entry from storage.

        VERIFIES:
        1. Sequence is monotonic (next in line)
        2. Previous hash matches current head
        3. Entry hash is valid for its content

        Raises ValueError on the first violation. Used for hydration from disk.
        """
        self._check_next(entry)

        computed_hash = TxLogEntry.compute_hash(
            entry.sequence, entry.instant, entry.datoms, entry.previous_hash
        )
        if computed_hash != entry.entry_hash:
            raise ValueError(f"Corrupt entry at {entry.sequence.value}: Hash mismatch")

        self._entries.append(entry)
        self._sequence_counter = entry.sequence
        self._head_hash = entry.entry_hash
        return True

    def _check_next(self, entry: TxLogEntry):
        expected_seq = self._sequence_counter.next()
        if entry.sequence.value != expected_seq.value:
            raise ValueError(
                f"Invalid sequence: expected {expected_seq.value}, got {entry.sequence.value}"
            )
        if entry.previous_hash != self._head_hash:
            raise ValueError(
                f"Broken hash chain at {entry.sequence.value}: "
                f"prev {entry.previous_hash} != head {self._head_hash}"
            )
        head = self.head_instant
        if head is not None and entry.instant.value <= head.value:
            raise ValueError(f"Non-increasing instant at {entry.sequence.value}")

    def replay(
        self,
        from_seq: Optional[TxSequence] = None,
        until_seq: Optional[TxSequence] = None
    ) -> Iterator[TxLogEntry]:
        """
        Replay entries in sequence order.

        Args:
            from_seq: Start from this sequence (inclusive), None = start
            until_seq: Stop at this sequence (inclusive), None = end
        """
        start = (from_seq.value if from_seq else 1)
        end = (until_seq.value if until_seq else len(self._entries))

        for entry in self._entries:
            if entry.sequence.value < start:
                continue
            if entry.sequence.value > end:
                break
            yield entry

    def get_entry(self, sequence: TxSequence) -> Optional[TxLogEntry]:
        """Get specific entry by sequence number."""
        if sequence.value < 1 or sequence.value > len(self._entries):
            return None
        return self._entries[sequence.value - 1]

    def instant_of(self, tx: int) -> Timestamp:
        """Instant of a committed transaction."""
        entry = self.get_entry(TxSequence(tx))
        if entry is None:
            raise KeyError(tx)
        return entry.instant

    def verify_integrity(self) -> Tuple[bool, Optional[Error]]:
        """
        Verify hash chain integrity.

        Returns (is_valid, error) tuple.
        Error contains details if integrity check fails.
        """
        expected_previous = ""

        for entry in self._entries:
            recomputed = TxLogEntry.compute_hash(
                entry.sequence, entry.instant, entry.datoms, entry.previous_hash
            )
            if entry.previous_hash != expected_previous or recomputed != entry.entry_hash:
                return (False, Error(
                    code=ErrorCode.TIMELINE_CORRUPTION,
                    message=f"Hash chain broken at sequence {entry.sequence.value}",
                    timestamp=datetime.now(timezone.utc),
                    context=(
                        ("expected_hash", expected_previous),
                        ("actual_hash", entry.previous_hash),
                    )
                ))
            expected_previous = entry.entry_hash

        return (True, None)

    def find_sequence_at(self, instant: Timestamp) -> TxSequence:
        """
        Latest sequence committed at or before `instant`.

        Returns sequence 0 when the instant predates every entry.
        """
        target = instant.value

        # Instants are strictly increasing, so a binary search is exact
        left, right = 0, len(self._entries)
        while left < right:
            mid = (left + right) // 2
            if self._entries[mid].instant.value <= target:
                left = mid + 1
            else:
                right = mid

        if left == 0:
            return TxSequence(0)
        return self._entries[left - 1].sequence

    def __len__(self) -> int:
        return len(self._entries)
