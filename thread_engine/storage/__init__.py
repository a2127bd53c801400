"""
Fact Storage Layer

RESPONSIBILITY: Append-only, time-queryable fact persistence
ALLOWED INPUTS: Transaction batches of assert/retract operations
OUTPUTS: Snapshots, history reads, pattern query results, TxReports

WHAT THIS LAYER MUST NOT DO:
============================
- Interpret facts or execute business logic
- Retry failed writes
- Delete or modify existing facts (append-only)

CONTRACT:
=========
- Re-asserting a fact that already holds, or retracting one that does
  not, produces no new history entry and no new transaction time
- Every committed transaction gets the next number and a strictly
  later instant
- Each `apply_transaction` call is atomic and totally ordered
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union
import os
import threading

from ..contracts.audit import AuditEventType
from ..contracts.base import Timestamp
from ..contracts.errors import (
    FactStoreError, IntegrityError, SchemaViolationError,
    StoreUnavailableError, TransactionConflictError
)
from ..contracts.facts import (
    EntityRef, Fact, FactPattern, FactValue, HistoryEntry, Op, TxOp, TxReport
)
from ..contracts.schema import SCHEMA, Cardinality
from ..contracts.temporal import TxLogEntry
from ..observability import ObservabilityEngine
from ..temporal.clock import LogicalClock
from ..temporal.fact_log import FactLog
from .codec import decode_entry, encode_entry
from .snapshot import FactIndexes, Snapshot, fold_current

Triple = Tuple[EntityRef, str, FactValue]


# =============================================================================
# STORAGE INTERFACE (Dependency Inversion)
# =============================================================================

class FactStore:
    """
    Abstract fact store interface.

    Implementations may persist however they like while keeping the same
    append-only, deduplicating, time-queryable semantics.
    """

    def current_snapshot(self) -> Snapshot:
        """Read handle representing "now"."""
        raise NotImplementedError

    def as_of(self, point: Union[int, Timestamp]) -> Snapshot:
        """Read handle as of a transaction number or an instant."""
        raise NotImplementedError

    def history_of(
        self,
        attribute: str,
        entity: EntityRef,
        snapshot: Optional[Snapshot] = None
    ) -> Tuple[HistoryEntry, ...]:
        """All assertions/retractions of `attribute` on `entity`, in tx order."""
        raise NotImplementedError

    def query(
        self,
        pattern: FactPattern,
        snapshot: Optional[Snapshot] = None
    ) -> Tuple[Fact, ...]:
        """Facts matching the pattern that hold in the snapshot (default: now)."""
        raise NotImplementedError

    def apply_transaction(self, ops: Iterable[TxOp]) -> TxReport:
        """Atomically apply a batch; raises FactStoreError subclasses."""
        raise NotImplementedError


# =============================================================================
# IN-MEMORY FACT STORE (Reference Implementation)
# =============================================================================

class InMemoryFactStore(FactStore):
    """
    In-memory implementation of the fact store.

    Writers are serialized by one lock. Readers work from snapshots and
    never wait on writers.
    """

    def __init__(
        self,
        clock: Optional[LogicalClock] = None,
        observability: Optional[ObservabilityEngine] = None
    ):
        self._clock = clock or LogicalClock.live()
        self._observability = observability
        self._log = FactLog()
        self._indexes = FactIndexes()
        # Head state for the write path: (entity, attribute) -> held values
        self._current: Dict[Tuple[EntityRef, str], Set[FactValue]] = {}
        self._write_lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def basis(self) -> int:
        return self._log.state.head_sequence.value

    @property
    def write_lock(self) -> threading.RLock:
        """Held by `apply_transaction`; re-entrant so read-then-commit callers can hold it too."""
        return self._write_lock

    def current_snapshot(self) -> Snapshot:
        return Snapshot(self._indexes, self._log, self.basis)

    def as_of(self, point: Union[int, Timestamp]) -> Snapshot:
        if isinstance(point, Timestamp):
            basis = self._log.find_sequence_at(point).value
        else:
            basis = max(0, min(int(point), self.basis))
        return Snapshot(self._indexes, self._log, basis)

    def history_of(
        self,
        attribute: str,
        entity: EntityRef,
        snapshot: Optional[Snapshot] = None
    ) -> Tuple[HistoryEntry, ...]:
        return (snapshot or self.current_snapshot()).history(entity, attribute)

    def query(
        self,
        pattern: FactPattern,
        snapshot: Optional[Snapshot] = None
    ) -> Tuple[Fact, ...]:
        return (snapshot or self.current_snapshot()).datoms(pattern)

    def verify_integrity(self):
        return self._log.verify_integrity()

    def log_entries(self) -> List[TxLogEntry]:
        return list(self._log.replay())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def apply_transaction(self, ops: Iterable[TxOp]) -> TxReport:
        ops = tuple(ops)
        with self._write_lock:
            basis_before = self.basis
            try:
                for op in ops:
                    self._validate(op)
                pending = self._resolve(ops)
            except FactStoreError as e:
                self._audit(
                    "transaction_rejected", AuditEventType.ERROR,
                    metadata=(("reason", str(e)), ("ops", str(len(ops))))
                )
                raise

            if not pending:
                self._audit(
                    "transaction_noop", AuditEventType.TRANSACTION,
                    metadata=(("ops", str(len(ops))), ("basis", str(basis_before)))
                )
                self._metric("noop_transactions_total", 1)
                return TxReport(
                    tx=None, instant=None, datoms=(),
                    basis_before=basis_before, basis_after=basis_before
                )

            tx = basis_before + 1
            datoms = tuple(
                Fact(entity=e, attribute=a, value=v, tx=tx, added=added)
                for (e, a, v), added in pending
            )
            entry = self._log.prepare(self._next_instant(), datoms)
            self._persist(entry)
            self._commit(entry)

            self._audit(
                "transaction_committed", AuditEventType.TRANSACTION,
                entity_id=str(tx),
                metadata=(("datoms", str(len(datoms))), ("instant", entry.instant.to_iso()))
            )
            self._metric("transactions_total", 1)
            self._metric("datoms_written_total", len(datoms))

            return TxReport(
                tx=tx,
                instant=entry.instant,
                datoms=datoms,
                basis_before=basis_before,
                basis_after=tx
            )

    def _validate(self, op: TxOp):
        attribute = SCHEMA.get(op.attribute)
        if attribute is None:
            raise SchemaViolationError(
                f"Unknown attribute: {op.attribute}",
                (("attribute", op.attribute),)
            )
        if not attribute.accepts(op.entity, op.value):
            raise SchemaViolationError(
                f"Invalid entity or value for {op.attribute}",
                (("attribute", op.attribute), ("entity", op.entity.id))
            )

    def _resolve(self, ops: Tuple[TxOp, ...]) -> List[Tuple[Triple, bool]]:
        """
        Turn requested ops into the datoms that actually change state.

        Returns (triple, added) pairs with retractions first.
        """
        asserted: Dict[Triple, None] = {}
        retracted: Dict[Triple, None] = {}
        one_values: Dict[Tuple[EntityRef, str], FactValue] = {}

        for op in ops:
            triple = op.triple
            if op.op is Op.ASSERT:
                if triple in retracted:
                    raise TransactionConflictError(
                        f"Fact both asserted and retracted: {op.attribute}",
                        (("attribute", op.attribute), ("entity", op.entity.id))
                    )
                if SCHEMA[op.attribute].cardinality is Cardinality.ONE:
                    key = (op.entity, op.attribute)
                    if key in one_values and one_values[key] != op.value:
                        raise TransactionConflictError(
                            f"Two values for cardinality-one attribute {op.attribute}",
                            (("attribute", op.attribute), ("entity", op.entity.id))
                        )
                    one_values[key] = op.value
                asserted[triple] = None
            else:
                if triple in asserted:
                    raise TransactionConflictError(
                        f"Fact both asserted and retracted: {op.attribute}",
                        (("attribute", op.attribute), ("entity", op.entity.id))
                    )
                retracted[triple] = None

        retractions: Dict[Triple, None] = {
            t: None for t in retracted if self._holds(t)
        }
        assertions: List[Triple] = []
        for triple in asserted:
            if self._holds(triple):
                continue
            entity, attr, value = triple
            if SCHEMA[attr].cardinality is Cardinality.ONE:
                for old in self._current.get((entity, attr), ()):
                    if old != value:
                        retractions[(entity, attr, old)] = None
            assertions.append(triple)

        return [(t, False) for t in retractions] + [(t, True) for t in assertions]

    def _holds(self, triple: Triple) -> bool:
        entity, attr, value = triple
        return value in self._current.get((entity, attr), ())

    def _next_instant(self) -> Timestamp:
        now = Timestamp(self._clock.now())
        head = self._log.head_instant
        if head is not None and now.value <= head.value:
            return Timestamp(head.value + timedelta(microseconds=1))
        return now

    def _persist(self, entry: TxLogEntry):
        """Durability hook. The in-memory store keeps nothing outside the log."""

    def _commit(self, entry: TxLogEntry):
        # Index before the log moves the basis; readers ignore tx > basis
        self._index(entry.datoms)
        self._log.append(entry)

    def _index(self, datoms: Tuple[Fact, ...]):
        for fact in datoms:
            self._indexes.add(fact)
            held = self._current.setdefault((fact.entity, fact.attribute), set())
            if fact.added:
                held.add(fact.value)
            else:
                held.discard(fact.value)

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def _audit(
        self,
        action: str,
        event_type: AuditEventType,
        entity_id: Optional[str] = None,
        metadata: tuple = ()
    ):
        if self._observability:
            self._observability.log_audit(
                action=action,
                layer="storage",
                event_type=event_type,
                entity_id=entity_id,
                metadata=metadata
            )

    def _metric(self, name: str, value: float):
        if self._observability:
            self._observability.collect_metric(name, value)


# =============================================================================
# FILE-BASED FACT STORE
# =============================================================================

class FileFactStore(InMemoryFactStore):
    """
    File-backed fact store.

    Every transaction is appended to `facts.jsonl` before it is indexed.
    Opening an existing directory replays and verifies the hash chain.
    """

    LOG_FILENAME = "facts.jsonl"

    def __init__(
        self,
        storage_dir: str,
        clock: Optional[LogicalClock] = None,
        observability: Optional[ObservabilityEngine] = None
    ):
        super().__init__(clock=clock, observability=observability)
        self._storage_dir = storage_dir
        self._log_file = os.path.join(storage_dir, self.LOG_FILENAME)

        try:
            os.makedirs(storage_dir, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(
                f"Cannot create storage directory: {e}",
                (("storage_dir", storage_dir),)
            ) from e

        self._load()

    @property
    def log_file(self) -> str:
        return self._log_file

    def _load(self):
        """Rebuild log and indexes from the transaction file."""
        if not os.path.exists(self._log_file):
            return

        loaded = 0
        with open(self._log_file, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entry = decode_entry(line)
                    self._log.load_verified_entry(entry)
                except (ValueError, KeyError, TypeError) as e:
                    raise IntegrityError(
                        f"Invalid transaction at line {line_number}: {e}",
                        sequence=loaded + 1
                    ) from e
                self._index(entry.datoms)
                loaded += 1

        self._audit(
            "log_loaded", AuditEventType.SYSTEM,
            metadata=(("transactions", str(loaded)), ("path", self._log_file))
        )

    def _persist(self, entry: TxLogEntry):
        """
        Append one line to the transaction file.

        A failed write is cut back to the previous file size so a torn
        line never sits in front of the next transaction.
        """
        line = encode_entry(entry) + '\n'
        size = None
        try:
            size = os.path.getsize(self._log_file) if os.path.isfile(self._log_file) else 0
            with open(self._log_file, 'a', encoding='utf-8') as f:
                f.write(line)
                f.flush()
        except OSError as e:
            if size is not None:
                self._truncate_to(size, entry)
            raise StoreUnavailableError(
                f"Failed to persist transaction {entry.sequence.value}: {e}",
                (("path", self._log_file),)
            ) from e

    def _truncate_to(self, size: int, entry: TxLogEntry):
        try:
            if not os.path.isfile(self._log_file) or os.path.getsize(self._log_file) <= size:
                return
            os.truncate(self._log_file, size)
        except OSError as e:
            raise StoreUnavailableError(
                f"Failed to roll back partial write of transaction {entry.sequence.value}: {e}",
                (("path", self._log_file), ("size", str(size)))
            ) from e
        self._audit(
            "partial_write_rolled_back", AuditEventType.ERROR,
            metadata=(("sequence", str(entry.sequence.value)), ("size", str(size)))
        )


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class FactStoreConfig:
    """Configuration for the fact store."""
    backend_type: str = "memory"  # "memory" or "file"
    storage_dir: Optional[str] = None


def create_fact_store(
    config: Optional[FactStoreConfig] = None,
    clock: Optional[LogicalClock] = None,
    observability: Optional[ObservabilityEngine] = None
) -> InMemoryFactStore:
    """Create a fact store based on configuration."""
    config = config or FactStoreConfig()
    if config.backend_type == "file":
        if not config.storage_dir:
            raise ValueError("storage_dir is required for the file backend")
        return FileFactStore(config.storage_dir, clock=clock, observability=observability)
    if config.backend_type == "memory":
        return InMemoryFactStore(clock=clock, observability=observability)
    raise ValueError(f"Unknown fact store backend: {config.backend_type}")


__all__ = [
    'FactStore',
    'InMemoryFactStore',
    'FileFactStore',
    'FactStoreConfig',
    'Snapshot',
    'create_fact_store',
    'FactIndexes',
    'fold_current',
]
