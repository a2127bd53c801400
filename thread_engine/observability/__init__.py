"""
Observability & Audit Layer

RESPONSIBILITY: Audit trail, metrics, process logging
ALLOWED INPUTS: Audit entries and metric points from any layer
OUTPUTS: Per-layer AuditLog, Metrics, audit reports

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Filter or interpret events (only record them)
- Block or delay other layer operations
"""

from __future__ import annotations
from dataclasses import dataclass, field
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple
from enum import Enum
import hashlib
import itertools
import logging
import threading

from ..contracts.base import Timestamp, TimeRange
from ..contracts.audit import AuditLogEntry, AuditEventType, MetricPoint
from .logging_config import setup_logging

logger = logging.getLogger("thread_engine.audit")


# =============================================================================
# LOG COLLECTORS (One per layer)
# =============================================================================

class LogCollector:
    """
    Append-only audit collector for one layer.

    Keeps the newest `retention` entries; `entry_count` still counts all.
    """

    def __init__(self, layer_name: str, retention: int = 10_000):
        self._layer_name = layer_name
        self._entries: Deque[AuditLogEntry] = deque(maxlen=retention)
        self._collected = 0

    def collect(self, entry: AuditLogEntry):
        """Collect an audit entry (append-only)."""
        self._entries.append(entry)
        self._collected += 1

    def get_entries(
        self,
        time_range: Optional[TimeRange] = None,
        event_type: Optional[AuditEventType] = None
    ) -> List[AuditLogEntry]:
        """Get entries, optionally filtered."""
        entries = list(self._entries)

        if time_range:
            entries = [
                e for e in entries
                if time_range.contains(e.timestamp)
            ]

        if event_type:
            entries = [e for e in entries if e.event_type == event_type]

        return entries

    @property
    def layer_name(self) -> str:
        return self._layer_name

    @property
    def entry_count(self) -> int:
        return self._collected


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

class MetricType(Enum):
    """Types of metrics collected."""
    COUNTER = "counter"
    TIMING = "timing"


@dataclass
class MetricDefinition:
    """Definition of a metric to collect."""
    name: str
    metric_type: MetricType
    description: str
    labels: Tuple[str, ...] = field(default_factory=tuple)


class MetricsCollector:
    """
    Metrics are append-only time series data points.

    Each series keeps its newest `retention` points. Counter totals are
    accumulated separately and never lose trimmed points.
    """

    def __init__(self, retention: int = 10_000):
        self._retention = retention
        self._metrics: Dict[str, Deque[MetricPoint]] = {}
        self._totals: Dict[str, float] = {}
        self._definitions: Dict[str, MetricDefinition] = {}
        self._register_default_metrics()

    def _register_default_metrics(self):
        defaults = [
            MetricDefinition(
                name="transactions_total",
                metric_type=MetricType.COUNTER,
                description="Committed transactions"
            ),
            MetricDefinition(
                name="datoms_written_total",
                metric_type=MetricType.COUNTER,
                description="Assertions and retractions written"
            ),
            MetricDefinition(
                name="noop_transactions_total",
                metric_type=MetricType.COUNTER,
                description="Batches fully removed by deduplication"
            ),
            MetricDefinition(
                name="bumps_total",
                metric_type=MetricType.COUNTER,
                description="Last-open bumps that wrote both transactions"
            ),
            MetricDefinition(
                name="bumps_skipped_total",
                metric_type=MetricType.COUNTER,
                description="Last-open bumps skipped because the thread was not open"
            ),
            MetricDefinition(
                name="read_duration_ms",
                metric_type=MetricType.TIMING,
                description="Read operation time in milliseconds",
                labels=("operation",)
            ),
        ]

        for definition in defaults:
            self.register_metric(definition)

    def register_metric(self, definition: MetricDefinition):
        self._definitions[definition.name] = definition
        if definition.name not in self._metrics:
            self._metrics[definition.name] = deque(maxlen=self._retention)

    def record(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        """Record a metric data point."""
        if metric_name not in self._metrics:
            self._metrics[metric_name] = deque(maxlen=self._retention)

        label_tuple = tuple(sorted(labels.items())) if labels else ()

        point = MetricPoint(
            metric_name=metric_name,
            value=value,
            timestamp=Timestamp.now(),
            labels=label_tuple
        )
        self._metrics[metric_name].append(point)
        self._totals[metric_name] = self._totals.get(metric_name, 0) + value

    def get_metric(
        self,
        metric_name: str,
        time_range: Optional[TimeRange] = None
    ) -> List[MetricPoint]:
        """Get metric data points, optionally filtered by time range."""
        points = list(self._metrics.get(metric_name, ()))

        if time_range:
            points = [
                p for p in points
                if time_range.contains(p.timestamp)
            ]

        return points

    def total(self, metric_name: str) -> float:
        """Sum of every point ever recorded (the value of a counter)."""
        return self._totals.get(metric_name, 0)


# =============================================================================
# OBSERVABILITY ENGINE (Orchestrates all observability)
# =============================================================================

LAYERS = ('storage', 'core', 'engine', 'api')


@dataclass
class ObservabilityConfig:
    """Configuration for observability engine."""
    enable_metrics: bool = True
    log_level: str = "INFO"
    retention: int = 10_000

    def __post_init__(self):
        if self.retention < 1:
            raise ValueError("retention must be positive")


class ObservabilityEngine:
    """
    Central Observability Engine.

    BOUNDARY ENFORCEMENT:
    - ONLY observes, never modifies
    - Provides read-only access to collected data
    - Mirrors every audit entry to the `thread_engine.audit` logger
    """

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        self._config = config or ObservabilityConfig()
        self._collectors: Dict[str, LogCollector] = {
            name: LogCollector(name, self._config.retention) for name in LAYERS
        }
        self._metrics = (
            MetricsCollector(self._config.retention) if self._config.enable_metrics else None
        )
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def collect_audit(self, entry: AuditLogEntry):
        """Collect an audit log entry from any layer."""
        with self._lock:
            collector = self._collectors.get(entry.layer)
            if collector is None:
                collector = self._collectors[entry.layer] = LogCollector(
                    entry.layer, self._config.retention
                )
            collector.collect(entry)

        level = logging.WARNING if entry.event_type is AuditEventType.ERROR else logging.DEBUG
        logger.log(level, "%s %s %s %s", entry.layer, entry.action, entry.entity_id or "-",
                   dict(entry.metadata))

    def log_audit(
        self,
        action: str,
        layer: str,
        event_type: AuditEventType = AuditEventType.SYSTEM,
        entity_id: Optional[str] = None,
        metadata: Tuple[Tuple[str, str], ...] = ()
    ) -> AuditLogEntry:
        """Helper to log audit entry directly."""
        timestamp = Timestamp.now()
        entry_id = hashlib.sha256(
            f"{layer}_{action}|{next(self._sequence)}|{timestamp.to_iso()}".encode()
        ).hexdigest()[:16]

        entry = AuditLogEntry(
            entry_id=f"audit_{entry_id}",
            event_type=event_type,
            timestamp=timestamp,
            layer=layer,
            action=action,
            entity_id=entity_id,
            metadata=metadata
        )
        self.collect_audit(entry)
        return entry

    def collect_metric(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ):
        """Collect a metric data point."""
        if self._metrics:
            with self._lock:
                self._metrics.record(metric_name, value, labels)

    def get_unified_log(
        self,
        time_range: Optional[TimeRange] = None,
        layers: Optional[List[str]] = None
    ) -> List[AuditLogEntry]:
        """Get unified log from all or specified layers."""
        target_layers = layers or list(self._collectors.keys())

        all_entries = []
        for layer_name in target_layers:
            collector = self._collectors.get(layer_name)
            if collector:
                all_entries.extend(collector.get_entries(time_range=time_range))

        all_entries.sort(key=lambda e: e.timestamp.value)
        return all_entries

    def get_layer_log(
        self,
        layer_name: str,
        time_range: Optional[TimeRange] = None,
        event_type: Optional[AuditEventType] = None
    ) -> List[AuditLogEntry]:
        """Get log for a specific layer."""
        collector = self._collectors.get(layer_name)
        if not collector:
            return []
        return collector.get_entries(time_range=time_range, event_type=event_type)

    def get_metrics(self) -> Optional[MetricsCollector]:
        """Get metrics collector (read-only access)."""
        return self._metrics

    def generate_audit_report(
        self,
        time_range: Optional[TimeRange] = None
    ) -> Dict:
        """Generate comprehensive audit report."""
        entries = self.get_unified_log(time_range=time_range)

        by_layer: Dict[str, int] = {}
        by_type: Dict[str, int] = {}

        for entry in entries:
            by_layer[entry.layer] = by_layer.get(entry.layer, 0) + 1
            by_type[entry.event_type.value] = by_type.get(entry.event_type.value, 0) + 1

        with self._lock:
            collected = {c.layer_name: c.entry_count for c in self._collectors.values()}

        return {
            'total_entries': len(entries),
            'by_layer': by_layer,
            'collected_by_layer': collected,
            'by_event_type': by_type,
            'time_range': {
                'start': entries[0].timestamp.to_iso() if entries else None,
                'end': entries[-1].timestamp.to_iso() if entries else None,
            },
            'generated_at': Timestamp.now().to_iso()
        }


__all__ = [
    'LogCollector',
    'MetricType',
    'MetricDefinition',
    'MetricsCollector',
    'ObservabilityConfig',
    'ObservabilityEngine',
    'setup_logging',
]
