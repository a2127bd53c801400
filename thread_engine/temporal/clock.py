"""
Logical Clock
=============

Injectable clock used for transaction instants and recency windows.

GUARANTEES:
- Never reads system time implicitly in replay mode
- All clock ticks are logged, so a run can be replayed tick for tick
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List


class ClockExhausted(Exception):
    """Raised when replay clock runs out of ticks."""
    pass


@dataclass
class LogicalClock:
    """
    Injectable clock for deterministic execution.

    MODES:
    ======
    1. LIVE mode: Uses real system time, optionally logs ticks
    2. REPLAY mode: Uses pre-recorded tick sequence
    """
    _ticks: List[datetime] = field(default_factory=list)
    _current_index: int = 0
    _is_live: bool = True
    _record: bool = True

    def now(self) -> datetime:
        """
        Get current logical time.

        In LIVE mode: reads system time (and logs it when recording)
        In REPLAY mode: returns next tick from recorded sequence
        """
        if self._is_live:
            current = datetime.now(timezone.utc)
            if self._record:
                self._ticks.append(current)
            self._current_index += 1
            return current
        else:
            if self._current_index >= len(self._ticks):
                raise ClockExhausted(
                    f"Replay clock exhausted at index {self._current_index}. "
                    f"Original execution had {len(self._ticks)} ticks."
                )
            tick = self._ticks[self._current_index]
            self._current_index += 1
            return tick

    def tick_count(self) -> int:
        """Number of ticks recorded/consumed."""
        return self._current_index

    def is_live(self) -> bool:
        return self._is_live

    def recorded_ticks(self) -> List[datetime]:
        """Copy of the ticks seen so far, suitable for `from_ticks`."""
        if self._is_live:
            return list(self._ticks)
        return list(self._ticks[:self._current_index])

    @classmethod
    def live(cls, record: bool = False) -> 'LogicalClock':
        """
        Create clock in LIVE mode (uses system time).

        Long-running processes leave `record` off so the tick log does not grow.
        """
        clock = cls(_is_live=True, _record=record)
        return clock

    @classmethod
    def from_ticks(cls, ticks: Iterable[datetime]) -> 'LogicalClock':
        """Create clock in REPLAY mode from an explicit tick sequence."""
        normalized = [
            t if t.tzinfo is not None else t.replace(tzinfo=timezone.utc)
            for t in ticks
        ]
        clock = cls(_ticks=normalized, _current_index=0, _is_live=False)
        return clock

    def __repr__(self) -> str:
        mode = "LIVE" if self._is_live else "REPLAY"
        return f"LogicalClock({mode}, ticks={len(self._ticks)}, index={self._current_index})"
