"""HistoryStore: Rolling per-asset price history with calendar-window averages.

Every write appends and then prunes points older than the retention window,
so the store never holds more than ``retention_days`` of history.

The window query is aligned to the calendar rather than trailing the clock:
it always covers the last completed UTC month, ending on that month's last
day and starting 29 days earlier. The average therefore only moves when the
month rolls over, not on every poll.

.. code-block:: python

    >>> store = HistoryStore()
    >>> store.append("ETH", HistoryPoint(timestamp_ms=ts, price_usd=3000.0))
    >>> window = store.calendar_window("ETH", reference_ms=ts)
    >>> window.is_valid
    False
"""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta, timezone
from statistics import mean
from typing import Iterable

from .models import CalendarWindow, HistoryPoint

DAY_MS = 24 * 60 * 60 * 1000
WINDOW_DAYS = 30
MAX_GAP_MS = int(1.5 * DAY_MS)


def now_ms() -> int:
    """Current wall clock in Unix milliseconds."""
    return int(time.time() * 1000)


def _day_start_ms(day: date) -> int:
    midnight = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return int(midnight.timestamp() * 1000)


def calendar_window_bounds(reference_ms: int) -> tuple[date, date, int, int]:
    """Compute the window covering the last completed UTC month.

    :param reference_ms: Reference time in Unix milliseconds.
    :returns: Tuple of (start_day, end_day, start_ms, end_ms), both bounds
        inclusive; ``end_ms`` is the last millisecond of ``end_day``.
    """
    reference = datetime.fromtimestamp(reference_ms / 1000, tz=timezone.utc)
    end_day = reference.date().replace(day=1) - timedelta(days=1)
    start_day = end_day - timedelta(days=WINDOW_DAYS - 1)
    start_ms = _day_start_ms(start_day)
    end_ms = _day_start_ms(end_day + timedelta(days=1)) - 1
    return start_day, end_day, start_ms, end_ms


class HistoryStore:
    """Per-asset rolling price history.

    :ivar retention_days: Points older than this are dropped on every write.
    """

    DEFAULT_RETENTION_DAYS = 30

    def __init__(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> None:
        """Initialize the store.

        :param retention_days: Retention window in days (default: 30).
        :raises ValueError: If retention_days is not positive.
        """
        if retention_days <= 0:
            raise ValueError("retention_days must be positive")
        self.retention_days = retention_days
        self._history: dict[str, list[HistoryPoint]] = {}

    @property
    def retention_ms(self) -> int:
        return self.retention_days * DAY_MS

    def append(self, symbol: str, point: HistoryPoint, now: int | None = None) -> None:
        """Append one point and prune.

        :param symbol: Asset symbol.
        :param point: Price sample.
        :param now: Reference time for pruning in Unix ms (default: wall clock).
        """
        self.extend(symbol, [point], now=now)

    def extend(
        self,
        symbol: str,
        points: Iterable[HistoryPoint],
        now: int | None = None,
    ) -> None:
        """Append several points and prune once.

        :param symbol: Asset symbol.
        :param points: Price samples, in any order.
        :param now: Reference time for pruning in Unix ms (default: wall clock).
        """
        series = self._history.setdefault(symbol.upper(), [])
        series.extend(points)
        series.sort(key=lambda p: p.timestamp_ms)
        self._prune(symbol.upper(), now_ms() if now is None else now)

    def _prune(self, symbol: str, now: int) -> None:
        cutoff = now - self.retention_ms
        self._history[symbol] = [p for p in self._history[symbol] if p.timestamp_ms >= cutoff]

    def points(self, symbol: str) -> list[HistoryPoint]:
        """Get a copy of an asset's history, oldest first."""
        return list(self._history.get(symbol.upper(), []))

    def count(self, symbol: str) -> int:
        return len(self._history.get(symbol.upper(), []))

    def latest(self, symbol: str) -> HistoryPoint | None:
        series = self._history.get(symbol.upper())
        return series[-1] if series else None

    def calendar_window(self, symbol: str, reference_ms: int | None = None) -> CalendarWindow:
        """Average the asset's samples over the last completed UTC month.

        :param symbol: Asset symbol.
        :param reference_ms: Reference time in Unix ms (default: wall clock).
        :returns: CalendarWindow; check ``is_valid`` before using ``avg``.
        """
        reference_ms = now_ms() if reference_ms is None else reference_ms
        start_day, end_day, start_ms, end_ms = calendar_window_bounds(reference_ms)

        samples = [
            p for p in self._history.get(symbol.upper(), [])
            if start_ms <= p.timestamp_ms <= end_ms
        ]

        if not samples:
            return CalendarWindow(
                avg=None,
                count=0,
                start_date=start_day.isoformat(),
                end_date=end_day.isoformat(),
                days_span=0.0,
                has_gap=False,
            )

        has_gap = any(
            later.timestamp_ms - earlier.timestamp_ms > MAX_GAP_MS
            for earlier, later in zip(samples, samples[1:])
        )
        return CalendarWindow(
            avg=mean(p.price_usd for p in samples),
            count=len(samples),
            start_date=start_day.isoformat(),
            end_date=end_day.isoformat(),
            days_span=(samples[-1].timestamp_ms - samples[0].timestamp_ms) / DAY_MS,
            has_gap=has_gap,
            synthetic_count=sum(1 for p in samples if p.synthetic),
        )
