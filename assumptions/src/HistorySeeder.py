"""HistorySeeder: One-time backfill of the history store.

A freshly started engine has no history, so the calendar window cannot be
valid until a month of samples has accumulated. The seeder backfills each
asset once from the historical-quotes endpoint. If that endpoint is
unavailable or returns nothing (it is not on every API plan), it synthesizes
a flat history at the latest live price instead, one point per day of the
calendar window the projection averages over. Synthetic points are flagged
so projections built on them are reported as such.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .events import emit_event
from .fetchers import FetcherError
from .HistoryStore import DAY_MS, HistoryStore, calendar_window_bounds, now_ms
from .models import HistoryPoint

logger = logging.getLogger(__name__)


class HistorySource(Protocol):
    async def fetch_history(self, symbol: str, days: int = 30) -> list[HistoryPoint]: ...


def synthesize_history(price: float, reference_ms: int, days: int = 30) -> list[HistoryPoint]:
    """Build ``days`` daily points at a flat price covering the calendar window.

    Points sit at noon UTC of each day, starting on the first day of the
    window that ``reference_ms`` falls under.

    :param price: Price of every point.
    :param reference_ms: Window reference time in Unix ms.
    :param days: Number of points.
    :returns: Points oldest first, all flagged synthetic.
    """
    _, _, start_ms, _ = calendar_window_bounds(reference_ms)
    first = start_ms + DAY_MS // 2
    return [
        HistoryPoint(timestamp_ms=first + offset * DAY_MS, price_usd=price, synthetic=True)
        for offset in range(days)
    ]


class HistorySeeder:
    """Backfills the history store once per asset.

    :ivar symbols: Assets to seed.
    :ivar min_points: Assets with at least this many points need no seeding.
    :ivar days: Days to backfill or synthesize.
    """

    def __init__(
        self,
        store: HistoryStore,
        source: HistorySource,
        symbols: list[str],
        min_points: int = 10,
        days: int = 30,
    ) -> None:
        """Initialize the seeder.

        :param store: History store to fill.
        :param source: Object exposing ``fetch_history(symbol, days)``.
        :param symbols: Assets to seed.
        :param min_points: Seeding threshold (default: 10).
        :param days: Backfill length in days (default: 30).
        """
        self.store = store
        self.source = source
        self.symbols = [s.upper() for s in symbols]
        self.min_points = min_points
        self.days = days
        self._completed: dict[str, str] = {}

    def is_complete(self, symbol: str) -> bool:
        return symbol.upper() in self._completed

    @property
    def completed(self) -> dict[str, str]:
        """Map of seeded symbol to basis ("observed" or "synthetic")."""
        return dict(self._completed)

    async def seed(
        self,
        latest_prices: dict[str, float],
        now: int | None = None,
        reference_ms: int | None = None,
    ) -> None:
        """Seed every asset that still needs it.

        Idempotent: assets already seeded, or already holding enough points,
        are skipped. An asset is only marked seeded once at least
        ``min_points`` survive the store's retention prune.

        :param latest_prices: Latest live price per symbol, for the fallback.
        :param now: Current time in Unix ms (default: wall clock).
        :param reference_ms: Calendar window reference for synthetic points
            (default: ``now``).
        """
        now = now_ms() if now is None else now
        reference_ms = now if reference_ms is None else reference_ms
        for symbol in self.symbols:
            if self.is_complete(symbol):
                continue
            if self.store.count(symbol) >= self.min_points:
                self._completed[symbol] = "observed"
                continue
            await self._seed_symbol(symbol, latest_prices.get(symbol), now, reference_ms)

    async def _seed_symbol(
        self, symbol: str, latest_price: float | None, now: int, reference_ms: int
    ) -> None:
        points: list[HistoryPoint] = []
        try:
            points = await self.source.fetch_history(symbol, days=self.days)
        except FetcherError as e:
            logger.warning(f"[seeder] Historical quotes unavailable for {symbol}: {e}")

        basis = "observed"
        if not points:
            if latest_price is None:
                logger.info(f"[seeder] No history or live price for {symbol} yet, retrying next cycle")
                return
            points = synthesize_history(latest_price, reference_ms, self.days)
            basis = "synthetic"

        self.store.extend(symbol, points, now=now)
        retained = self.store.count(symbol)
        if retained < self.min_points:
            # Pruned below the threshold, so the asset stays pending
            emit_event(
                logger,
                "history_seeded",
                logging.WARNING,
                symbol=symbol,
                basis=basis,
                points=len(points),
                retained=retained,
            )
            return

        self._completed[symbol] = basis
        emit_event(
            logger,
            "history_seeded",
            symbol=symbol,
            basis=basis,
            points=len(points),
            retained=retained,
        )
