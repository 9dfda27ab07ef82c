"""Unit tests for HistorySeeder."""

import logging
from datetime import datetime, timezone

import pytest

from assumptions.src.fetchers import FetcherHTTPError
from assumptions.src.HistorySeeder import HistorySeeder, synthesize_history
from assumptions.src.HistoryStore import DAY_MS, HistoryStore
from assumptions.src.models import HistoryPoint


def ms(year: int, month: int, day: int, hour: int = 0) -> int:
    return int(datetime(year, month, day, hour, tzinfo=timezone.utc).timestamp() * 1000)


NOW = ms(2024, 7, 1)


class FakeHistorySource:
    """Backfill source returning canned points or raising."""

    def __init__(self, points=None, error: Exception | None = None) -> None:
        self.points = points or {}
        self.error = error
        self.calls: list[str] = []

    async def fetch_history(self, symbol: str, days: int = 30) -> list[HistoryPoint]:
        self.calls.append(symbol)
        if self.error is not None:
            raise self.error
        return list(self.points.get(symbol, []))


def observed_june(price: float) -> list[HistoryPoint]:
    return [
        HistoryPoint(timestamp_ms=ms(2024, 6, day, 12), price_usd=price)
        for day in range(1, 31)
    ]


class TestSynthesizeHistory:
    """Test the flat fallback history."""

    def test_covers_calendar_window(self) -> None:
        """Points sit at noon of each day of the window."""
        points = synthesize_history(3000.0, NOW)

        assert len(points) == 30
        assert points[0].timestamp_ms == ms(2024, 6, 1, 12)
        assert points[-1].timestamp_ms == ms(2024, 6, 30, 12)
        assert all(p.synthetic for p in points)
        assert all(p.price_usd == 3000.0 for p in points)
        assert all(b.timestamp_ms - a.timestamp_ms == DAY_MS for a, b in zip(points, points[1:]))


class TestHistorySeeder:
    """Test one-time backfill."""

    @pytest.mark.asyncio
    async def test_observed_backfill(self) -> None:
        """History from the source is stored as observed."""
        store = HistoryStore()
        source = FakeHistorySource(points={"ETH": observed_june(3000.0)})
        seeder = HistorySeeder(store, source, ["ETH"])

        await seeder.seed({"ETH": 3100.0}, now=NOW)

        assert seeder.completed == {"ETH": "observed"}
        assert store.count("ETH") == 30
        assert not any(p.synthetic for p in store.points("ETH"))

    @pytest.mark.asyncio
    async def test_fetch_error_falls_back_to_synthetic(self) -> None:
        """A failing history endpoint synthesizes from the live price."""
        store = HistoryStore()
        source = FakeHistorySource(error=FetcherHTTPError(403, "plan restricted"))
        seeder = HistorySeeder(store, source, ["ETH"])

        await seeder.seed({"ETH": 3100.0}, now=NOW)

        assert seeder.completed == {"ETH": "synthetic"}
        window = store.calendar_window("ETH", reference_ms=NOW)
        assert window.is_valid
        assert window.avg == 3100.0
        assert window.synthetic_count == 30

    @pytest.mark.asyncio
    async def test_empty_history_falls_back_to_synthetic(self) -> None:
        """An empty backfill is treated like an unavailable one."""
        store = HistoryStore()
        seeder = HistorySeeder(store, FakeHistorySource(), ["SSV"])

        await seeder.seed({"SSV": 40.0}, now=NOW)

        assert seeder.is_complete("SSV")
        assert seeder.completed["SSV"] == "synthetic"

    @pytest.mark.asyncio
    async def test_no_price_stays_pending(self) -> None:
        """Without history or a live price the asset is retried later."""
        store = HistoryStore()
        source = FakeHistorySource()
        seeder = HistorySeeder(store, source, ["SSV"])

        await seeder.seed({}, now=NOW)
        assert not seeder.is_complete("SSV")
        assert store.count("SSV") == 0

        await seeder.seed({"SSV": 40.0}, now=NOW)
        assert seeder.is_complete("SSV")
        assert source.calls == ["SSV", "SSV"]

    @pytest.mark.asyncio
    async def test_seeds_once(self) -> None:
        """A seeded asset is never fetched again."""
        store = HistoryStore()
        source = FakeHistorySource(points={"ETH": observed_june(3000.0)})
        seeder = HistorySeeder(store, source, ["ETH"])

        await seeder.seed({"ETH": 3000.0}, now=NOW)
        await seeder.seed({"ETH": 3000.0}, now=NOW)

        assert source.calls == ["ETH"]
        assert store.count("ETH") == 30

    @pytest.mark.asyncio
    async def test_enough_points_skips_backfill(self) -> None:
        """An asset already holding enough history is marked observed."""
        store = HistoryStore()
        store.extend("ETH", observed_june(3000.0)[:10], now=NOW)
        source = FakeHistorySource()
        seeder = HistorySeeder(store, source, ["ETH"], min_points=10)

        await seeder.seed({"ETH": 3000.0}, now=NOW)

        assert source.calls == []
        assert seeder.completed == {"ETH": "observed"}

    @pytest.mark.asyncio
    async def test_pruned_backfill_stays_pending(self, caplog) -> None:
        """Points dropped by retention do not count toward seeding."""
        late = ms(2024, 7, 31, 13)
        store = HistoryStore()
        source = FakeHistorySource()
        seeder = HistorySeeder(store, source, ["ETH"])

        with caplog.at_level(logging.WARNING, logger="assumptions.src.HistorySeeder"):
            await seeder.seed({"ETH": 3000.0}, now=late)

        assert not seeder.is_complete("ETH")
        assert store.count("ETH") == 0
        record = caplog.records[-1]
        assert record.event == "history_seeded"
        assert record.fields["retained"] == 0

        await seeder.seed({"ETH": 3000.0}, now=late)
        assert source.calls == ["ETH", "ETH"]

    @pytest.mark.asyncio
    async def test_partially_retained_backfill_completes(self) -> None:
        """Enough points surviving the prune mark the asset seeded."""
        store = HistoryStore()
        source = FakeHistorySource(points={"ETH": observed_june(3000.0)})
        seeder = HistorySeeder(store, source, ["ETH"])

        await seeder.seed({"ETH": 3000.0}, now=ms(2024, 7, 16))

        assert seeder.completed == {"ETH": "observed"}
        assert store.count("ETH") == 15

    @pytest.mark.asyncio
    async def test_reference_aligns_synthetic_points(self) -> None:
        """Synthetic points follow the window reference, not the clock."""
        store = HistoryStore(retention_days=60)
        seeder = HistorySeeder(store, FakeHistorySource(), ["ETH"])

        await seeder.seed({"ETH": 1.0}, now=ms(2024, 7, 20), reference_ms=ms(2024, 7, 3))

        assert store.points("ETH")[-1].timestamp_ms == ms(2024, 6, 30, 12)
