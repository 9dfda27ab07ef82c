"""Unit tests for MarketPoller."""

import asyncio
from datetime import datetime, timezone

import pytest

from assumptions.src.config import EngineConfig
from assumptions.src.fetchers import (
    BaseFetcher,
    CoinMarketCapFetcher,
    FetcherConfigError,
    FetcherHTTPError,
    UnmatchedFeeScaleError,
)
from assumptions.src.HistoryStore import HistoryStore
from assumptions.src.MarketPoller import PROJECTION_SLOT, MarketPoller
from assumptions.src.models import (
    ErrorCode,
    HistoryPoint,
    NetworkFeeSample,
    PriceQuote,
    StakedEthSample,
    StakingAprSample,
)


def ms(year: int, month: int, day: int, hour: int = 0) -> int:
    return int(datetime(year, month, day, hour, tzinfo=timezone.utc).timestamp() * 1000)


NOW = ms(2024, 7, 1)
QUOTE_TIME = "2024-07-01T00:00:00.000Z"


class FakeFetcher(BaseFetcher):
    """Fetcher returning a canned result or raising."""

    def __init__(self, name: str, result=None, error: Exception | None = None, delay: float = 0.0):
        super().__init__()
        self.name = name
        self.source_label = f"fake-{name}"
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakePriceFetcher(FakeFetcher):
    """Price fetcher that also serves backfill history."""

    def __init__(self, result=None, error=None, delay: float = 0.0, history=None):
        super().__init__("prices", result, error, delay)
        self.symbols = ["ETH", "SSV"]
        self.history = history or {}

    async def fetch_history(self, symbol: str, days: int = 30) -> list[HistoryPoint]:
        return list(self.history.get(symbol, []))


def quotes(
    eth: float | None = 3000.0, ssv: float | None = 40.0, timestamp: str = QUOTE_TIME
) -> dict[str, PriceQuote]:
    return {
        "ETH": PriceQuote(symbol="ETH", price_usd=eth, source_timestamp=timestamp),
        "SSV": PriceQuote(symbol="SSV", price_usd=ssv, source_timestamp=timestamp),
    }


def fee_sample(percent: float | None = 0.01, raw: int = 10**16) -> NetworkFeeSample:
    return NetworkFeeSample(
        raw_value=raw,
        percent_decimal=percent,
        decoding_scale="fixed-point-18" if percent is not None else None,
        per_block_amount=raw / 10**18,
        per_year_amount=raw / 10**18 * 2_628_000,
        observed_at_block=100,
        return_layout="uint256",
    )


def june(price: float) -> list[HistoryPoint]:
    return [
        HistoryPoint(timestamp_ms=ms(2024, 6, day, 12), price_usd=price) for day in range(1, 31)
    ]


def make_poller(
    prices: FakeFetcher | None = None,
    apr: FakeFetcher | None = None,
    stake: FakeFetcher | None = None,
    fee: FakeFetcher | None = None,
    **kwargs,
) -> MarketPoller:
    kwargs.setdefault("clock", lambda: NOW)
    return MarketPoller(
        price_fetcher=prices or FakePriceFetcher(result=quotes()),
        staking_fetcher=apr or FakeFetcher("stakingApr", StakingAprSample(0.04, "avgapr31d")),
        staked_eth_fetcher=stake
        or FakeFetcher("stakedEth", StakedEthSample(34_000_000.0, "totalvalidatorbalance", 34 * 10**15)),
        network_fee_fetcher=fee or FakeFetcher("networkFee", fee_sample()),
        **kwargs,
    )


class TestMarketPollerCycle:
    """Test merging of adapter outcomes into the snapshot."""

    @pytest.mark.asyncio
    async def test_all_sources_succeed(self) -> None:
        """A full cycle populates every field and clears every slot."""
        poller = make_poller()
        assert await poller.run_cycle() is True

        snapshot = poller.cache.get()
        assert snapshot.prices["ETH"].price_usd == 3000.0
        assert snapshot.staking_apr.value_decimal == 0.04
        assert snapshot.staked_eth.value_eth == 34_000_000.0
        assert snapshot.network_fee.percent_decimal == 0.01
        assert snapshot.network_fee_percent == 0.01
        assert snapshot.last_updated is not None
        assert all(error is None for error in snapshot.errors.values())

    @pytest.mark.asyncio
    async def test_missing_credential_isolated(self) -> None:
        """A missing key fails only its own slot."""
        poller = make_poller(
            prices=FakePriceFetcher(
                error=FetcherConfigError("CoinMarketCap API key is not configured.")
            )
        )
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.prices is None
        assert snapshot.staking_apr.value_decimal == 0.04
        assert snapshot.errors["prices"]["code"] == "MISSING_CREDENTIAL"
        assert snapshot.errors["stakingApr"] is None
        assert snapshot.last_updated is not None

    @pytest.mark.asyncio
    async def test_failed_source_keeps_last_value(self) -> None:
        """A failure keeps serving the previous value."""
        apr = FakeFetcher("stakingApr", StakingAprSample(0.035, "apr"))
        poller = make_poller(apr=apr)
        await poller.run_cycle()

        apr.error = FetcherHTTPError(500, "boom")
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.staking_apr.value_decimal == 0.035
        assert snapshot.errors["stakingApr"]["code"] == "FETCH_FAILED"
        assert "HTTP 500" in snapshot.errors["stakingApr"]["message"]

        apr.error = None
        await poller.run_cycle()
        assert poller.cache.get().errors["stakingApr"] is None

    @pytest.mark.asyncio
    async def test_all_sources_fail(self) -> None:
        """A cycle with no success leaves lastUpdated unset."""
        poller = make_poller(
            prices=FakePriceFetcher(error=FetcherHTTPError(503, "down")),
            apr=FakeFetcher("stakingApr", error=FetcherHTTPError(503, "down")),
            stake=FakeFetcher("stakedEth", error=FetcherHTTPError(503, "down")),
            fee=FakeFetcher(
                "networkFee",
                error=FetcherConfigError("no rpc", code=ErrorCode.MISSING_PROVIDER),
            ),
        )
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.last_updated is None
        assert not snapshot.has_data
        assert snapshot.errors["networkFee"]["code"] == "MISSING_PROVIDER"

    @pytest.mark.asyncio
    async def test_null_price_keeps_previous_quote(self) -> None:
        """A quote without a usable price does not blank the asset."""
        prices = FakePriceFetcher(result=quotes())
        poller = make_poller(prices=prices)
        await poller.run_cycle()

        prices.result = quotes(ssv=None)
        await poller.run_cycle()

        assert poller.cache.get().prices["SSV"].price_usd == 40.0

    @pytest.mark.asyncio
    async def test_prices_appended_to_history(self) -> None:
        """Each usable quote is recorded at its source timestamp."""
        poller = make_poller()
        await poller.run_cycle()
        assert poller.history.latest("ETH").timestamp_ms == NOW
        assert poller.history.latest("ETH").price_usd == 3000.0

    @pytest.mark.asyncio
    async def test_stake_none_keeps_previous(self) -> None:
        """A non-numeric stake payload is not an error and changes nothing."""
        stake = FakeFetcher("stakedEth", StakedEthSample(1.0, "eligibleether", 10**9))
        poller = make_poller(stake=stake)
        await poller.run_cycle()

        stake.result = None
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.staked_eth.value_eth == 1.0
        assert snapshot.errors["stakedEth"] is None

    @pytest.mark.asyncio
    async def test_stake_none_does_not_update_timestamp(self) -> None:
        """A stake payload without numbers alone does not set lastUpdated."""
        down = FetcherHTTPError(503, "down")
        poller = make_poller(
            prices=FakePriceFetcher(error=down),
            apr=FakeFetcher("stakingApr", error=down),
            stake=FakeFetcher("stakedEth", None),
            fee=FakeFetcher("networkFee", error=down),
        )
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.last_updated is None
        assert snapshot.staked_eth is None
        assert snapshot.errors["stakedEth"] is None

    @pytest.mark.asyncio
    async def test_no_usable_price_leaves_prices_unset(self) -> None:
        """A response without any usable price does not populate prices."""
        down = FetcherHTTPError(503, "down")
        prices = FakePriceFetcher(result=quotes(eth=None, ssv=None))
        poller = make_poller(
            prices=prices,
            apr=FakeFetcher("stakingApr", error=down),
            stake=FakeFetcher("stakedEth", error=down),
            fee=FakeFetcher("networkFee", error=down),
        )
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.prices is None
        assert not snapshot.has_data

        prices.result = quotes(ssv=None)
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.prices["ETH"].price_usd == 3000.0
        assert snapshot.prices["SSV"].price_usd is None


class TestMarketPollerFailures:
    """Test timeouts and unexpected errors."""

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """A slow fetcher is cut off without blocking its siblings."""
        poller = make_poller(
            apr=FakeFetcher("stakingApr", StakingAprSample(0.04, "apr"), delay=1.0),
            fetch_timeout=0.05,
        )
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.staking_apr is None
        assert snapshot.errors["stakingApr"]["code"] == "FETCH_FAILED"
        assert snapshot.errors["stakingApr"]["message"] == "Timed out after 0.05s"
        assert snapshot.prices is not None

    @pytest.mark.asyncio
    async def test_unexpected_exception(self) -> None:
        """A misbehaving fetcher is recorded as a fetch failure."""
        poller = make_poller(stake=FakeFetcher("stakedEth", error=RuntimeError("boom")))
        assert await poller.run_cycle() is True

        error = poller.cache.get().errors["stakedEth"]
        assert error["code"] == "FETCH_FAILED"
        assert error["message"] == "RuntimeError: boom"


class TestMarketPollerSingleFlight:
    """Test that cycles never overlap."""

    @pytest.mark.asyncio
    async def test_overlapping_tick_dropped(self) -> None:
        """A tick while a cycle is in flight is skipped."""
        prices = FakePriceFetcher(result=quotes(), delay=0.05)
        poller = make_poller(prices=prices)

        results = await asyncio.gather(poller.run_cycle(), poller.run_cycle())

        assert results == [True, False]
        assert prices.calls == 1
        assert not poller.in_flight

    @pytest.mark.asyncio
    async def test_tick_runs_cycle(self) -> None:
        """tick() schedules a cycle as a task."""
        poller = make_poller()
        assert await poller.tick() is True
        assert poller.cache.get().prices is not None


class TestMarketPollerNetworkFee:
    """Test fee decoding outcomes and overrides."""

    @pytest.mark.asyncio
    async def test_unmatched_scale_surfaces_raw(self) -> None:
        """An undecided fee is served raw until a decoded value exists."""
        raw = fee_sample(percent=None, raw=10**21)
        fee = FakeFetcher("networkFee", error=UnmatchedFeeScaleError(raw))
        poller = make_poller(fee=fee)
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.network_fee.raw_value == 10**21
        assert snapshot.network_fee_percent is None
        assert snapshot.fee_projection is None
        assert snapshot.errors["networkFee"]["code"] == "DECODE_FAILED"
        assert snapshot.errors["networkFee"]["detail"]["rawValue"] == str(10**21)

    @pytest.mark.asyncio
    async def test_unmatched_scale_keeps_decoded(self) -> None:
        """A later undecided reading does not replace a decoded one."""
        fee = FakeFetcher("networkFee", fee_sample(0.01))
        poller = make_poller(fee=fee)
        await poller.run_cycle()

        fee.error = UnmatchedFeeScaleError(fee_sample(percent=None, raw=10**21))
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.network_fee.percent_decimal == 0.01
        assert snapshot.network_fee_percent == 0.01
        assert snapshot.errors["networkFee"]["code"] == "DECODE_FAILED"

    @pytest.mark.asyncio
    async def test_fixed_fee_override(self) -> None:
        """A configured fee is used when no reader is available."""
        poller = make_poller(
            fee=FakeFetcher(
                "networkFee", error=FetcherConfigError("no rpc", code=ErrorCode.MISSING_PROVIDER)
            ),
            network_fee_percent=0.02,
        )
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.network_fee_percent == 0.02
        assert snapshot.fee_projection.per_year_amount == pytest.approx(1.92)
        assert poller.network_fee_configured


class TestMarketPollerProjection:
    """Test the end-to-end fee projection."""

    @pytest.mark.asyncio
    async def test_cold_start_synthetic_projection(self) -> None:
        """Without backfill the flat fallback yields a synthetic projection."""
        poller = make_poller()
        await poller.run_cycle()

        snapshot = poller.cache.get()
        projection = snapshot.fee_projection
        assert projection is not None
        assert projection.per_year_amount == pytest.approx(0.96)
        assert projection.basis == "synthetic"
        assert projection.inputs["window"] == {"startDate": "2024-06-01", "endDate": "2024-06-30"}
        assert snapshot.to_data_dict()["nextMonthNetworkFeeYearlySsv"] == pytest.approx(0.96)
        assert snapshot.errors[PROJECTION_SLOT] is None

    @pytest.mark.asyncio
    async def test_observed_projection(self) -> None:
        """Backfilled history yields an observed projection."""
        prices = FakePriceFetcher(
            result=quotes(), history={"ETH": june(3000.0), "SSV": june(40.0)}
        )
        poller = make_poller(prices=prices)
        await poller.run_cycle()

        projection = poller.cache.get().fee_projection
        assert projection.basis == "observed"
        assert projection.per_year_amount == pytest.approx(0.96)

    @pytest.mark.asyncio
    async def test_window_incomplete(self) -> None:
        """Without prices there is no projection and the gap is reported."""
        poller = make_poller(prices=FakePriceFetcher(error=FetcherHTTPError(500, "down")))
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.fee_projection is None
        assert snapshot.to_data_dict()["nextMonthNetworkFeeYearlySsv"] is None
        assert snapshot.errors[PROJECTION_SLOT]["code"] == "WINDOW_INCOMPLETE"

    @pytest.mark.asyncio
    async def test_mid_month_window_incomplete(self) -> None:
        """Mid-month, 30-day retention keeps only part of the previous month."""
        now = ms(2024, 7, 16)
        poller = make_poller(
            prices=FakePriceFetcher(result=quotes(timestamp="2024-07-16T00:00:00.000Z")),
            clock=lambda: now,
        )
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert poller.seeder.completed == {"ETH": "synthetic", "SSV": "synthetic"}
        assert poller.history.count("ETH") == 16
        assert not poller.history.calendar_window("ETH", now).is_valid
        assert snapshot.fee_projection is None
        assert snapshot.errors[PROJECTION_SLOT]["code"] == "WINDOW_INCOMPLETE"

    @pytest.mark.asyncio
    async def test_late_month_seeding_stays_pending(self) -> None:
        """Backfill pruned away at the end of the month is retried."""
        now = ms(2024, 7, 31, 13)
        poller = make_poller(
            prices=FakePriceFetcher(result=quotes(timestamp="2024-07-31T13:00:00.000Z")),
            clock=lambda: now,
        )
        await poller.run_cycle()
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert poller.seeder.completed == {}
        assert poller.history.count("ETH") == 2
        assert snapshot.fee_projection is None
        assert snapshot.errors[PROJECTION_SLOT]["code"] == "WINDOW_INCOMPLETE"

    @pytest.mark.asyncio
    async def test_late_month_longer_retention(self) -> None:
        """A two-month retention keeps the window available all month."""
        now = ms(2024, 7, 31, 13)
        poller = make_poller(
            prices=FakePriceFetcher(result=quotes(timestamp="2024-07-31T13:00:00.000Z")),
            clock=lambda: now,
            history=HistoryStore(retention_days=62),
        )
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert poller.seeder.completed == {"ETH": "synthetic", "SSV": "synthetic"}
        assert snapshot.fee_projection.per_year_amount == pytest.approx(0.96)
        assert snapshot.fee_projection.basis == "synthetic"
        assert snapshot.errors[PROJECTION_SLOT] is None

    @pytest.mark.asyncio
    async def test_missing_apr_clears_projection(self) -> None:
        """Losing an input never leaves a projection built from partial data."""
        apr = FakeFetcher("stakingApr", error=FetcherConfigError("no key"))
        poller = make_poller(apr=apr)
        await poller.run_cycle()

        snapshot = poller.cache.get()
        assert snapshot.fee_projection is None
        assert snapshot.errors[PROJECTION_SLOT] is None


class TestMarketPollerFromConfig:
    """Test wiring from configuration."""

    def test_from_config(self) -> None:
        """Fetchers and settings are built from an EngineConfig."""
        config = EngineConfig(
            refresh_interval_ms=60_000,
            symbols=["btc"],
            cmc_api_key="k",
            network_fee_percent=1.5,
            history_retention_days=62,
        )
        poller = MarketPoller.from_config(config)

        assert isinstance(poller.price_fetcher, CoinMarketCapFetcher)
        assert poller.symbols == ["BTC", "ETH", "SSV"]
        assert poller.refresh_interval == 60.0
        assert poller.network_fee_percent == 0.015
        assert poller.history.retention_days == 62
        assert set(poller.sources) == {"prices", "stakingApr", "stakedEth", "networkFee"}
        assert not poller.network_fee_fetcher.is_configured
