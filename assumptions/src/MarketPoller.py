"""MarketPoller: Orchestrator of the periodic multi-source poll.

Architecture:
    - One timer schedules a tick every refresh interval
    - A tick runs a cycle unless one is still in flight (single flight)
    - A cycle fans out to every fetcher concurrently and waits for all of them
    - Each fetcher has its own timeout and error slot; a failure is recorded
      and never aborts sibling fetchers or the cycle
    - Successful results are merged over the previous snapshot, so a failed
      source keeps serving its last known value
    - After the fetchers settle, the history seeder runs (once per asset) and
      the fee projection is recomputed
    - The snapshot is swapped field by field at the end of the cycle
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from .config import EngineConfig
from .events import emit_event
from .FeeProjector import FeeProjector
from .fetchers import (
    BaseFetcher,
    CoinMarketCapFetcher,
    EthStoreFetcher,
    FetcherError,
    NetworkFeeFetcher,
    StakedEthFetcher,
    UnmatchedFeeScaleError,
)
from .fetchers.coinmarketcap import parse_timestamp_ms
from .HistorySeeder import HistorySeeder
from .HistoryStore import HistoryStore, now_ms
from .models import ErrorCode, FeeProjection, HistoryPoint, PriceQuote
from .SnapshotCache import SnapshotCache
from .SourceManager import SourceManager, utc_now_iso

logger = logging.getLogger(__name__)

PROJECTION_SLOT = "feeProjection"


@dataclass
class AdapterOutcome:
    """Result of one fetcher call within a cycle.

    :ivar source: Fetcher name.
    :ivar ok: True if the fetch succeeded.
    :ivar value: Normalized result on success.
    :ivar error: Exception raised on failure.
    :ivar code: Error code on failure.
    """

    source: str
    ok: bool
    value: Any = None
    error: BaseException | None = None
    code: ErrorCode | None = None


class MarketPoller:
    """Runs poll cycles and owns the snapshot cache.

    :ivar cache: Snapshot served by the HTTP facade.
    :ivar history: Rolling price history.
    :ivar source_manager: Per-source error slots.
    :ivar refresh_interval: Seconds between ticks.
    :ivar fetch_timeout: Seconds before a fetcher call counts as failed.
    """

    def __init__(
        self,
        price_fetcher: CoinMarketCapFetcher,
        staking_fetcher: EthStoreFetcher,
        staked_eth_fetcher: StakedEthFetcher,
        network_fee_fetcher: NetworkFeeFetcher,
        refresh_interval: float = 300.0,
        fetch_timeout: float = 10.0,
        eth_symbol: str = "ETH",
        fee_asset_symbol: str = "SSV",
        network_fee_percent: float | None = None,
        history: HistoryStore | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the poller.

        :param price_fetcher: Quotes fetcher (also the backfill source).
        :param staking_fetcher: Staking APR fetcher.
        :param staked_eth_fetcher: Total stake fetcher.
        :param network_fee_fetcher: On-chain fee reader.
        :param refresh_interval: Seconds between ticks (default: 300).
        :param fetch_timeout: Per-fetcher timeout in seconds (default: 10).
        :param eth_symbol: Symbol of the staked asset.
        :param fee_asset_symbol: Symbol the fee is paid in.
        :param network_fee_percent: Fixed fee decimal overriding the on-chain value.
        :param history: Optional preconfigured history store.
        :param clock: Wall clock in Unix ms.
        """
        self.price_fetcher = price_fetcher
        self.staking_fetcher = staking_fetcher
        self.staked_eth_fetcher = staked_eth_fetcher
        self.network_fee_fetcher = network_fee_fetcher
        self.fetchers: dict[str, BaseFetcher] = {
            f.name: f
            for f in (price_fetcher, staking_fetcher, staked_eth_fetcher, network_fee_fetcher)
        }

        self.refresh_interval = refresh_interval
        self.fetch_timeout = fetch_timeout
        self.network_fee_percent = network_fee_percent
        self.clock = clock
        self.symbols = list(price_fetcher.symbols)

        self.cache = SnapshotCache()
        self.history = history or HistoryStore()
        self.source_manager = SourceManager([*self.fetchers, PROJECTION_SLOT])
        self.projector = FeeProjector(eth_symbol=eth_symbol, fee_asset_symbol=fee_asset_symbol)
        self.seeder = HistorySeeder(
            store=self.history,
            source=price_fetcher,
            symbols=[self.projector.eth_symbol, self.projector.fee_asset_symbol],
        )

        self._in_flight = False
        self._cycle_count = 0
        self._tick_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: EngineConfig) -> MarketPoller:
        """Build a poller and its fetchers from an EngineConfig."""
        timeout = config.fetch_timeout
        return cls(
            price_fetcher=CoinMarketCapFetcher(
                config.symbols,
                api_key=config.cmc_api_key,
                timeout=timeout,
                quotes_url=config.cmc_api_url,
                historical_url=config.cmc_historical_url,
            ),
            staking_fetcher=EthStoreFetcher(
                api_key=config.ethstore_api_key,
                timeout=timeout,
                base_url=config.ethstore_api_url,
                day=config.ethstore_day,
            ),
            staked_eth_fetcher=StakedEthFetcher(
                api_key=config.beaconchain_api_key,
                timeout=timeout,
                url=config.staked_eth_url,
            ),
            network_fee_fetcher=NetworkFeeFetcher(
                rpc_url=config.rpc_url,
                contract_address=config.network_fee_contract,
                function_signature=config.network_fee_function,
                timeout=timeout,
            ),
            refresh_interval=config.refresh_interval_seconds,
            fetch_timeout=timeout,
            eth_symbol=config.eth_symbol,
            fee_asset_symbol=config.fee_asset_symbol,
            network_fee_percent=config.network_fee_percent,
            history=HistoryStore(retention_days=config.history_retention_days),
        )

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def sources(self) -> dict[str, str]:
        """Upstream label per source slot."""
        return {name: fetcher.source_label for name, fetcher in self.fetchers.items()}

    @property
    def network_fee_configured(self) -> bool:
        return self.network_fee_percent is not None or self.network_fee_fetcher.is_configured

    async def _run_adapter(self, name: str, fetcher: BaseFetcher) -> AdapterOutcome:
        """Run one fetcher with a timeout and record the outcome in its slot."""
        started = time.monotonic()
        detail: dict[str, Any] = {}
        try:
            value = await asyncio.wait_for(fetcher.fetch(), timeout=self.fetch_timeout)
        except FetcherError as e:
            error: BaseException = e
            code, message, detail = e.code, str(e), e.detail
        except asyncio.TimeoutError as e:
            error = e
            code, message = ErrorCode.FETCH_FAILED, f"Timed out after {self.fetch_timeout}s"
        except Exception as e:
            error = e
            code, message = ErrorCode.FETCH_FAILED, f"{type(e).__name__}: {e}"
        else:
            self.source_manager.record_success(name)
            emit_event(
                logger,
                "adapter_result",
                logging.DEBUG,
                source=name,
                ok=True,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return AdapterOutcome(source=name, ok=True, value=value)

        if self.source_manager.record_failure(name, code, message, detail):
            emit_event(
                logger,
                "adapter_result",
                logging.WARNING,
                source=name,
                ok=False,
                code=code.value,
                message=message,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        return AdapterOutcome(source=name, ok=False, error=error, code=code)

    def _merge_prices(
        self, quotes: dict[str, PriceQuote], now: int
    ) -> dict[str, PriceQuote] | None:
        """Merge fresh quotes over the cached ones and record history.

        :returns: Merged quotes, or the cached value (possibly None) if the
            response held no usable price at all.
        """
        previous = self.cache.get().prices
        if all(quote.price_usd is None for quote in quotes.values()):
            return previous

        merged = dict(previous or {})
        for symbol, quote in quotes.items():
            if quote.price_usd is None:
                # Last usable quote stays
                merged.setdefault(symbol, quote)
                continue
            merged[symbol] = quote
            timestamp = parse_timestamp_ms(quote.source_timestamp) or now
            self.history.append(
                symbol, HistoryPoint(timestamp_ms=timestamp, price_usd=quote.price_usd), now=now
            )
        return merged

    def _reference_ms(self, prices: dict[str, PriceQuote] | None, now: int) -> int:
        """Latest quote time, else the wall clock."""
        timestamps = [
            ts
            for quote in (prices or {}).values()
            if (ts := parse_timestamp_ms(quote.source_timestamp)) is not None
        ]
        return max(timestamps) if timestamps else now

    async def _cycle(self) -> None:
        started = time.monotonic()
        now = self.clock()
        self._cycle_count += 1

        outcomes = await asyncio.gather(
            *(self._run_adapter(name, fetcher) for name, fetcher in self.fetchers.items())
        )
        results = {outcome.source: outcome for outcome in outcomes}
        snapshot = self.cache.get()
        changes: dict[str, Any] = {}

        prices_outcome = results[self.price_fetcher.name]
        if prices_outcome.ok:
            changes["prices"] = self._merge_prices(prices_outcome.value, now)

        apr_outcome = results[self.staking_fetcher.name]
        if apr_outcome.ok:
            changes["staking_apr"] = apr_outcome.value

        stake_outcome = results[self.staked_eth_fetcher.name]
        if stake_outcome.ok and stake_outcome.value is not None:
            changes["staked_eth"] = stake_outcome.value

        fee_outcome = results[self.network_fee_fetcher.name]
        if fee_outcome.ok:
            sample = fee_outcome.value
            changes["network_fee"] = sample
            emit_event(
                logger,
                "fee_decoded",
                raw=sample.raw_value,
                scale=sample.decoding_scale,
                percent_decimal=sample.percent_decimal,
                layout=sample.return_layout,
                block=sample.observed_at_block,
            )
        elif isinstance(fee_outcome.error, UnmatchedFeeScaleError):
            # Surface the raw reading only while no decoded value exists
            if snapshot.network_fee is None or snapshot.network_fee.percent_decimal is None:
                changes["network_fee"] = fee_outcome.error.sample

        prices = changes.get("prices", snapshot.prices)
        staking_apr = changes.get("staking_apr", snapshot.staking_apr)
        network_fee = changes.get("network_fee", snapshot.network_fee)

        latest_prices = {
            symbol: quote.price_usd
            for symbol, quote in (prices or {}).items()
            if quote.price_usd is not None
        }
        reference_ms = self._reference_ms(prices, now)
        await self.seeder.seed(latest_prices, now=now, reference_ms=reference_ms)

        fee_percent = self.network_fee_percent
        if fee_percent is None and network_fee is not None:
            fee_percent = network_fee.percent_decimal
        changes["network_fee_percent"] = fee_percent
        changes["fee_projection"] = self._project(
            reference_ms,
            staking_apr.value_decimal if staking_apr else None,
            fee_percent,
        )

        # A stake payload without numbers changed nothing
        succeeded = [
            o.source
            for o in outcomes
            if o.ok and not (o.source == self.staked_eth_fetcher.name and o.value is None)
        ]
        if succeeded:
            changes["last_updated"] = utc_now_iso()
        changes["errors"] = self.source_manager.get_errors()
        self.cache.update(**changes)

        emit_event(
            logger,
            "cycle_completed",
            cycle=self._cycle_count,
            duration_ms=int((time.monotonic() - started) * 1000),
            **{o.source: "ok" if o.ok else getattr(o.code, "value", "FAILED") for o in outcomes},
        )

    def _project(
        self, reference_ms: int, staking_apr: float | None, fee_percent: float | None
    ) -> FeeProjection | None:
        eth_window = self.history.calendar_window(self.projector.eth_symbol, reference_ms)
        asset_window = self.history.calendar_window(self.projector.fee_asset_symbol, reference_ms)
        result = self.projector.project(eth_window, asset_window, staking_apr, fee_percent)

        if result.success:
            assert result.projection is not None
            self.source_manager.clear(PROJECTION_SLOT)
            emit_event(
                logger,
                "projection_updated",
                per_year=result.projection.per_year_amount,
                basis=result.projection.basis,
                window=f"{eth_window.start_date}..{eth_window.end_date}",
            )
            return result.projection

        if not (eth_window.is_valid and asset_window.is_valid):
            self.source_manager.set_condition(
                PROJECTION_SLOT, ErrorCode.WINDOW_INCOMPLETE, result.reason or ""
            )
        else:
            self.source_manager.clear(PROJECTION_SLOT)
        emit_event(logger, "projection_cleared", logging.DEBUG, reason=result.reason)
        return None

    async def run_cycle(self) -> bool:
        """Run one poll cycle unless one is already in flight.

        Never raises: fetcher failures are recorded in their slots, and any
        unexpected error is logged.

        :returns: True if a cycle ran, False if the tick was dropped.
        """
        if self._in_flight:
            emit_event(logger, "cycle_skipped", reason="previous cycle in flight")
            return False

        self._in_flight = True
        try:
            await self._cycle()
        except Exception:
            logger.exception("Poll cycle failed")
        finally:
            self._in_flight = False
        return True

    def tick(self) -> asyncio.Task:
        """Schedule a cycle as an independent task (timer callback)."""
        task = asyncio.create_task(self.run_cycle())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)
        return task

    async def run(self) -> None:
        """Tick immediately, then every refresh interval until cancelled."""
        logger.info(
            f"MarketPoller started: symbols={self.symbols}, "
            f"sources={list(self.fetchers)}, refresh_interval={self.refresh_interval}s"
        )
        try:
            while True:
                self.tick()
                await asyncio.sleep(self.refresh_interval)
        finally:
            for task in list(self._tick_tasks):
                task.cancel()
            await BaseFetcher.close_shared_client()
