"""EngineConfig: Settings resolved once at startup."""

from __future__ import annotations

from dataclasses import dataclass, field

from .fetchers.coinmarketcap import DEFAULT_HISTORICAL_URL, DEFAULT_QUOTES_URL
from .fetchers.ethstore import DEFAULT_ETHSTORE_URL
from .fetchers.network_fee import DEFAULT_NETWORK_FEE_CONTRACT, DEFAULT_NETWORK_FEE_FUNCTION
from .fetchers.staked_eth import DEFAULT_EPOCH_URL

DEFAULT_REFRESH_INTERVAL_MS = 5 * 60 * 1000
DEFAULT_SYMBOLS = ["ETH", "SSV"]


def normalize_fee_percent(value: float | None) -> float | None:
    """Normalize a configured fee to a decimal.

    Values above 1 are read as a percent (1.5 -> 0.015), others as a decimal.

    :raises ValueError: If the value is not in (0, 100].
    """
    if value is None:
        return None
    if not 0 < value <= 100:
        raise ValueError(f"network fee percent must be in (0, 100], got {value}")
    return value / 100 if value > 1 else value


@dataclass
class EngineConfig:
    """Engine configuration.

    :ivar refresh_interval_ms: Milliseconds between poll cycles.
    :ivar symbols: Asset symbols to quote.
    :ivar network_fee_percent: Fixed fee (decimal) overriding the on-chain value.
    :ivar history_retention_days: Days of price history kept per asset.
    """

    refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS
    symbols: list[str] = field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    eth_symbol: str = "ETH"
    fee_asset_symbol: str = "SSV"
    cmc_api_url: str = DEFAULT_QUOTES_URL
    cmc_historical_url: str = DEFAULT_HISTORICAL_URL
    cmc_api_key: str | None = None
    ethstore_api_url: str = DEFAULT_ETHSTORE_URL
    ethstore_day: str = "latest"
    ethstore_api_key: str | None = None
    staked_eth_url: str = DEFAULT_EPOCH_URL
    beaconchain_api_key: str | None = None
    rpc_url: str | None = None
    network_fee_contract: str | None = DEFAULT_NETWORK_FEE_CONTRACT
    network_fee_function: str = DEFAULT_NETWORK_FEE_FUNCTION
    network_fee_percent: float | None = None
    fetch_timeout: float = 10.0
    history_retention_days: int = 30
    host: str = "0.0.0.0"
    port: int = 4000

    def __post_init__(self) -> None:
        self.symbols = [s.strip().upper() for s in self.symbols if s.strip()]
        self.eth_symbol = self.eth_symbol.upper()
        self.fee_asset_symbol = self.fee_asset_symbol.upper()
        for symbol in (self.eth_symbol, self.fee_asset_symbol):
            if symbol not in self.symbols:
                self.symbols.append(symbol)
        self.network_fee_percent = normalize_fee_percent(self.network_fee_percent)

    @property
    def refresh_interval_seconds(self) -> float:
        return self.refresh_interval_ms / 1000
