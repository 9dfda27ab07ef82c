"""
Source fetchers for the upstream data feeding the snapshot.

Each fetcher wraps one upstream source and raises a typed FetcherError on
failure:

- CoinMarketCapFetcher: USD quotes and daily historical closes
- EthStoreFetcher: ETH staking APR
- StakedEthFetcher: total ETH staked on the beacon chain
- NetworkFeeFetcher: on-chain network fee of unknown scale

Usage:
    from assumptions.src.fetchers import CoinMarketCapFetcher

    fetcher = CoinMarketCapFetcher(["ETH", "SSV"], api_key="your-api-key")
    quotes = await fetcher.fetch()
"""

from .base import (
    BaseFetcher,
    FetcherConfigError,
    FetcherDecodeError,
    FetcherError,
    FetcherHTTPError,
)
from .coinmarketcap import CoinMarketCapFetcher
from .ethstore import EthStoreFetcher
from .network_fee import NetworkFeeFetcher, UnmatchedFeeScaleError
from .staked_eth import StakedEthFetcher

__all__ = [
    # Base classes
    "BaseFetcher",
    "FetcherError",
    "FetcherConfigError",
    "FetcherDecodeError",
    "FetcherHTTPError",
    # Fetcher implementations
    "CoinMarketCapFetcher",
    "EthStoreFetcher",
    "NetworkFeeFetcher",
    "StakedEthFetcher",
    "UnmatchedFeeScaleError",
]
