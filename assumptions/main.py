#!/usr/bin/env python3
"""SSV Assumptions Engine.

Polls market and protocol data from several upstream sources, caches the
best-known values, projects the yearly network fee per validator and serves
the merged snapshot over HTTP.

Start with env vars or CLI options. CLI options take precedence.
"""

import argparse
import logging
import os
import sys

import uvicorn

from .src.api import create_app
from .src.config import DEFAULT_REFRESH_INTERVAL_MS, EngineConfig
from .src.fetchers.coinmarketcap import DEFAULT_HISTORICAL_URL, DEFAULT_QUOTES_URL
from .src.fetchers.ethstore import DEFAULT_ETHSTORE_URL
from .src.fetchers.network_fee import DEFAULT_NETWORK_FEE_CONTRACT, DEFAULT_NETWORK_FEE_FUNCTION
from .src.fetchers.staked_eth import DEFAULT_EPOCH_URL
from .src.MarketPoller import MarketPoller

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def _env_float(name: str) -> float | None:
    value = os.environ.get(name)
    return float(value) if value else None


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser. Defaults come from the environment."""
    parser = argparse.ArgumentParser(
        description="SSV Assumptions Engine: market snapshot and fee projection backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Prices and staking APR only
  CMC_API_KEY=... ETHSTORE_API_KEY=... python -m assumptions.main

  # With the on-chain network fee
  python -m assumptions.main --rpc-url https://eth.llamarpc.com

  # Fixed fee instead of the on-chain value
  python -m assumptions.main --network-fee-percent 1.5

Environment variables (CLI args take precedence):
  PRICE_REFRESH_INTERVAL_MS, CMC_SYMBOLS, CMC_API_URL, CMC_HISTORICAL_API_URL,
  CMC_API_KEY, ETHSTORE_API_URL, ETHSTORE_DAY, ETHSTORE_API_KEY,
  STAKED_ETH_API_URL, BEACONCHAIN_API_KEY, ETH_RPC_URL, NETWORK_FEE_CONTRACT,
  NETWORK_FEE_FUNCTION, NETWORK_FEE_PERCENT, FETCH_TIMEOUT,
  HISTORY_RETENTION_DAYS, ETH_SYMBOL, FEE_ASSET_SYMBOL, HOST, PORT
""",
    )

    parser.add_argument(
        "--refresh-interval-ms",
        dest="refresh_interval_ms",
        type=int,
        help="Milliseconds between poll cycles (default: 300000)",
        default=int(os.environ.get("PRICE_REFRESH_INTERVAL_MS") or DEFAULT_REFRESH_INTERVAL_MS),
    )
    parser.add_argument(
        "--symbols",
        type=str,
        help="Comma-separated asset symbols to quote (default: ETH,SSV)",
        default=os.environ.get("CMC_SYMBOLS") or "ETH,SSV",
    )
    parser.add_argument(
        "--eth-symbol",
        dest="eth_symbol",
        type=str,
        help="Symbol of the staked asset (default: ETH)",
        default=os.environ.get("ETH_SYMBOL") or "ETH",
    )
    parser.add_argument(
        "--fee-asset-symbol",
        dest="fee_asset_symbol",
        type=str,
        help="Symbol the network fee is paid in (default: SSV)",
        default=os.environ.get("FEE_ASSET_SYMBOL") or "SSV",
    )
    parser.add_argument(
        "--cmc-api-url",
        dest="cmc_api_url",
        type=str,
        help="CoinMarketCap latest quotes endpoint",
        default=os.environ.get("CMC_API_URL") or DEFAULT_QUOTES_URL,
    )
    parser.add_argument(
        "--cmc-historical-url",
        dest="cmc_historical_url",
        type=str,
        help="CoinMarketCap historical quotes endpoint",
        default=os.environ.get("CMC_HISTORICAL_API_URL") or DEFAULT_HISTORICAL_URL,
    )
    parser.add_argument(
        "--cmc-api-key",
        dest="cmc_api_key",
        type=str,
        help="CoinMarketCap API key",
        default=os.environ.get("CMC_API_KEY"),
    )
    parser.add_argument(
        "--ethstore-api-url",
        dest="ethstore_api_url",
        type=str,
        help="ETH.Store endpoint without the day segment",
        default=os.environ.get("ETHSTORE_API_URL") or DEFAULT_ETHSTORE_URL,
    )
    parser.add_argument(
        "--ethstore-day",
        dest="ethstore_day",
        type=str,
        help="ETH.Store day to query (default: latest)",
        default=os.environ.get("ETHSTORE_DAY") or "latest",
    )
    parser.add_argument(
        "--ethstore-api-key",
        dest="ethstore_api_key",
        type=str,
        help="ETH.Store API key",
        default=os.environ.get("ETHSTORE_API_KEY"),
    )
    parser.add_argument(
        "--staked-eth-url",
        dest="staked_eth_url",
        type=str,
        help="Beacon chain epoch endpoint reporting the total stake",
        default=os.environ.get("STAKED_ETH_API_URL") or DEFAULT_EPOCH_URL,
    )
    parser.add_argument(
        "--beaconchain-api-key",
        dest="beaconchain_api_key",
        type=str,
        help="Optional beaconcha.in API key",
        default=os.environ.get("BEACONCHAIN_API_KEY"),
    )
    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="Ethereum JSON-RPC endpoint for the network fee reader",
        default=os.environ.get("ETH_RPC_URL"),
    )
    parser.add_argument(
        "--network-fee-contract",
        dest="network_fee_contract",
        type=str,
        help="Address of the contract exposing the network fee view",
        default=os.environ.get("NETWORK_FEE_CONTRACT") or DEFAULT_NETWORK_FEE_CONTRACT,
    )
    parser.add_argument(
        "--network-fee-function",
        dest="network_fee_function",
        type=str,
        help="Signature of the network fee view (default: getNetworkFee())",
        default=os.environ.get("NETWORK_FEE_FUNCTION") or DEFAULT_NETWORK_FEE_FUNCTION,
    )
    parser.add_argument(
        "--network-fee-percent",
        dest="network_fee_percent",
        type=float,
        help="Fixed network fee overriding the on-chain value (percent if > 1, else decimal)",
        default=_env_float("NETWORK_FEE_PERCENT"),
    )
    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual upstream calls in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )
    parser.add_argument(
        "--history-retention-days",
        dest="history_retention_days",
        type=int,
        help="Days of price history kept per asset (default: 30)",
        default=int(os.environ.get("HISTORY_RETENTION_DAYS") or "30"),
    )
    parser.add_argument(
        "--host",
        type=str,
        help="Interface to bind (default: 0.0.0.0)",
        default=os.environ.get("HOST") or "0.0.0.0",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on (default: 4000)",
        default=int(os.environ.get("PORT") or "4000"),
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser


def parse_config(argv: list[str] | None = None) -> EngineConfig:
    """Resolve the engine configuration from CLI arguments and environment.

    :param argv: Argument list (default: sys.argv).
    :returns: Validated EngineConfig.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.refresh_interval_ms < 1000:
        parser.error("--refresh-interval-ms must be at least 1000")
    if args.fetch_timeout <= 0:
        parser.error("--fetch-timeout must be positive")
    if args.history_retention_days < 1:
        parser.error("--history-retention-days must be at least 1")

    symbols = [s.strip().upper() for s in args.symbols.split(",") if s.strip()]
    if not symbols:
        parser.error("At least one symbol must be specified")

    try:
        return EngineConfig(
            refresh_interval_ms=args.refresh_interval_ms,
            symbols=symbols,
            eth_symbol=args.eth_symbol,
            fee_asset_symbol=args.fee_asset_symbol,
            cmc_api_url=args.cmc_api_url,
            cmc_historical_url=args.cmc_historical_url,
            cmc_api_key=args.cmc_api_key,
            ethstore_api_url=args.ethstore_api_url,
            ethstore_day=args.ethstore_day,
            ethstore_api_key=args.ethstore_api_key,
            staked_eth_url=args.staked_eth_url,
            beaconchain_api_key=args.beaconchain_api_key,
            rpc_url=args.rpc_url,
            network_fee_contract=args.network_fee_contract,
            network_fee_function=args.network_fee_function,
            network_fee_percent=args.network_fee_percent,
            fetch_timeout=args.fetch_timeout,
            history_retention_days=args.history_retention_days,
            host=args.host,
            port=args.port,
        )
    except ValueError as e:
        parser.error(str(e))


def log_config(config: EngineConfig) -> None:
    """Log the resolved configuration, without secrets."""
    logger.info("=" * 60)
    logger.info("SSV Assumptions Engine")
    logger.info("=" * 60)
    logger.info(f"Symbols:           {', '.join(config.symbols)}")
    logger.info(f"Refresh Interval:  {config.refresh_interval_ms}ms")
    logger.info(f"Fetch Timeout:     {config.fetch_timeout}s")
    logger.info(f"CoinMarketCap Key: {'configured' if config.cmc_api_key else 'missing'}")
    logger.info(f"ETH.Store Key:     {'configured' if config.ethstore_api_key else 'missing'}")
    logger.info(f"RPC Endpoint:      {'configured' if config.rpc_url else 'missing'}")
    if config.network_fee_percent is not None:
        logger.info(f"Network Fee:       fixed {config.network_fee_percent:.4%}")
    logger.info(f"History Retention: {config.history_retention_days} days")
    logger.info(f"Listening on:      {config.host}:{config.port}")
    logger.info("=" * 60)


def main() -> None:
    """Main entry point for the SSV Assumptions Engine CLI."""
    config = parse_config()
    log_config(config)

    try:
        poller = MarketPoller.from_config(config)
        app = create_app(poller)
        uvicorn.run(app, host=config.host, port=config.port, log_config=None)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
