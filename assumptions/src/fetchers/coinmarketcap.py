"""CoinMarketCap fetcher.

Endpoints:
    - /v1/cryptocurrency/quotes/latest (live quotes, all symbols in one call)
    - /v2/cryptocurrency/quotes/historical (daily closes, used for backfill)
Rate Limit: 333 calls/day (free tier); historical quotes need a paid plan
API Key: Required
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any

from ..models import ErrorCode, HistoryPoint, PriceQuote
from .base import BaseFetcher, FetcherConfigError, FetcherDecodeError, first_number

logger = logging.getLogger(__name__)

DEFAULT_QUOTES_URL = "https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest"
DEFAULT_HISTORICAL_URL = (
    "https://pro-api.coinmarketcap.com/v2/cryptocurrency/quotes/historical"
)

# Settled close first, then the live price.
PRICE_FIELDS = ("close", "price")


def parse_timestamp_ms(value: Any) -> int | None:
    """Parse an ISO-8601 timestamp (CMC uses a trailing "Z") into Unix ms."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _optional_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def is_usable_price(price: float | None) -> bool:
    """Check a price is finite and positive."""
    return price is not None and math.isfinite(price) and price > 0


class CoinMarketCapFetcher(BaseFetcher):
    """Fetcher for CoinMarketCap quotes.

    Fetches all configured symbols in a single request and exposes supply
    figures alongside the USD price.
    API key is REQUIRED.
    """

    name = "prices"
    source_label = "coinmarketcap"

    def __init__(
        self,
        symbols: list[str],
        api_key: str | None = None,
        timeout: float | None = None,
        quotes_url: str = DEFAULT_QUOTES_URL,
        historical_url: str = DEFAULT_HISTORICAL_URL,
    ) -> None:
        """Initialize the fetcher.

        :param symbols: Asset symbols to quote (e.g., ["ETH", "SSV"]).
        :param api_key: CoinMarketCap API key.
        :param timeout: Request timeout in seconds.
        :param quotes_url: Latest quotes endpoint.
        :param historical_url: Historical quotes endpoint.
        """
        super().__init__(api_key=api_key, timeout=timeout)
        self.symbols = [s.strip().upper() for s in symbols if s.strip()]
        self.quotes_url = quotes_url
        self.historical_url = historical_url

    @property
    def is_configured(self) -> bool:
        return self.has_api_key

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise FetcherConfigError(
                "CoinMarketCap API key is not configured.",
                code=ErrorCode.MISSING_CREDENTIAL,
            )
        return {"X-CMC_PRO_API_KEY": self.api_key, "Accept": "application/json"}

    def parse_quote(self, symbol: str, asset: Any) -> PriceQuote:
        """Normalize one asset entry of a quotes response.

        :param symbol: Requested symbol.
        :param asset: The ``data[symbol]`` entry (object or list of matches).
        :returns: PriceQuote, with ``price_usd`` None if no usable price field.
        """
        # v2 responses map each symbol to a list of matches, take the first one
        if isinstance(asset, list):
            asset = asset[0] if asset else None
        if not isinstance(asset, dict):
            return PriceQuote(symbol=symbol, price_usd=None)

        usd_quote = (asset.get("quote") or {}).get("USD") or {}
        match = first_number(usd_quote, PRICE_FIELDS)
        price, field = match if match else (None, None)
        if not is_usable_price(price):
            price = None

        return PriceQuote(
            symbol=symbol,
            price_usd=price,
            price_field=field if price is not None else None,
            total_supply=_optional_number(asset.get("total_supply")),
            circulating_supply=_optional_number(asset.get("circulating_supply")),
            max_supply=_optional_number(asset.get("max_supply")),
            source_timestamp=usd_quote.get("last_updated") or None,
        )

    async def fetch(self) -> dict[str, PriceQuote]:
        """Fetch the latest quotes for all configured symbols.

        :returns: Dict mapping symbol to PriceQuote.
        :raises FetcherConfigError: If no API key is configured.
        :raises FetcherError: On network or HTTP failure.
        :raises FetcherDecodeError: If the response has no ``data`` object.
        """
        headers = self._headers()
        params = {"symbol": ",".join(self.symbols), "convert": "USD"}

        logger.debug(f"[coinmarketcap] Fetching quotes for {', '.join(self.symbols)}")
        payload = await self._get_json(self.quotes_url, params=params, headers=headers)

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise FetcherDecodeError(f"No data in quotes response: {str(payload)[:200]}")

        return {symbol: self.parse_quote(symbol, data.get(symbol)) for symbol in self.symbols}

    async def fetch_history(
        self,
        symbol: str,
        days: int = 30,
        now: datetime | None = None,
    ) -> list[HistoryPoint]:
        """Fetch daily closes for the trailing ``days`` days.

        :param symbol: Asset symbol.
        :param days: Number of days to backfill.
        :param now: Reference time (default: current UTC time).
        :returns: HistoryPoints ordered by time; empty if the plan returns none.
        :raises FetcherError: On network or HTTP failure (e.g., plan restriction).
        """
        headers = self._headers()
        now = now or datetime.now(timezone.utc)
        params = {
            "symbol": symbol.upper(),
            "convert": "USD",
            "interval": "daily",
            "time_start": (now - timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "time_end": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        payload = await self._get_json(self.historical_url, params=params, headers=headers)

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return []

        asset = data.get(symbol.upper(), data)
        if isinstance(asset, list):
            asset = asset[0] if asset else {}
        quotes = asset.get("quotes") if isinstance(asset, dict) else None
        if not isinstance(quotes, list):
            return []

        points: list[HistoryPoint] = []
        for entry in quotes:
            if not isinstance(entry, dict):
                continue
            usd_quote = (entry.get("quote") or {}).get("USD") or {}
            match = first_number(usd_quote, PRICE_FIELDS)
            if match is None or not is_usable_price(match[0]):
                continue
            timestamp_ms = parse_timestamp_ms(
                usd_quote.get("timestamp") or entry.get("timestamp")
            )
            if timestamp_ms is None:
                continue
            points.append(HistoryPoint(timestamp_ms=timestamp_ms, price_usd=match[0]))

        points.sort(key=lambda p: p.timestamp_ms)
        return points
