"""Data model shared by fetchers, history store, projection and facade.

All records are plain dataclasses. ``to_dict()`` renders the camelCase JSON
shape served by the HTTP facade.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error taxonomy for per-source error slots."""

    MISSING_CREDENTIAL = "MISSING_CREDENTIAL"
    MISSING_PROVIDER = "MISSING_PROVIDER"
    FETCH_FAILED = "FETCH_FAILED"
    DECODE_FAILED = "DECODE_FAILED"
    WINDOW_INCOMPLETE = "WINDOW_INCOMPLETE"

    @property
    def is_permanent(self) -> bool:
        """Permanent errors persist until the engine is reconfigured."""
        return self in (ErrorCode.MISSING_CREDENTIAL, ErrorCode.MISSING_PROVIDER)


@dataclass
class PriceQuote:
    """Latest USD quote for one asset.

    :ivar symbol: Upper-case asset symbol.
    :ivar price_usd: Price in USD, or None if upstream gave no usable value.
    :ivar price_field: Upstream field that supplied the price ("close"/"price").
    """

    symbol: str
    price_usd: float | None
    total_supply: float | None = None
    circulating_supply: float | None = None
    max_supply: float | None = None
    source_timestamp: str | None = None
    price_field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "priceUsd": self.price_usd,
            "priceField": self.price_field,
            "totalSupply": self.total_supply,
            "circulatingSupply": self.circulating_supply,
            "maxSupply": self.max_supply,
            "sourceLastUpdated": self.source_timestamp,
        }


@dataclass
class StakingAprSample:
    """Staking APR as a decimal (0.04 == 4%) plus the field it came from."""

    value_decimal: float
    source_field: str

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value_decimal, "sourceField": self.source_field}


@dataclass
class StakedEthSample:
    """Total staked ETH, converted from gwei."""

    value_eth: float
    source_field: str
    raw_value: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value_eth,
            "sourceField": self.source_field,
            "rawValue": str(self.raw_value),
        }


@dataclass
class NetworkFeeSample:
    """On-chain network fee reading.

    :ivar percent_decimal: Fee as a decimal in (0, 1], or None if no scale matched.
    :ivar raw_value: Integer returned by the contract.
    :ivar decoding_scale: Name of the scale interpretation that was accepted.
    :ivar per_block_amount: Raw value read as an 18-decimal per-block amount.
    :ivar per_year_amount: ``per_block_amount`` annualized.
    :ivar observed_at_block: Block the value was read at.
    :ivar return_layout: How the return data was decoded.
    """

    raw_value: int
    percent_decimal: float | None = None
    decoding_scale: str | None = None
    per_block_amount: float | None = None
    per_year_amount: float | None = None
    observed_at_block: int | None = None
    return_layout: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "percentDecimal": self.percent_decimal,
            # May exceed 2**53
            "rawValue": str(self.raw_value),
            "decodingScale": self.decoding_scale,
            "perBlockAmount": self.per_block_amount,
            "perYearAmount": self.per_year_amount,
            "observedAtBlock": self.observed_at_block,
            "returnLayout": self.return_layout,
        }


@dataclass(frozen=True)
class HistoryPoint:
    """One price sample.

    :ivar timestamp_ms: Sample time in Unix milliseconds.
    :ivar price_usd: Price in USD.
    :ivar synthetic: True if fabricated by the seeder fallback.
    """

    timestamp_ms: int
    price_usd: float
    synthetic: bool = False


@dataclass
class CalendarWindow:
    """Average over a calendar-aligned window. Derived on demand, never stored."""

    avg: float | None
    count: int
    start_date: str
    end_date: str
    days_span: float
    has_gap: bool
    synthetic_count: int = 0

    MIN_POINTS = 30
    MIN_DAYS_SPAN = 29.0

    @property
    def is_valid(self) -> bool:
        """Check the window is complete enough to average over."""
        return (
            self.avg is not None
            and self.count >= self.MIN_POINTS
            and self.days_span >= self.MIN_DAYS_SPAN
            and not self.has_gap
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg": self.avg,
            "count": self.count,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "daysSpan": self.days_span,
            "hasGap": self.has_gap,
            "syntheticCount": self.synthetic_count,
            "valid": self.is_valid,
        }


@dataclass
class FeeProjection:
    """Projected yearly network fee per validator, in fee-asset units."""

    per_year_amount: float
    computed_at: str
    inputs: dict[str, Any]
    basis: str = "observed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "perYearAmount": self.per_year_amount,
            "computedAt": self.computed_at,
            "inputs": self.inputs,
            "basis": self.basis,
        }


@dataclass
class SourceError:
    """Structured error stored in a source's error slot."""

    code: ErrorCode
    message: str
    timestamp: str
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.detail:
            result["detail"] = self.detail
        return result
