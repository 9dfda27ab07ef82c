"""SnapshotCache: The merged read model served by the HTTP facade.

The cache is owned by the MarketPoller and written only at the end of a
cycle. Each field is replaced as a whole object, never mutated in place, so a
reader always sees either the previous or the new value of a field.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from .models import (
    FeeProjection,
    NetworkFeeSample,
    PriceQuote,
    StakedEthSample,
    StakingAprSample,
)


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of every most-recently-known value.

    :ivar prices: Latest quote per symbol, or None if never fetched.
    :ivar errors: Per-source error slots, as rendered by SourceManager.
    """

    prices: dict[str, PriceQuote] | None = None
    staking_apr: StakingAprSample | None = None
    staked_eth: StakedEthSample | None = None
    network_fee: NetworkFeeSample | None = None
    network_fee_percent: float | None = None
    fee_projection: FeeProjection | None = None
    last_updated: str | None = None
    errors: dict[str, dict[str, Any] | None] = field(default_factory=dict)

    @property
    def has_data(self) -> bool:
        """Check whether any source has ever produced a value."""
        return any(
            value is not None
            for value in (self.prices, self.staking_apr, self.staked_eth, self.network_fee)
        )

    def to_data_dict(self) -> dict[str, Any]:
        """Render the ``data`` member of the prices response."""
        return {
            "prices": (
                {symbol: quote.to_dict() for symbol, quote in self.prices.items()}
                if self.prices is not None
                else None
            ),
            "stakingApr": self.staking_apr.to_dict() if self.staking_apr else None,
            "stakedEth": self.staked_eth.to_dict() if self.staked_eth else None,
            "networkFee": self.network_fee.to_dict() if self.network_fee else None,
            "networkFeePercent": self.network_fee_percent,
            "networkFeeYearlySsv": (
                self.network_fee.per_year_amount if self.network_fee else None
            ),
            "nextMonthNetworkFeeYearlySsv": (
                self.fee_projection.per_year_amount if self.fee_projection else None
            ),
            "feeProjection": self.fee_projection.to_dict() if self.fee_projection else None,
        }


class SnapshotCache:
    """Holder of the current Snapshot.

    Writers call ``update()`` with whole replacement values; readers call
    ``get()`` and work on the returned immutable Snapshot.
    """

    def __init__(self) -> None:
        self._snapshot = Snapshot()

    def get(self) -> Snapshot:
        return self._snapshot

    def update(self, **changes: Any) -> Snapshot:
        """Swap in a new snapshot with the given fields replaced.

        :param changes: Snapshot field names and their new values.
        :returns: The new snapshot.
        """
        self._snapshot = replace(self._snapshot, **changes)
        return self._snapshot
