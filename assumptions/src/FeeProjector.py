"""FeeProjector: Forward projection of the yearly network fee per validator.

Formula:
    per_validator_yield = 32 * avg_eth_price * staking_apr        (USD / year)
    per_year_fee = per_validator_yield * fee_percent / avg_asset_price

The projection is computed only from complete inputs: both calendar windows
must be valid and the APR and fee percent must be positive finite numbers.
Otherwise no projection is produced, never one from partial data.

.. code-block:: python

    >>> projector = FeeProjector()
    >>> result = projector.project(eth_window, ssv_window, 0.04, 0.01)
    >>> round(result.projection.per_year_amount, 6)  # (32 * 3000 * 0.04 * 0.01) / 40
    0.96
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone

from .models import CalendarWindow, FeeProjection

ETH_PER_VALIDATOR = 32


@dataclass
class ProjectionResult:
    """Result of a projection attempt.

    :ivar projection: The projection, or None if inputs were incomplete.
    :ivar reason: Why no projection was produced.
    """

    projection: FeeProjection | None
    reason: str | None = None

    @property
    def success(self) -> bool:
        return self.projection is not None


def _positive_finite(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


class FeeProjector:
    """Computes the gated fee projection.

    :ivar eth_symbol: Symbol of the staked asset.
    :ivar fee_asset_symbol: Symbol the fee is paid in.
    """

    def __init__(self, eth_symbol: str = "ETH", fee_asset_symbol: str = "SSV") -> None:
        self.eth_symbol = eth_symbol.upper()
        self.fee_asset_symbol = fee_asset_symbol.upper()

    def project(
        self,
        eth_window: CalendarWindow,
        asset_window: CalendarWindow,
        staking_apr: float | None,
        fee_percent: float | None,
        computed_at: datetime | None = None,
    ) -> ProjectionResult:
        """Project the yearly fee per validator.

        :param eth_window: Calendar window of the ETH price.
        :param asset_window: Calendar window of the fee asset price.
        :param staking_apr: Staking APR as a decimal.
        :param fee_percent: Network fee as a decimal.
        :param computed_at: Timestamp to stamp on the projection.
        :returns: ProjectionResult with the projection or the gating reason.
        """
        incomplete = [
            symbol
            for symbol, window in (
                (self.eth_symbol, eth_window),
                (self.fee_asset_symbol, asset_window),
            )
            if not window.is_valid
        ]
        if incomplete:
            details = ", ".join(
                f"{s} ({w.count} points, {w.days_span:.1f} days, gap={w.has_gap})"
                for s, w in ((self.eth_symbol, eth_window), (self.fee_asset_symbol, asset_window))
                if s in incomplete
            )
            return ProjectionResult(None, f"Price window incomplete for {details}")

        if not _positive_finite(staking_apr):
            return ProjectionResult(None, "Staking APR is not available")
        if not _positive_finite(fee_percent):
            return ProjectionResult(None, "Network fee percent is not available")

        assert eth_window.avg is not None and asset_window.avg is not None
        per_validator_yield = ETH_PER_VALIDATOR * eth_window.avg * staking_apr
        per_year = per_validator_yield * fee_percent / asset_window.avg

        synthetic = eth_window.synthetic_count > 0 or asset_window.synthetic_count > 0
        computed_at = computed_at or datetime.now(timezone.utc)

        projection = FeeProjection(
            per_year_amount=per_year,
            computed_at=computed_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            inputs={
                "ethAvgPriceUsd": eth_window.avg,
                "assetAvgPriceUsd": asset_window.avg,
                "stakingApr": staking_apr,
                "networkFeePercent": fee_percent,
                "perValidatorYieldUsd": per_validator_yield,
                "window": {
                    "startDate": eth_window.start_date,
                    "endDate": eth_window.end_date,
                },
                "ethWindow": eth_window.to_dict(),
                "assetWindow": asset_window.to_dict(),
            },
            basis="synthetic" if synthetic else "observed",
        )
        return ProjectionResult(projection)
