"""beaconcha.in total staked ETH fetcher.

Endpoint: https://beaconcha.in/api/v1/epoch/latest
API Key: Optional (sent as the "apikey" query parameter)

Balances are reported in gwei and converted to ETH.
"""

import logging

from ..models import StakedEthSample
from .base import BaseFetcher

logger = logging.getLogger(__name__)

DEFAULT_EPOCH_URL = "https://beaconcha.in/api/v1/epoch/latest"

GWEI_PER_ETH = 10**9

STAKE_FIELDS = ("totalvalidatorbalance", "eligibleether")


def _as_integer(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def parse_staked_eth(payload: object) -> StakedEthSample | None:
    """Extract total staked ETH from an epoch ``data`` payload.

    :param payload: The ``data`` member of the response.
    :returns: StakedEthSample, or None if no candidate field holds an integer.
    """
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return None

    for field in STAKE_FIELDS:
        raw = _as_integer(payload.get(field))
        if raw is not None and raw >= 0:
            return StakedEthSample(
                value_eth=raw / GWEI_PER_ETH, source_field=field, raw_value=raw
            )
    return None


class StakedEthFetcher(BaseFetcher):
    """Fetcher for the total ETH staked on the beacon chain."""

    name = "stakedEth"
    source_label = "beaconcha.in"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        url: str = DEFAULT_EPOCH_URL,
    ) -> None:
        super().__init__(api_key=api_key, timeout=timeout)
        self.url = url

    async def fetch(self) -> StakedEthSample | None:
        """Fetch the total stake.

        :returns: StakedEthSample, or None for a non-numeric payload.
        :raises FetcherError: On network or HTTP failure.
        """
        params = {"apikey": self.api_key} if self.api_key else None
        payload = await self._get_json(self.url, params=params)

        data = payload.get("data") if isinstance(payload, dict) else None
        sample = parse_staked_eth(data)
        if sample is None:
            logger.debug(f"[stakedEth] No numeric stake field in payload: {str(data)[:200]}")
        return sample
