"""beaconcha.in ETH.Store staking APR fetcher.

Endpoint: https://beaconcha.in/api/v1/ethstore/{day}
API Key: Required (sent as the "api-key" header)

The ``data`` member is either a bare number or an object. Object fields are
tried in priority order: the 31-day trailing average is preferred over the
instantaneous value.
"""

import logging
import math

from ..models import ErrorCode, StakingAprSample
from .base import BaseFetcher, FetcherConfigError, FetcherDecodeError, first_number

logger = logging.getLogger(__name__)

DEFAULT_ETHSTORE_URL = "https://beaconcha.in/api/v1/ethstore"

APR_FIELDS = ("avgapr31d", "apr", "apr_today")


def parse_staking_apr(payload: object) -> StakingAprSample | None:
    """Extract the staking APR from an ETH.Store ``data`` payload.

    :param payload: The ``data`` member of the response.
    :returns: StakingAprSample, or None if no candidate field is numeric.
    """
    if isinstance(payload, (int, float)) and not isinstance(payload, bool):
        if math.isfinite(payload):
            return StakingAprSample(value_decimal=float(payload), source_field="numeric_payload")
        return None

    match = first_number(payload, APR_FIELDS)
    if match is None:
        return None
    value, field = match
    return StakingAprSample(value_decimal=value, source_field=field)


class EthStoreFetcher(BaseFetcher):
    """Fetcher for the ETH.Store staking APR."""

    name = "stakingApr"
    source_label = "beaconcha.in ETH.Store"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        base_url: str = DEFAULT_ETHSTORE_URL,
        day: str = "latest",
    ) -> None:
        """Initialize the fetcher.

        :param api_key: ETH.Store API key.
        :param timeout: Request timeout in seconds.
        :param base_url: ETH.Store endpoint without the day segment.
        :param day: Day to query ("latest" or a day index).
        """
        super().__init__(api_key=api_key, timeout=timeout)
        self.base_url = base_url.rstrip("/")
        self.day = day

    @property
    def is_configured(self) -> bool:
        return self.has_api_key

    async def fetch(self) -> StakingAprSample:
        """Fetch the staking APR.

        :raises FetcherConfigError: If no API key is configured.
        :raises FetcherError: On network or HTTP failure.
        :raises FetcherDecodeError: If no APR field is present.
        """
        if not self.api_key:
            raise FetcherConfigError(
                "ETH.Store API key is not configured.",
                code=ErrorCode.MISSING_CREDENTIAL,
            )

        logger.debug(f"[ethstore] Fetching ETH staking APR (day={self.day})")
        payload = await self._get_json(
            f"{self.base_url}/{self.day}",
            headers={"accept": "application/json", "api-key": self.api_key},
        )

        data = payload.get("data") if isinstance(payload, dict) else None
        sample = parse_staking_apr(data)
        if sample is None:
            raise FetcherDecodeError(
                f"No APR field in ETH.Store response (tried {', '.join(APR_FIELDS)})"
            )
        return sample
