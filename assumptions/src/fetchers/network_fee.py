"""On-chain network fee reader.

Calls the fee view of the SSV network contracts over JSON-RPC and decodes the
return with the heuristics in FeeDecoder.

RPC: Required (no public default)
"""

from __future__ import annotations

import logging

from web3.exceptions import Web3Exception

from ..ContractUtility import ContractUtility
from ..FeeDecoder import decode_network_fee
from ..models import ErrorCode, NetworkFeeSample
from .base import BaseFetcher, FetcherConfigError, FetcherDecodeError, FetcherError

logger = logging.getLogger(__name__)

# SSVNetworkViews on Ethereum mainnet.
DEFAULT_NETWORK_FEE_CONTRACT = "0xafE830B6Ee262ba11cce5F32fDCd760FFE6a66e4"
DEFAULT_NETWORK_FEE_FUNCTION = "getNetworkFee()"


class UnmatchedFeeScaleError(FetcherDecodeError):
    """Raised when the fee integer matched no scale heuristic.

    :ivar sample: The undecided sample, with raw value and annualized estimate.
    """

    def __init__(self, sample: NetworkFeeSample):
        self.sample = sample
        super().__init__(
            f"Network fee {sample.raw_value} matched no known scale",
            detail={
                "rawValue": str(sample.raw_value),
                "perYearAmount": sample.per_year_amount,
                "observedAtBlock": sample.observed_at_block,
            },
        )


class NetworkFeeFetcher(BaseFetcher):
    """Reader for the on-chain network fee."""

    name = "networkFee"
    source_label = "ssv-network contract"

    def __init__(
        self,
        rpc_url: str | None = None,
        contract_address: str | None = DEFAULT_NETWORK_FEE_CONTRACT,
        function_signature: str = DEFAULT_NETWORK_FEE_FUNCTION,
        timeout: float | None = None,
        contract_utility: ContractUtility | None = None,
    ) -> None:
        """Initialize the reader.

        :param rpc_url: JSON-RPC endpoint.
        :param contract_address: Address of the contract exposing the fee view.
        :param function_signature: Signature of the fee view.
        :param timeout: Call timeout in seconds (enforced by the poller).
        :param contract_utility: Optional preconfigured ContractUtility.
        """
        super().__init__(timeout=timeout)
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.function_signature = function_signature
        self._contract_utility = contract_utility

    @property
    def is_configured(self) -> bool:
        return self._contract_utility is not None or bool(
            self.rpc_url and self.contract_address
        )

    @property
    def contract_utility(self) -> ContractUtility:
        if self._contract_utility is None:
            if not self.rpc_url:
                raise FetcherConfigError(
                    "No RPC endpoint is configured for the network fee reader.",
                    code=ErrorCode.MISSING_PROVIDER,
                )
            self._contract_utility = ContractUtility(self.rpc_url)
        return self._contract_utility

    async def fetch(self) -> NetworkFeeSample:
        """Read and decode the network fee.

        :raises FetcherConfigError: If no RPC endpoint or contract is configured.
        :raises FetcherError: If the RPC call fails.
        :raises FetcherDecodeError: If the return holds no integer.
        :raises UnmatchedFeeScaleError: If the integer matched no scale.
        """
        if not self.contract_address:
            raise FetcherConfigError(
                "No network fee contract address is configured.",
                code=ErrorCode.MISSING_PROVIDER,
            )
        utility = self.contract_utility

        try:
            raw, block_number = await utility.call_view(
                self.contract_address, self.function_signature
            )
        except (Web3Exception, OSError, ValueError) as e:
            raise FetcherError(f"RPC call {self.function_signature} failed: {e}") from e

        sample = decode_network_fee(raw, block_number=block_number)
        if sample is None:
            raise FetcherDecodeError(
                f"Return data of {self.function_signature} holds no 32-byte word",
                detail={"returnData": "0x" + raw.hex()},
            )
        if sample.percent_decimal is None:
            raise UnmatchedFeeScaleError(sample)
        return sample
