"""ContractUtility: async Web3 connection and raw view calls."""

from __future__ import annotations

from web3 import AsyncWeb3, Web3


class ContractUtility:
    """Utility for the JSON-RPC connection used by on-chain readers.

    :ivar rpc_url: JSON-RPC endpoint URL.
    :ivar w3: AsyncWeb3 instance.
    """

    def __init__(self, rpc_url: str, w3: AsyncWeb3 | None = None) -> None:
        """Initialize the contract utility.

        :param rpc_url: JSON-RPC endpoint URL.
        :param w3: Optional preconfigured AsyncWeb3 (used by tests).
        """
        self.rpc_url = rpc_url
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))

    @staticmethod
    def function_selector(signature: str) -> bytes:
        """Compute the 4-byte selector of a function signature.

        :param signature: Canonical signature, e.g. "getNetworkFee()".
        :returns: First four bytes of the keccak256 hash.
        """
        return bytes(Web3.keccak(text=signature)[:4])

    async def call_view(self, address: str, signature: str) -> tuple[bytes, int]:
        """Call an argument-less view function and return its raw output.

        The call is pinned to the current head so the block number of the
        reading is known even when the function does not return it.

        :param address: Contract address.
        :param signature: Canonical function signature.
        :returns: Tuple of (raw return data, block number).
        """
        block_number = await self.w3.eth.block_number
        raw = await self.w3.eth.call(
            {
                "to": Web3.to_checksum_address(address),
                "data": Web3.to_hex(self.function_selector(signature)),
            },
            block_identifier=block_number,
        )
        return bytes(raw), int(block_number)
