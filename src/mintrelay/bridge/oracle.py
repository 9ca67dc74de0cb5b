"""Read-only queries against the destination bridge."""

from typing import Optional

from web3 import Web3

from ..errors import OracleError
from .clients import DestinationChainClient


class DestinationOracle:
    """The destination's processed set and trusted-source mapping.

    Every failure is raised as OracleError; callers decide whether a failed read
    is fatal for the message.
    """

    def __init__(self, client: DestinationChainClient):
        self.client = client

    async def is_processed(self, message_id: str) -> bool:
        try:
            return await self.client.processed(message_id)
        except Exception as e:
            raise OracleError(
                f"Could not read processed({message_id}): {e}", query="processed", cause=e
            )

    async def source_bridge_for_chain(self, src_chain_id: int) -> str:
        """Trusted source bridge for ``src_chain_id`` (zero address when unset)."""
        try:
            address = await self.client.source_bridge_for_chain(src_chain_id)
        except Exception as e:
            raise OracleError(
                f"Could not read sourceBridgeForChain({src_chain_id}): {e}",
                query="sourceBridgeForChain",
                cause=e,
            )
        return Web3.to_checksum_address(address)

    async def source_mismatch(self, src_chain_id: int, source_bridge: str) -> Optional[str]:
        """Trusted address if it disagrees with ``source_bridge``, else None.

        An unset mapping reads as the zero address and therefore disagrees.
        """
        expected = await self.source_bridge_for_chain(src_chain_id)
        if expected.lower() != source_bridge.lower():
            return expected
        return None
