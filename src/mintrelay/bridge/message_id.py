"""Deterministic message identifiers.

The destination contract derives the same id as
``keccak256(abi.encodePacked(uint256 srcChainId, address srcBridge, address token, uint256 nonce))``,
so the packed layout here must stay byte-identical: 32 + 20 + 20 + 32 bytes,
no padding of the addresses and no length prefixes.
"""

from eth_abi.packed import encode_packed
from web3 import Web3

MESSAGE_ID_TYPES = ["uint256", "address", "address", "uint256"]


def pack_message_fields(src_chain_id: int, source_bridge: str, token: str, nonce: int) -> bytes:
    """Solidity packed encoding of the message id preimage."""
    return encode_packed(
        MESSAGE_ID_TYPES,
        [
            int(src_chain_id),
            Web3.to_checksum_address(source_bridge),
            Web3.to_checksum_address(token),
            int(nonce),
        ],
    )


def compute_message_id(src_chain_id: int, source_bridge: str, token: str, nonce: int) -> str:
    """Return the ``0x``-prefixed keccak256 message id."""
    packed = pack_message_fields(src_chain_id, source_bridge, token, nonce)
    return Web3.to_hex(Web3.keccak(packed))


def message_id_for(record, source_bridge: str) -> str:
    """Message id of a decoded deposit relayed from ``source_bridge``."""
    return compute_message_id(record.src_chain_id, source_bridge, record.token, record.nonce)
