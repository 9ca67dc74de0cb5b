"""
Ledger clients for the relayer.

Thin async wrappers around web3.py: the source client reads heads, blocks and
``BridgeRequest`` logs; the destination client reads the bridge's processed
set and trusted-source mapping and sends ``executeMint`` transactions signed
with the relayer's local account.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_account import Account
from hexbytes import HexBytes
from web3 import AsyncWeb3, Web3
from web3.exceptions import BlockNotFound, TransactionNotFound

from ..errors import DecodeError, NetworkError, SubmissionError
from ..logging import get_logger
from .contracts import BRIDGE_REQUEST_TOPIC, DEST_BRIDGE_ABI, SOURCE_BRIDGE_ABI
from .types import DepositRecord, ObservedDeposit

logger = get_logger(__name__)

# non-indexed BridgeRequest fields, in log data order
_DATA_TYPES = [arg["type"] for arg in SOURCE_BRIDGE_ABI[0]["inputs"] if not arg["indexed"]]


def _hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    return Web3.to_hex(HexBytes(value))


def _topic_address(topic: Any) -> str:
    raw = HexBytes(topic)
    if len(raw) != 32 or any(raw[:12]):
        raise ValueError(f"topic is not a padded address: {_hex(raw)}")
    return Web3.to_checksum_address(raw[12:])


def decode_bridge_request(log: Dict[str, Any]) -> ObservedDeposit:
    """Decode a raw ``BridgeRequest`` log.

    Raises DecodeError when the log does not match the event schema.
    """
    tx_hash = _hex(log.get("transactionHash"))
    try:
        topics: Sequence[Any] = log["topics"]
        if len(topics) != 4:
            raise ValueError(f"expected 4 topics, got {len(topics)}")
        if _hex(topics[0]) != BRIDGE_REQUEST_TOPIC:
            raise ValueError(f"unexpected event topic {_hex(topics[0])}")

        data = HexBytes(log["data"])
        if len(data) != 32 * len(_DATA_TYPES):
            raise ValueError(f"expected {32 * len(_DATA_TYPES)} data bytes, got {len(data)}")
        amount, src_chain_id, dst_chain_id, nonce, timestamp = abi_decode(_DATA_TYPES, data)

        record = DepositRecord(
            sender=_topic_address(topics[1]),
            recipient=_topic_address(topics[2]),
            token=_topic_address(topics[3]),
            amount=amount,
            src_chain_id=src_chain_id,
            dst_chain_id=dst_chain_id,
            nonce=nonce,
            timestamp=timestamp,
        )
        return ObservedDeposit(
            record=record,
            block_number=int(log["blockNumber"]),
            transaction_hash=tx_hash,
            block_hash=_hex(log.get("blockHash")),
            log_index=int(log.get("logIndex") or 0),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed BridgeRequest log: {e}", transaction_hash=tx_hash, cause=e)


class SourceChainClient:
    """Read access to the source ledger."""

    def __init__(self, rpc_url: str, bridge_address: str, w3: Optional[AsyncWeb3] = None):
        self.rpc_url = rpc_url
        self.bridge_address = Web3.to_checksum_address(bridge_address)
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))

    def log_filter(self, from_block: int, to_block: int) -> Dict[str, Any]:
        return {
            "address": self.bridge_address,
            "topics": [BRIDGE_REQUEST_TOPIC],
            "fromBlock": from_block,
            "toBlock": to_block,
        }

    async def chain_id(self) -> int:
        try:
            return int(await self.w3.eth.chain_id)
        except Exception as e:
            raise NetworkError(
                f"Failed to read source chain id: {e}", endpoint=self.rpc_url, cause=e
            )

    async def block_number(self) -> int:
        try:
            return int(await self.w3.eth.block_number)
        except Exception as e:
            raise NetworkError(f"Failed to read source head: {e}", endpoint=self.rpc_url, cause=e)

    async def block_hash(self, number: int) -> Optional[str]:
        """Canonical hash at ``number``, or None if the node has no such block."""
        try:
            block = await self.w3.eth.get_block(number)
        except BlockNotFound:
            return None
        except Exception as e:
            raise NetworkError(
                f"Failed to read source block {number}: {e}", endpoint=self.rpc_url, cause=e
            )
        return _hex(block["hash"])

    async def transaction_block(self, tx_hash: str) -> Optional[Tuple[int, str]]:
        """Block number and hash the transaction is currently mined in.

        Returns None when the node has no receipt for it.
        """
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise NetworkError(
                f"Failed to read receipt for {tx_hash}: {e}", endpoint=self.rpc_url, cause=e
            )
        return int(receipt["blockNumber"]), _hex(receipt["blockHash"])

    async def get_logs(self, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        try:
            return list(await self.w3.eth.get_logs(self.log_filter(from_block, to_block)))
        except Exception as e:
            raise NetworkError(
                f"Failed to fetch logs {from_block}-{to_block}: {e}",
                endpoint=self.rpc_url,
                cause=e,
            )


class DestinationChainClient:
    """Read and write access to the destination bridge contract."""

    def __init__(
        self,
        rpc_url: str,
        bridge_address: str,
        private_key: str,
        chain_id: int,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.rpc_url = rpc_url
        self.bridge_address = Web3.to_checksum_address(bridge_address)
        self.chain_id = chain_id
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.account = Account.from_key(private_key)
        self.contract = self.w3.eth.contract(address=self.bridge_address, abi=DEST_BRIDGE_ABI)

    @property
    def address(self) -> str:
        return self.account.address

    async def processed(self, message_id: str) -> bool:
        return bool(await self.contract.functions.processed(HexBytes(message_id)).call())

    async def source_bridge_for_chain(self, src_chain_id: int) -> str:
        return await self.contract.functions.sourceBridgeForChain(src_chain_id).call()

    async def execute_mint(self, args: Sequence[Any], receipt_timeout: float = 120.0) -> str:
        """Send ``executeMint(*args)`` and wait for inclusion.

        Returns the transaction hash. Raises SubmissionError when the
        transaction reverts; transport errors propagate unchanged.
        """
        nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        tx = await self.contract.functions.executeMint(*args).build_transaction(
            {
                "from": self.account.address,
                "nonce": nonce,
                "chainId": self.chain_id,
            }
        )
        signed = self.account.sign_transaction(tx)
        tx_hash = _hex(await self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info(f"executeMint sent: {tx_hash}")

        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=receipt_timeout)
        if receipt["status"] != 1:
            raise SubmissionError(
                f"executeMint reverted in block {receipt.get('blockNumber')}",
                transaction_hash=tx_hash,
            )
        return tx_hash
