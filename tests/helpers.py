"""Builders and ledger fakes shared by the relayer tests."""

import asyncio
from typing import Any, Dict, List, Optional

from eth_abi import encode as abi_encode
from hexbytes import HexBytes

from mintrelay.bridge.contracts import BRIDGE_REQUEST_TOPIC
from mintrelay.bridge.types import DepositRecord, ObservedDeposit
from mintrelay.config import RelayerConfig
from mintrelay.errors import NetworkError, SubmissionError

SOURCE_BRIDGE = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
DEST_BRIDGE = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
TOKEN = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"
SENDER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
RECIPIENT = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
PRIVATE_KEY = "0x" + "11" * 32
SOURCE_CHAIN_ID = 11155111
DEST_CHAIN_ID = 421614


def make_record(**overrides) -> DepositRecord:
    fields = dict(
        sender=SENDER,
        recipient=RECIPIENT,
        token=TOKEN,
        amount=10**18,
        src_chain_id=SOURCE_CHAIN_ID,
        dst_chain_id=DEST_CHAIN_ID,
        nonce=1,
        timestamp=1_700_000_000,
    )
    fields.update(overrides)
    return DepositRecord(**fields)


def block_hash(number: int) -> str:
    return "0x" + f"{number:064x}"


def make_observed(block_number: int = 100, **overrides) -> ObservedDeposit:
    return ObservedDeposit(
        record=make_record(**overrides),
        block_number=block_number,
        transaction_hash="0x" + f"{overrides.get('nonce', 1):064x}",
        block_hash=block_hash(block_number),
        log_index=0,
    )


def _topic(address: str) -> HexBytes:
    return HexBytes(b"\x00" * 12 + bytes(HexBytes(address)))


def make_log(block_number: int = 100, nonce: int = 1, **overrides) -> Dict[str, Any]:
    record = make_record(nonce=nonce, **overrides)
    return {
        "address": SOURCE_BRIDGE,
        "topics": [
            HexBytes(BRIDGE_REQUEST_TOPIC),
            _topic(record.sender),
            _topic(record.recipient),
            _topic(record.token),
        ],
        "data": HexBytes(
            abi_encode(
                ["uint256"] * 5,
                [
                    record.amount,
                    record.src_chain_id,
                    record.dst_chain_id,
                    record.nonce,
                    record.timestamp,
                ],
            )
        ),
        "blockNumber": block_number,
        "blockHash": HexBytes(block_hash(block_number)),
        "transactionHash": HexBytes("0x" + f"{nonce:064x}"),
        "logIndex": 0,
        "removed": False,
    }


class FakeSourceClient:
    """Source ledger whose head follows a scripted sequence."""

    def __init__(self, heads: Optional[List[int]] = None, logs: Optional[List[dict]] = None):
        self.bridge_address = SOURCE_BRIDGE
        self.chain = SOURCE_CHAIN_ID
        self.fail_chain_id = False
        self.heads = list(heads or [1000])
        self.logs = list(logs or [])
        self.hashes: Dict[int, str] = {}
        self.receipts: Dict[str, List[Optional[tuple]]] = {}
        self.receipt_calls = 0
        self.head_calls = 0
        self.last_head: Optional[int] = None
        self.log_requests: List[tuple] = []
        self.fail_logs = 0
        self.fail_heads = 0

    async def chain_id(self) -> int:
        if self.fail_chain_id:
            raise NetworkError("source chain id unavailable")
        return self.chain

    async def block_number(self) -> int:
        self.head_calls += 1
        if self.fail_heads:
            self.fail_heads -= 1
            raise NetworkError("source head unavailable")
        if len(self.heads) > 1:
            self.last_head = self.heads.pop(0)
        else:
            self.last_head = self.heads[0]
        return self.last_head

    async def block_hash(self, number: int) -> Optional[str]:
        return self.hashes.get(number, block_hash(number))

    async def transaction_block(self, tx_hash: str) -> Optional[tuple]:
        # scripted answers are consumed in order, the last one repeats
        self.receipt_calls += 1
        answers = self.receipts.get(tx_hash, [None])
        if len(answers) > 1:
            return answers.pop(0)
        return answers[0]

    async def get_logs(self, from_block: int, to_block: int) -> List[dict]:
        self.log_requests.append((from_block, to_block))
        if self.fail_logs:
            self.fail_logs -= 1
            raise NetworkError("connection reset")
        return [log for log in self.logs if from_block <= log["blockNumber"] <= to_block]


class FakeDestinationClient:
    """Destination bridge with scripted processed set, mapping and mint results."""

    def __init__(self, source: Optional[FakeSourceClient] = None):
        self.address = "0x19E7E376E7C213B7E7e7e46cc70A5dD086DAff2A"
        self.source = source
        self.processed_ids = set()
        self.trusted_sources: Dict[int, str] = {SOURCE_CHAIN_ID: SOURCE_BRIDGE}
        self.processed_error: Optional[Exception] = None
        self.mapping_error: Optional[Exception] = None
        self.mint_results: List[Any] = []
        self.mint_calls: List[tuple] = []
        self.mint_heads: List[Optional[int]] = []
        self.mint_delay = 0.0
        self.mint_block: Optional[asyncio.Event] = None

    async def processed(self, message_id: str) -> bool:
        if self.processed_error is not None:
            raise self.processed_error
        return message_id in self.processed_ids

    async def source_bridge_for_chain(self, src_chain_id: int) -> str:
        if self.mapping_error is not None:
            raise self.mapping_error
        return self.trusted_sources.get(src_chain_id, "0x" + "0" * 40)

    async def execute_mint(self, args, receipt_timeout: float = 120.0) -> str:
        self.mint_calls.append(tuple(args))
        self.mint_heads.append(self.source.last_head if self.source else None)
        if self.mint_block is not None:
            await self.mint_block.wait()
        if self.mint_delay:
            await asyncio.sleep(self.mint_delay)
        result = self.mint_results.pop(0) if self.mint_results else "ok"
        if isinstance(result, Exception):
            raise result
        return "0x" + f"{len(self.mint_calls):064x}"


def failing(count: int, then_succeed: bool = True) -> List[Any]:
    results: List[Any] = [SubmissionError(f"execution reverted #{i + 1}") for i in range(count)]
    if then_succeed:
        results.append("ok")
    return results


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def make_config(**overrides) -> RelayerConfig:
    fields = dict(
        source_rpc="http://source.invalid",
        dest_rpc="http://dest.invalid",
        source_bridge=SOURCE_BRIDGE,
        dest_bridge=DEST_BRIDGE,
        private_key=PRIVATE_KEY,
        source_chain_id=SOURCE_CHAIN_ID,
        dest_chain_id=DEST_CHAIN_ID,
        confirmations=6,
        max_retries=5,
        retry_base_ms=1000,
        poll_interval=0.01,
        db_path=":memory:",
        legacy_db_path=None,
    )
    fields.update(overrides)
    return RelayerConfig(**fields)
