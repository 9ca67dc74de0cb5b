"""
Source ledger event adapter.

Polls the source bridge for ``BridgeRequest`` logs and feeds decoded deposits
into an asyncio queue. A block cursor makes the stream survive transport
failures: a failed poll leaves the cursor where it was and the same range is
fetched again on the next tick.
"""

import asyncio
from typing import Optional

from ..errors import DecodeError, NetworkError
from ..logging import LogContext, get_logger
from .clients import SourceChainClient, decode_bridge_request
from .types import ObservedDeposit

logger = get_logger(__name__)


class EventSource:
    """Block-range log poller for one contract address and one topic."""

    def __init__(
        self,
        client: SourceChainClient,
        queue: "asyncio.Queue[ObservedDeposit]",
        poll_interval: float = 1.0,
        start_block: Optional[int] = None,
        max_block_range: int = 2000,
    ):
        self.client = client
        self.queue = queue
        self.poll_interval = poll_interval
        self.max_block_range = max_block_range
        # last block whose logs have been emitted
        self.cursor: Optional[int] = None if start_block is None else start_block - 1
        self.decode_failures = 0
        self.emitted = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start polling in the background."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self.run())
        logger.info(
            f"Listening for BridgeRequest events on {self.client.bridge_address}",
            context=LogContext(component="source"),
        )

    async def stop(self) -> None:
        """Stop polling."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run(self) -> None:
        """Poll until stopped."""
        self._running = True
        while self._running:
            try:
                await self.poll_once()
            except NetworkError as e:
                logger.warning(f"Source poll failed, retrying: {e.message}")
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> int:
        """Fetch, decode and enqueue logs up to the current head.

        Returns the number of deposits enqueued.
        """
        head = await self.client.block_number()
        if self.cursor is None:
            self.cursor = head
            logger.info(f"Starting from source head {head}")
            return 0

        emitted = 0
        while self.cursor < head:
            from_block = self.cursor + 1
            to_block = min(head, self.cursor + self.max_block_range)
            logs = await self.client.get_logs(from_block, to_block)

            for log in logs:
                if log.get("removed"):
                    continue
                deposit = self._decode(log)
                if deposit is not None:
                    await self.queue.put(deposit)
                    emitted += 1

            self.cursor = to_block

        self.emitted += emitted
        return emitted

    def _decode(self, log) -> Optional[ObservedDeposit]:
        try:
            deposit = decode_bridge_request(log)
        except DecodeError as e:
            self.decode_failures += 1
            logger.error(
                f"Dropping undecodable log: {e.message}",
                context=LogContext(component="source", transaction_hash=e.transaction_hash),
            )
            return None

        logger.info(
            "Event log received",
            context=LogContext(
                component="source",
                transaction_hash=deposit.transaction_hash,
                block_number=deposit.block_number,
            ),
            extra={
                "from": deposit.record.sender,
                "to": deposit.record.recipient,
                "token": deposit.record.token,
                "amount": str(deposit.record.amount),
                "src_chain_id": deposit.record.src_chain_id,
                "dst_chain_id": deposit.record.dst_chain_id,
                "nonce": str(deposit.record.nonce),
            },
        )
        return deposit
