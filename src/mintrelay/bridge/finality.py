"""Source-chain finality gate."""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from ..errors import FinalityTimeoutError, NetworkError, ReorgDetectedError
from ..logging import LogContext, get_logger
from .clients import SourceChainClient
from .types import ObservedDeposit

logger = get_logger(__name__)


class FinalityGate:
    """Holds a deposit until its block has enough confirmations.

    Each call to :meth:`wait` is an independent coroutine, so any number of
    deposits can be gated concurrently. Once the depth is reached the block
    hash at the deposit's height is re-read and compared with the hash the log
    was observed in.
    """

    def __init__(
        self,
        client: SourceChainClient,
        confirmations: int,
        poll_interval: float = 1.0,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.confirmations = confirmations
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def wait(self, observed: ObservedDeposit) -> int:
        """Block until ``head - block >= confirmations``; returns that head.

        Raises ReorgDetectedError if the deposit's block left the canonical
        chain and FinalityTimeoutError if a timeout is configured and expires.
        """
        block = observed.block_number
        context = LogContext(
            component="finality",
            transaction_hash=observed.transaction_hash,
            block_number=block,
        )
        logger.info(f"Waiting {self.confirmations} confirmations from block {block}", context=context)

        deadline = None if self.timeout is None else self._clock() + self.timeout
        while True:
            try:
                head = await self.client.block_number()
                if head - block >= self.confirmations:
                    break
            except NetworkError as e:
                logger.warning(f"Head poll failed: {e.message}", context=context)

            if deadline is not None and self._clock() >= deadline:
                raise FinalityTimeoutError(
                    f"Block {block} not confirmed within {self.timeout}s",
                    block_number=block,
                    timeout_duration=self.timeout,
                )
            await self._sleep(self.poll_interval)

        await self._check_canonical(observed)
        logger.info("Confirmed on source chain", context=context)
        return head

    async def _check_canonical(self, observed: ObservedDeposit) -> None:
        if observed.block_hash is None:
            return

        canonical = await self.client.block_hash(observed.block_number)
        if canonical is None or canonical.lower() != observed.block_hash.lower():
            raise ReorgDetectedError(
                f"Block {observed.block_number} was reorganized out",
                block_number=observed.block_number,
                expected_hash=observed.block_hash,
                canonical_hash=canonical,
            )
