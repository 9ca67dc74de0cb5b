"""
Deposit-to-mint relay pipeline.

The event source feeds an asyncio queue; the dispatcher spawns one task per
deposit. Each task runs the full pipeline on its own:

    destination filter -> finality -> message id -> processed on destination?
    -> trusted source? -> processed locally? -> claim -> submit

Unexpected errors are caught at the task boundary so one bad deposit never
stops the others.
"""

import asyncio
from collections import Counter, deque
from dataclasses import replace
from typing import Awaitable, Callable, Deque, Optional, Set

from ..config import RelayerConfig
from ..errors import (
    ConfigurationError,
    FinalityTimeoutError,
    NetworkError,
    OracleError,
    ReorgDetectedError,
    RetryPolicy,
)
from ..logging import LogContext, get_logger
from ..storage import IdempotencyStore, run_blocking
from .clients import DestinationChainClient, SourceChainClient
from .finality import FinalityGate
from .message_id import message_id_for
from .oracle import DestinationOracle
from .source import EventSource
from .submitter import SubmissionEngine
from .types import ObservedDeposit, RelayOutcome, RelayResult

logger = get_logger(__name__)


class Relayer:
    """Wires the pipeline stages together and schedules per-deposit tasks."""

    def __init__(
        self,
        config: RelayerConfig,
        source_client: SourceChainClient,
        dest_client: DestinationChainClient,
        store: IdempotencyStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        history_limit: int = 1000,
    ):
        self.config = config
        self.store = store
        self.source_client = source_client
        self._sleep = sleep
        self.queue: "asyncio.Queue[ObservedDeposit]" = asyncio.Queue()
        self.source = EventSource(
            source_client,
            self.queue,
            poll_interval=config.poll_interval,
            start_block=config.start_block,
            max_block_range=config.max_block_range,
        )
        self.gate = FinalityGate(
            source_client,
            confirmations=config.confirmations,
            poll_interval=config.poll_interval,
            timeout=config.finality_timeout,
            sleep=sleep,
        )
        self.oracle = DestinationOracle(dest_client)
        self.submitter = SubmissionEngine(
            dest_client,
            store,
            source_bridge=config.source_bridge,
            policy=RetryPolicy.from_milliseconds(config.max_retries, config.retry_base_ms),
            receipt_timeout=config.receipt_timeout,
            sleep=sleep,
        )
        self.outcomes: Counter = Counter()
        self.results: Deque[RelayResult] = deque(maxlen=history_limit)
        self._tasks: Set[asyncio.Task] = set()
        self._dispatcher: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: RelayerConfig, store: IdempotencyStore) -> "Relayer":
        source_client = SourceChainClient(config.source_rpc, config.source_bridge)
        dest_client = DestinationChainClient(
            config.dest_rpc,
            config.dest_bridge,
            config.private_key,
            chain_id=config.dest_chain_id,
        )
        return cls(config, source_client, dest_client, store)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        """Start ingesting and dispatching deposits."""
        await self.check_source_chain()
        self.store.recover_stale_claims()
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        await self.source.start()
        logger.info("Relayer started", extra=self.config.describe())

    async def check_source_chain(self) -> None:
        """Refuse to run against a source endpoint serving another chain."""
        try:
            chain_id = await self.source_client.chain_id()
        except NetworkError as e:
            logger.warning(f"Could not verify the source chain id: {e.message}")
            return
        if chain_id != self.config.source_chain_id:
            raise ConfigurationError(
                f"Source RPC serves chain {chain_id}, expected {self.config.source_chain_id}",
                config_key="SOURCE_CHAIN_ID",
            )

    async def stop(self) -> None:
        """Stop ingestion and cancel in-flight deposits; their claims are released."""
        await self.source.stop()
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            await asyncio.gather(self._dispatcher, return_exceptions=True)
            self._dispatcher = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.store.flush()
        logger.info(f"Relayer stopped, cancelled {len(tasks)} in-flight deposit(s)")

    async def _dispatch_loop(self) -> None:
        while True:
            observed = await self.queue.get()
            self.spawn(observed)
            self.queue.task_done()

    def spawn(self, observed: ObservedDeposit) -> asyncio.Task:
        """Schedule one deposit as its own task."""
        task = asyncio.create_task(self.handle(observed))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled deposit task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle(self, observed: ObservedDeposit) -> RelayResult:
        """Run the pipeline for one deposit, never raising."""
        try:
            result = await self.process(observed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(
                f"Handler error: {e}",
                context=LogContext(component="relayer", transaction_hash=observed.transaction_hash),
            )
            result = RelayResult(RelayOutcome.FAILED, observed, error=str(e))

        self.outcomes[result.outcome] += 1
        self.results.append(result)
        return result

    async def _claim(self, message_id: str) -> bool:
        claim = asyncio.ensure_future(run_blocking(self.store.claim, message_id))
        try:
            return await asyncio.shield(claim)
        except asyncio.CancelledError:
            # the worker thread finishes the claim regardless
            if await claim:
                self.store.release(message_id)
            raise

    async def _confirm(
        self, observed: ObservedDeposit, context: LogContext
    ) -> Optional[ObservedDeposit]:
        """Gate a deposit, following its transaction into replacement blocks.

        A reorg does not change the message id or the mint arguments, so a
        transaction re-mined at another height or hash is gated again there.
        Returns the deposit as finally confirmed, or None once the source
        chain has no receipt for its transaction.
        """
        while True:
            try:
                await self.gate.wait(observed)
                return observed
            except ReorgDetectedError as e:
                logger.warning(f"{e.message}, re-reading the source receipt", context=context)

            location = await self._locate_transaction(observed, context)
            if location is None:
                return None
            block_number, block_hash = location
            logger.info(f"Transaction re-included in block {block_number}", context=context)
            observed = replace(observed, block_number=block_number, block_hash=block_hash)
            context.block_number = block_number

    async def _locate_transaction(self, observed: ObservedDeposit, context: LogContext):
        # a receipt still pointing at the orphaned block means the node has not caught up
        while True:
            try:
                location = await self.source_client.transaction_block(observed.transaction_hash)
            except NetworkError as e:
                logger.warning(f"Receipt read failed: {e.message}", context=context)
                location = observed.block_number, observed.block_hash

            if location is None or location[1].lower() != observed.block_hash.lower():
                return location
            await self._sleep(self.config.poll_interval)

    async def process(self, observed: ObservedDeposit) -> RelayResult:
        record = observed.record
        context = LogContext(
            component="relayer",
            transaction_hash=observed.transaction_hash,
            block_number=observed.block_number,
        )

        if record.dst_chain_id != self.config.dest_chain_id:
            logger.info(
                f"dstChainId {record.dst_chain_id} doesn't match this relayer, skipping",
                context=context,
            )
            return RelayResult(RelayOutcome.SKIPPED_WRONG_DESTINATION, observed)

        try:
            confirmed = await self._confirm(observed, context)
        except FinalityTimeoutError as e:
            logger.error(f"Giving up on deposit: {e.message}", context=context)
            return RelayResult(RelayOutcome.FAILED, observed, error=e.message)
        if confirmed is None:
            logger.warning("Dropping deposit: transaction left the source chain", context=context)
            return RelayResult(
                RelayOutcome.SKIPPED_REORGED, observed, error="transaction not canonical"
            )
        observed = confirmed

        message_id = message_id_for(record, self.config.source_bridge)
        context.message_id = message_id
        logger.info("Computed messageId", context=context)

        try:
            if await self.oracle.is_processed(message_id):
                logger.info("Already processed on destination, skipping", context=context)
                await run_blocking(self.store.set, message_id)
                return RelayResult(RelayOutcome.ALREADY_PROCESSED_REMOTE, observed, message_id)
        except OracleError as e:
            logger.warning(f"{e.message}; treating as not processed", context=context)

        try:
            expected = await self.oracle.source_mismatch(
                record.src_chain_id, self.config.source_bridge
            )
        except OracleError as e:
            logger.warning(e.message, context=context)
            expected = None
        if expected is not None:
            logger.warning(
                f"Destination expects source bridge {expected}, refusing relay",
                context=context,
            )
            return RelayResult(RelayOutcome.SOURCE_MISMATCH, observed, message_id)

        if await run_blocking(self.store.get, message_id):
            logger.info("Already processed (local store), skipping", context=context)
            return RelayResult(RelayOutcome.ALREADY_PROCESSED_LOCAL, observed, message_id)

        if not await self._claim(message_id):
            logger.info("Message is claimed by another delivery, skipping", context=context)
            return RelayResult(RelayOutcome.CLAIM_HELD, observed, message_id)

        settled = False
        try:
            attempt = await self.submitter.submit(observed, message_id)
            settled = True
        finally:
            if not settled:
                self.store.release(message_id)

        outcome = RelayOutcome.RELAYED if attempt.succeeded else RelayOutcome.ABANDONED
        return RelayResult(outcome, observed, message_id, attempt=attempt, error=attempt.last_error)
