"""
Destination submission with bounded exponential backoff.

Every failure (transport error, rejection, revert, receipt timeout) is retried
the same way until the retry budget is spent. There is no idempotency
re-check between attempts: an "already processed" revert is just another
failure. Success is committed to the idempotency store before returning,
exhaustion is dead-lettered there.
"""

import asyncio
from typing import Any, Awaitable, Callable, Tuple

from ..errors import RetryPolicy
from ..logging import LogContext, get_logger
from ..storage import IdempotencyStore, run_blocking
from .clients import DestinationChainClient
from .types import DepositRecord, ObservedDeposit, RelayAttempt

logger = get_logger(__name__)


def mint_call_args(record: DepositRecord, source_bridge: str) -> Tuple[Any, ...]:
    """``executeMint`` arguments in contract order."""
    return (
        record.src_chain_id,
        source_bridge,
        record.nonce,
        record.token,
        record.sender,
        record.recipient,
        record.amount,
    )


class SubmissionEngine:
    """Sends ``executeMint`` for one message at a time per call."""

    def __init__(
        self,
        client: DestinationChainClient,
        store: IdempotencyStore,
        source_bridge: str,
        policy: RetryPolicy,
        receipt_timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.source_bridge = source_bridge
        self.policy = policy
        self.receipt_timeout = receipt_timeout
        self._sleep = sleep

    async def submit(self, observed: ObservedDeposit, message_id: str) -> RelayAttempt:
        attempt = RelayAttempt(message_id=message_id)
        args = mint_call_args(observed.record, self.source_bridge)
        context = LogContext(component="submitter", message_id=message_id)

        while attempt.attempt_count < self.policy.max_retries:
            attempt.attempt_count += 1
            try:
                logger.info(f"Submitting executeMint attempt {attempt.attempt_count}", context=context)
                tx_hash = await self.client.execute_mint(args, receipt_timeout=self.receipt_timeout)
            except Exception as e:
                attempt.last_error = str(e)
                logger.error(f"executeMint failed: {e}", context=context)
                if not self.policy.should_retry(attempt.attempt_count):
                    break

                delay = self.policy.get_delay(attempt.attempt_count)
                attempt.delays.append(delay)
                logger.info(f"Retrying in {delay * 1000:.0f} ms", context=context)
                await self._sleep(delay)
                continue

            attempt.transaction_hash = tx_hash
            await run_blocking(self.store.mark_processed, message_id, tx_hash)
            attempt.succeeded = True
            logger.info(
                "Relay completed",
                context=LogContext(
                    component="submitter", message_id=message_id, transaction_hash=tx_hash
                ),
            )
            return attempt

        logger.error(
            f"Max retries hit, giving up after {attempt.attempt_count} attempt(s)",
            context=context,
            extra={"last_error": attempt.last_error},
        )
        await run_blocking(
            self.store.record_abandoned, message_id, attempt.attempt_count, attempt.last_error
        )
        return attempt
