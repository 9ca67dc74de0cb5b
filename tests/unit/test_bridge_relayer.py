"""Tests for the relay pipeline."""

import asyncio
import threading

import pytest

from mintrelay.bridge.message_id import message_id_for
from mintrelay.bridge.relayer import Relayer
from mintrelay.bridge.types import RelayOutcome
from mintrelay.errors import ConfigurationError, NetworkError
from mintrelay.storage import IdempotencyStore, MessageStatus
from tests.helpers import (
    FakeDestinationClient,
    FakeSourceClient,
    SOURCE_BRIDGE,
    SOURCE_CHAIN_ID,
    SleepRecorder,
    block_hash,
    failing,
    make_config,
    make_observed,
)


def _relayer(store, heads=None, **config):
    source = FakeSourceClient(heads=heads or [1000])
    dest = FakeDestinationClient(source)
    sleeper = SleepRecorder()
    relayer = Relayer(make_config(**config), source, dest, store, sleep=sleeper)
    return relayer, source, dest, sleeper


def _mid(observed):
    return message_id_for(observed.record, SOURCE_BRIDGE)


class TestProcess:
    """Test the per-deposit pipeline."""

    @pytest.mark.asyncio
    async def test_wrong_destination_is_skipped(self, store):
        """Test deposits for another chain are never gated or submitted."""
        relayer, source, dest, _ = _relayer(store)

        result = await relayer.handle(make_observed(dst_chain_id=1))

        assert result.outcome is RelayOutcome.SKIPPED_WRONG_DESTINATION
        assert source.head_calls == 0
        assert dest.mint_calls == []
        assert store.stats() == {"claimed": 0, "processed": 0, "abandoned": 0}

    @pytest.mark.asyncio
    async def test_relays_after_confirmations(self, store):
        """Test the mint is sent only once the deposit is deep enough."""
        relayer, source, dest, sleeper = _relayer(store, heads=[100, 103, 106])
        observed = make_observed(block_number=100)

        result = await relayer.handle(observed)

        assert result.outcome is RelayOutcome.RELAYED
        assert result.message_id == _mid(observed)
        assert dest.mint_heads == [106]
        assert len(sleeper.delays) == 2
        assert store.get(result.message_id)

    @pytest.mark.asyncio
    async def test_mint_arguments(self, store):
        """Test the configured source bridge is passed to executeMint."""
        relayer, _, dest, _ = _relayer(store)
        observed = make_observed(nonce=4, amount=123)

        await relayer.handle(observed)

        [args] = dest.mint_calls
        record = observed.record
        assert args == (
            SOURCE_CHAIN_ID,
            SOURCE_BRIDGE,
            4,
            record.token,
            record.sender,
            record.recipient,
            123,
        )

    @pytest.mark.asyncio
    async def test_reorged_deposit_is_dropped(self, store):
        """Test a deposit whose block was reorganized out is not relayed."""
        relayer, source, dest, _ = _relayer(store)
        source.hashes[100] = "0x" + "99" * 32

        result = await relayer.handle(make_observed(block_number=100))

        assert result.outcome is RelayOutcome.SKIPPED_REORGED
        assert dest.mint_calls == []
        assert source.receipt_calls == 1

    @pytest.mark.asyncio
    async def test_reincluded_at_same_height_is_relayed(self, store):
        """Test a deposit re-mined in the replacement block is still minted."""
        relayer, source, dest, _ = _relayer(store)
        observed = make_observed(block_number=100)
        replacement = "0x" + "99" * 32
        source.hashes[100] = replacement
        source.receipts[observed.transaction_hash] = [(100, replacement)]

        result = await relayer.handle(observed)

        assert result.outcome is RelayOutcome.RELAYED
        assert result.observed.block_hash == replacement
        assert result.message_id == _mid(observed)
        assert len(dest.mint_calls) == 1

    @pytest.mark.asyncio
    async def test_reincluded_later_waits_for_new_depth(self, store):
        """Test a deposit moved to a later block is gated again there."""
        relayer, source, dest, _ = _relayer(store, heads=[1000, 1000, 1006])
        observed = make_observed(block_number=100)
        source.hashes[100] = "0x" + "99" * 32
        source.receipts[observed.transaction_hash] = [(1000, block_hash(1000))]

        result = await relayer.handle(observed)

        assert result.outcome is RelayOutcome.RELAYED
        assert result.observed.block_number == 1000
        assert dest.mint_heads == [1006]

    @pytest.mark.asyncio
    async def test_stale_receipt_is_read_again(self, store):
        """Test a receipt still naming the orphaned block is re-read."""
        relayer, source, dest, sleeper = _relayer(store)
        observed = make_observed(block_number=100)
        replacement = "0x" + "99" * 32
        source.hashes[100] = replacement
        source.receipts[observed.transaction_hash] = [
            (100, observed.block_hash),
            (100, replacement),
        ]

        result = await relayer.handle(observed)

        assert result.outcome is RelayOutcome.RELAYED
        assert source.receipt_calls == 2
        assert len(sleeper.delays) == 1

    @pytest.mark.asyncio
    async def test_finality_timeout_fails_deposit(self, store):
        """Test a stalled head fails the deposit without submitting."""
        relayer, _, dest, _ = _relayer(store, heads=[100], finality_timeout=0.000001)

        result = await relayer.handle(make_observed(block_number=100))

        assert result.outcome is RelayOutcome.FAILED
        assert dest.mint_calls == []

    @pytest.mark.asyncio
    async def test_processed_on_destination(self, store):
        """Test a message the destination already processed is recorded locally."""
        relayer, _, dest, _ = _relayer(store)
        observed = make_observed()
        dest.processed_ids.add(_mid(observed))

        result = await relayer.handle(observed)

        assert result.outcome is RelayOutcome.ALREADY_PROCESSED_REMOTE
        assert dest.mint_calls == []
        assert store.get(_mid(observed))

    @pytest.mark.asyncio
    async def test_source_mismatch(self, store):
        """Test a deposit from an untrusted source bridge is refused."""
        relayer, _, dest, _ = _relayer(store)
        dest.trusted_sources[SOURCE_CHAIN_ID] = "0x" + "12" * 20
        observed = make_observed()

        result = await relayer.handle(observed)

        assert result.outcome is RelayOutcome.SOURCE_MISMATCH
        assert dest.mint_calls == []
        assert store.status(_mid(observed)) is None

    @pytest.mark.asyncio
    async def test_unset_mapping_is_a_mismatch(self, store):
        """Test an unconfigured source chain is refused."""
        relayer, _, dest, _ = _relayer(store)
        dest.trusted_sources.clear()

        result = await relayer.handle(make_observed())

        assert result.outcome is RelayOutcome.SOURCE_MISMATCH
        assert dest.mint_calls == []

    @pytest.mark.asyncio
    async def test_processed_locally(self, store):
        """Test a message recorded in the store is not submitted again."""
        relayer, _, dest, _ = _relayer(store)
        observed = make_observed()
        store.set(_mid(observed))

        result = await relayer.handle(observed)

        assert result.outcome is RelayOutcome.ALREADY_PROCESSED_LOCAL
        assert dest.mint_calls == []

    @pytest.mark.asyncio
    async def test_processed_read_failure_proceeds(self, store, memory_log):
        """Test a failed processed lookup is treated as not processed."""
        relayer, _, dest, _ = _relayer(store)
        dest.processed_error = NetworkError("rpc down")

        result = await relayer.handle(make_observed())

        assert result.outcome is RelayOutcome.RELAYED
        assert len(dest.mint_calls) == 1
        assert any("treating as not processed" in message for message in memory_log.messages())

    @pytest.mark.asyncio
    async def test_mapping_read_failure_proceeds(self, store):
        """Test a failed trusted-source lookup does not block the relay."""
        relayer, _, dest, _ = _relayer(store)
        dest.mapping_error = NetworkError("rpc down")

        result = await relayer.handle(make_observed())

        assert result.outcome is RelayOutcome.RELAYED

    @pytest.mark.asyncio
    async def test_retry_then_success(self, store):
        """Test transient failures are retried with backoff."""
        relayer, _, dest, sleeper = _relayer(store)
        dest.mint_results = failing(2)

        result = await relayer.handle(make_observed())

        assert result.outcome is RelayOutcome.RELAYED
        assert result.attempt.attempt_count == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_does_not_stop_other_deposits(self, store):
        """Test an abandoned message leaves the relayer processing others."""
        relayer, _, dest, _ = _relayer(store)
        dest.mint_results = failing(5, then_succeed=False)
        stuck = make_observed(nonce=1)
        fine = make_observed(nonce=2)

        first = await relayer.handle(stuck)
        second = await relayer.handle(fine)

        assert first.outcome is RelayOutcome.ABANDONED
        assert first.attempt.attempt_count == 5
        assert store.status(_mid(stuck)) is MessageStatus.ABANDONED
        assert second.outcome is RelayOutcome.RELAYED
        assert store.get(_mid(fine))
        assert relayer.outcomes[RelayOutcome.ABANDONED] == 1
        assert relayer.outcomes[RelayOutcome.RELAYED] == 1

    @pytest.mark.asyncio
    async def test_abandoned_message_is_retried_on_redelivery(self, store):
        """Test a dead-lettered message can be relayed when seen again."""
        relayer, _, dest, _ = _relayer(store, max_retries=1)
        dest.mint_results = failing(1, then_succeed=False)
        observed = make_observed()

        assert (await relayer.handle(observed)).outcome is RelayOutcome.ABANDONED
        assert (await relayer.handle(observed)).outcome is RelayOutcome.RELAYED
        assert store.get(_mid(observed))

    @pytest.mark.asyncio
    async def test_duplicate_delivery_submits_once(self, store):
        """Test concurrent copies of one deposit produce a single mint."""
        relayer, _, dest, _ = _relayer(store)
        dest.mint_delay = 0.05
        observed = make_observed()

        results = await asyncio.gather(relayer.handle(observed), relayer.handle(observed))

        outcomes = {result.outcome for result in results}
        assert RelayOutcome.RELAYED in outcomes
        assert outcomes <= {
            RelayOutcome.RELAYED,
            RelayOutcome.CLAIM_HELD,
            RelayOutcome.ALREADY_PROCESSED_LOCAL,
        }
        assert len(dest.mint_calls) == 1

    @pytest.mark.asyncio
    async def test_handler_error_is_contained(self, store, memory_log):
        """Test an unexpected error fails only its own deposit."""
        relayer, _, dest, _ = _relayer(store)
        broken = make_observed(nonce=1, token="not-an-address")

        result = await relayer.handle(broken)
        after = await relayer.handle(make_observed(nonce=2))

        assert result.outcome is RelayOutcome.FAILED
        assert result.error
        assert after.outcome is RelayOutcome.RELAYED
        assert any("Handler error" in message for message in memory_log.messages())


    @pytest.mark.asyncio
    async def test_store_writes_leave_the_event_loop_thread(self, store, monkeypatch):
        """Test claim and commit run on executor threads."""
        relayer, _, _, _ = _relayer(store)
        threads = {}
        for name in ("claim", "mark_processed"):
            real = getattr(store, name)

            def recording(*args, _name=name, _real=real):
                threads[_name] = threading.get_ident()
                return _real(*args)

            monkeypatch.setattr(store, name, recording)

        result = await relayer.handle(make_observed())

        assert result.outcome is RelayOutcome.RELAYED
        assert set(threads) == {"claim", "mark_processed"}
        assert threading.get_ident() not in threads.values()


class TestLifecycle:
    """Test dispatching and shutdown."""

    @pytest.mark.asyncio
    async def test_queued_deposits_are_dispatched(self, store):
        """Test deposits put on the queue are relayed by the dispatcher."""
        relayer, _, dest, _ = _relayer(store)

        await relayer.start()
        try:
            await relayer.queue.put(make_observed(nonce=1))
            await relayer.queue.put(make_observed(nonce=2))
            for _ in range(200):
                await asyncio.sleep(0.005)
                if len(relayer.results) == 2:
                    break
            await relayer.drain()
        finally:
            await relayer.stop()

        assert relayer.outcomes[RelayOutcome.RELAYED] == 2
        assert len(dest.mint_calls) == 2

    @pytest.mark.asyncio
    async def test_stop_releases_in_flight_claims(self, store):
        """Test shutdown cancels submissions and frees their claims."""
        relayer, _, dest, _ = _relayer(store)
        dest.mint_block = asyncio.Event()
        observed = make_observed()

        await relayer.start()
        task = relayer.spawn(observed)
        for _ in range(200):
            await asyncio.sleep(0.001)
            if dest.mint_calls:
                break
        assert store.status(_mid(observed)) is MessageStatus.CLAIMED

        await relayer.stop()

        assert task.cancelled()
        assert relayer.in_flight == 0
        assert store.status(_mid(observed)) is None

    @pytest.mark.asyncio
    async def test_start_recovers_stale_claims(self, tmp_path):
        """Test claims left by a crashed run are released on start."""
        path = str(tmp_path / "relayer.sqlite3")
        crashed = IdempotencyStore.open(path)
        crashed.claim("0x" + "aa" * 32)
        crashed.close()

        with IdempotencyStore.open(path) as store:
            relayer, _, _, _ = _relayer(store)
            await relayer.start()
            await relayer.stop()

            assert store.status("0x" + "aa" * 32) is None

    @pytest.mark.asyncio
    async def test_start_refuses_wrong_source_chain(self, store):
        """Test a source endpoint on another chain stops startup."""
        relayer, source, _, _ = _relayer(store)
        source.chain = 1

        with pytest.raises(ConfigurationError) as exc_info:
            await relayer.start()

        assert exc_info.value.config_key == "SOURCE_CHAIN_ID"
        assert relayer.source._task is None

    @pytest.mark.asyncio
    async def test_start_tolerates_unreadable_chain_id(self, store, memory_log):
        """Test an unreachable source endpoint does not block startup."""
        relayer, source, _, _ = _relayer(store)
        source.fail_chain_id = True

        await relayer.start()
        await relayer.stop()

        assert any("Could not verify" in message for message in memory_log.messages())
