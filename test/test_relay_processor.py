"""Unit tests for RelayProcessor."""

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, patch

import pytest

from chain_relayer.config import RelayPolicyConfig
from chain_relayer.metrics import RelayMetrics
from chain_relayer.models import RelayOutcome, TransactionReceipt
from chain_relayer.record_store import RelayRecordStore
from chain_relayer.relay_processor import RelayProcessor
from chain_relayer.submitter import TransactionSubmitter

GWEI = 10**9
EXPLORERS = {"etherscan": "https://etherscan.io"}


async def build_processor(source_endpoint, target_endpoint, policy=None):
    policy = policy or RelayPolicyConfig(retry_count=3, retry_delay=0, confirmation_timeout=5)
    await source_endpoint.connect()
    await target_endpoint.connect()
    processor = RelayProcessor(
        source=source_endpoint,
        submitter=TransactionSubmitter(target_endpoint, policy),
        records=RelayRecordStore(),
        metrics=RelayMetrics(),
        policy=policy,
        explorer_urls=EXPLORERS,
    )
    return processor


def sample(processor: RelayProcessor, name: str) -> float:
    return processor.metrics.registry.get_sample_value(name) or 0.0


class TestRelayTransaction:
    """Tests for relaying single transactions."""

    @pytest.mark.asyncio
    async def test_successful_relay(self, source_endpoint, target_endpoint, source_sim, target_sim):
        processor = await build_processor(source_endpoint, target_endpoint)
        tx = source_sim.generate_transaction()

        record = await processor.relay_transaction(tx.hash)

        assert record.outcome is RelayOutcome.SUCCESS
        assert record.attempts == 1
        assert record.target_hash in target_sim.transactions
        assert record.gas_used == 21_000
        assert record.explorer_urls == {"etherscan": f"https://etherscan.io/tx/{record.target_hash}"}
        assert sample(processor, "relay_transactions_total") == 1
        assert sample(processor, "relay_successes_total") == 1
        assert sample(processor, "relay_last_gas_used") == 21_000

    @pytest.mark.asyncio
    async def test_relay_is_idempotent_after_success(self, source_endpoint, target_endpoint, source_sim, target_sim):
        processor = await build_processor(source_endpoint, target_endpoint)
        tx = source_sim.generate_transaction()

        first = await processor.relay_transaction(tx.hash)
        second = await processor.relay_transaction(tx.hash)

        assert second is first
        assert second.attempts == 1
        assert len(target_sim.transactions) == 1
        assert sample(processor, "relay_transactions_total") == 1

    @pytest.mark.asyncio
    async def test_missing_transaction_is_skipped(self, source_endpoint, target_endpoint):
        processor = await build_processor(source_endpoint, target_endpoint)

        assert await processor.relay_transaction("0x" + "00" * 32) is None
        assert len(processor.records) == 0

    @pytest.mark.asyncio
    async def test_failed_receipts_retry_up_to_ceiling(self, source_endpoint, target_endpoint, source_sim, target_sim):
        """A ceiling of 3 yields exactly 3 submissions and then permanent failure."""
        target_sim.config = replace(target_sim.config, failure_rate=1.0)
        processor = await build_processor(source_endpoint, target_endpoint)
        tx = source_sim.generate_transaction()

        record = await processor.relay_transaction(tx.hash)

        assert record.outcome is RelayOutcome.PERMANENT_FAILURE
        assert record.attempts == 3
        assert len(target_sim.transactions) == 3
        assert sample(processor, "relay_attempts_total") == 3
        assert sample(processor, "relay_retries_total") == 2
        assert sample(processor, "relay_failures_total") == 1

        await processor.relay_transaction(tx.hash)
        assert len(target_sim.transactions) == 3

    @pytest.mark.asyncio
    async def test_gas_ceiling_is_not_retried(self, source_endpoint, target_endpoint, source_sim, target_sim):
        target_sim.config = replace(target_sim.config, gas_price=500 * GWEI)
        processor = await build_processor(source_endpoint, target_endpoint)
        tx = source_sim.generate_transaction()

        record = await processor.relay_transaction(tx.hash)

        assert record.outcome is RelayOutcome.PERMANENT_FAILURE
        assert record.attempts == 1
        assert record.error.startswith("GasCeilingExceeded")
        assert target_sim.transactions == {}
        assert sample(processor, "relay_retries_total") == 0

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self, source_endpoint, target_endpoint, source_sim):
        processor = await build_processor(source_endpoint, target_endpoint)
        tx = source_sim.generate_transaction()
        receipt = TransactionReceipt("0x" + "ef" * 32, status=1, block_number=3, gas_used=30_000)

        with patch.object(
            processor.submitter,
            "submit",
            AsyncMock(side_effect=[TimeoutError("not mined"), ("0x" + "ef" * 32, receipt)]),
        ):
            record = await processor.relay_transaction(tx.hash)

        assert record.outcome is RelayOutcome.SUCCESS
        assert record.attempts == 2
        snapshot = processor.records.snapshot()
        assert snapshot.retried_successes == 1
        assert snapshot.retry_success_rate == 100.0

    @pytest.mark.asyncio
    async def test_cancelled_relay_stays_pending(self, source_endpoint, target_endpoint, source_sim, target_sim):
        target_sim.config = replace(target_sim.config, confirmation_delay=10.0)
        processor = await build_processor(source_endpoint, target_endpoint)
        tx = source_sim.generate_transaction()

        task = asyncio.create_task(processor.relay_transaction(tx.hash))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        record = processor.records.get(tx.hash)
        assert record.outcome is RelayOutcome.PENDING
        assert record.attempts == 1


class TestProcessBlock:
    """Tests for block-level processing."""

    @pytest.mark.asyncio
    async def test_transactions_relayed_in_block_order(self, source_endpoint, target_endpoint, source_sim, target_sim):
        processor = await build_processor(source_endpoint, target_endpoint)
        block = source_sim.produce_block(tx_count=3)

        records = await processor.process_block(block.number)

        assert [r.source_hash for r in records] == list(block.transactions)
        assert list(target_sim.transactions) == [r.target_hash for r in records]
        assert sample(processor, "relay_source_block_height") == block.number

    @pytest.mark.asyncio
    async def test_one_failing_transaction_does_not_stop_block(self, source_endpoint, target_endpoint, source_sim):
        processor = await build_processor(source_endpoint, target_endpoint)
        block = source_sim.produce_block(tx_count=3)

        with patch.object(
            processor,
            "relay_transaction",
            AsyncMock(side_effect=[RuntimeError("boom"), None, None]),
        ) as relay:
            records = await processor.process_block(block.number)

        assert records == []
        assert relay.await_count == 3

    @pytest.mark.asyncio
    async def test_unknown_block_returns_empty(self, source_endpoint, target_endpoint):
        processor = await build_processor(source_endpoint, target_endpoint)

        assert await processor.process_block(99) == []

