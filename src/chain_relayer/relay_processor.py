"""
Per-transaction relay logic.

This module contains the logic for relaying individual source transactions
and whole source blocks, keeping it separate from the relayer's connection
and lifecycle management.
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING

from .config import RelayPolicyConfig
from .exceptions import GasCeilingExceeded, NotConnected, TransactionFailure
from .explorer import transaction_urls
from .metrics import RelayMetrics
from .models import RelayRecord, Transaction
from .record_store import RelayRecordStore
from .retry import RetryPolicy
from .submitter import TransactionSubmitter

if TYPE_CHECKING:
    from .endpoint import NetworkEndpoint

logger = logging.getLogger(__name__)


class RelayProcessor:
    """Relays source transactions onto the target chain."""

    def __init__(
        self,
        source: "NetworkEndpoint",
        submitter: TransactionSubmitter,
        records: RelayRecordStore,
        metrics: RelayMetrics,
        policy: RelayPolicyConfig,
        explorer_urls: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the relay processor.

        Args:
            source: Endpoint of the source chain
            submitter: Submits projected transactions to the target chain
            records: Ledger of relay records
            metrics: Collectors updated as relays progress
            policy: Retry ceiling and delay for failed submissions
            explorer_urls: Target chain explorers used for verification links
        """
        self.source = source
        self.submitter = submitter
        self.records = records
        self.metrics = metrics
        self.retry_policy = RetryPolicy.fixed(max_attempts=policy.retry_count, delay=policy.retry_delay)
        self.explorer_urls = dict(explorer_urls or {})
        self._in_flight: set[str] = set()

    async def relay_transaction(self, source_hash: str) -> RelayRecord | None:
        """
        Relay one source transaction to the target chain.

        A record that already reached a final outcome is returned unchanged,
        so relaying the same hash twice never resubmits it.

        Args:
            source_hash: Hash of the transaction on the source chain

        Returns:
            The relay record, or None if the transaction is not retrievable
        """
        if (record := self.records.get(source_hash)) is not None:
            if record.is_final or source_hash in self._in_flight:
                logger.debug(f"Skipping {source_hash[:10]}..., already {record.outcome.value}")
                return record

        tx = await self.source.get_transaction(source_hash)
        if tx is None:
            logger.warning(f"Transaction {source_hash[:10]}... not found on source chain, skipping")
            return None

        record, created = self.records.get_or_create(source_hash)
        if created:
            self.metrics.transactions_seen.inc()

        started = time.monotonic()
        self._in_flight.add(source_hash)
        try:
            await self._relay_with_retries(tx, record)
        finally:
            self._in_flight.discard(source_hash)

        if record.is_final:
            self.metrics.relay_duration.observe(time.monotonic() - started)
        return record

    async def _relay_with_retries(self, tx: Transaction, record: RelayRecord) -> None:
        max_attempts = self.retry_policy.max_attempts
        short_hash = f"{tx.hash[:10]}..."

        while not record.is_final:
            if record.attempts >= max_attempts:
                self._fail(record, record.error or "retry ceiling reached")
                return

            attempt = record.begin_attempt()
            self.metrics.attempts.inc()
            if attempt > 1:
                self.metrics.retries.inc()
            logger.info(f"Relaying {short_hash} (attempt {attempt}/{max_attempts})")

            try:
                target_hash, receipt = await self.submitter.submit(tx)
            except GasCeilingExceeded as e:
                logger.error(f"✗ {e}, not retrying {short_hash}")
                self._fail(record, f"GasCeilingExceeded: {e}")
                return
            except TransactionFailure as e:
                error, failed_hash = str(e), e.receipt.transaction_hash
            except Exception as e:
                logger.error(f"Error relaying {short_hash}: {e}", exc_info=True)
                error, failed_hash = f"{type(e).__name__}: {e}", None
            else:
                urls = transaction_urls(target_hash, self.explorer_urls)
                record.mark_success(target_hash, receipt.gas_used, urls)
                self.metrics.successes.inc()
                self.metrics.last_gas_used.set(receipt.gas_used)
                logger.info(f"✓ Relayed {short_hash} -> {target_hash} (gas used: {receipt.gas_used})")
                for name, url in urls.items():
                    logger.info(f"  {name}: {url}")
                return

            record.mark_failed_attempt(error, failed_hash)
            if attempt >= max_attempts:
                self._fail(record, error)
                return

            delay = self.retry_policy.delay_for(attempt)
            logger.warning(f"Attempt {attempt}/{max_attempts} failed for {short_hash}: {error}. Retrying in {delay}s...")
            await asyncio.sleep(delay)

    def _fail(self, record: RelayRecord, error: str) -> None:
        record.mark_permanent_failure(error)
        self.metrics.failures.inc()
        logger.error(f"✗ Relay of {record.source_hash[:10]}... failed permanently after {record.attempts} attempts: {error}")

    async def process_block(self, block_number: int) -> list[RelayRecord]:
        """
        Relay every transaction of a source block sequentially, in block order.

        A failure of one transaction never stops the rest of the block. Losing
        the source connection does: NotConnected propagates so the caller can
        process the whole block again once the source is back.

        Args:
            block_number: Source block number

        Returns:
            Records of the transactions that were relayed or already known

        Raises:
            NotConnected: If the source endpoint is not connected
        """
        block = await self.source.get_block(block_number)
        if block is None:
            logger.warning(f"Block {block_number} not found on source chain")
            return []

        self.metrics.source_block_height.set(block.number)
        logger.info(f"Processing block {block.number} with {len(block.transactions)} transactions")

        records = []
        for tx_hash in block.transactions:
            try:
                record = await self.relay_transaction(tx_hash)
            except NotConnected:
                raise
            except Exception as e:
                logger.error(f"Error relaying {tx_hash}: {e}", exc_info=True)
                continue
            if record is not None:
                records.append(record)
        return records
