"""
Chain relayer implementation.

This module contains the main relayer service that connects both networks,
feeds source blocks through a FIFO queue to the relay processor and keeps the
endpoints alive with exponential-backoff reconnection.
"""

import asyncio
import logging
from typing import Any

from .api_server import MetricsServer
from .config import RelayerConfig
from .endpoint import NetworkEndpoint, wait_for_connections
from .exceptions import NotConnected, RelayConnectionError
from .metrics import RelayMetrics
from .models import MetricsSnapshot, RelayOutcome, RelayRecord
from .record_store import RelayRecordStore
from .relay_processor import RelayProcessor
from .retry import RetryPolicy, retry_async
from .simulator import ChainSimulator, SimulatorConfig
from .submitter import TransactionSubmitter
from .utils.chain_client import ChainClient
from .utils.web3_client import Web3ChainClient

logger = logging.getLogger(__name__)

# Reconnection retries live in the backoff loop, one connect per step
_SINGLE_CONNECT = RetryPolicy.fixed(max_attempts=1, delay=0)


class ChainRelayer:
    """
    Main relayer service that orchestrates block monitoring and relaying.

    This class focuses on connection and lifecycle management, delegating
    per-transaction work to the RelayProcessor.
    """

    STATUS_LOG_INTERVAL = 30  # seconds

    def __init__(
        self,
        config: RelayerConfig,
        source_client: ChainClient | None = None,
        target_client: ChainClient | None = None,
    ) -> None:
        """
        Initialize the chain relayer.

        Args:
            config: Relayer configuration
            source_client: Client for the source chain (built from config when omitted)
            target_client: Client for the target chain (built from config when omitted)
        """
        self.config = config
        self.running = False
        self.fatal_error: BaseException | None = None

        default_source, default_target = (None, None)
        if source_client is None or target_client is None:
            default_source, default_target = self._init_clients()

        connect_policy = RetryPolicy.fixed(
            max_attempts=config.verification.connect_attempts,
            delay=config.verification.connect_retry_delay,
        )
        self.source = NetworkEndpoint(
            "source", source_client or default_source, config.source_chain.chain_id, connect_policy
        )
        self.target = NetworkEndpoint(
            "target", target_client or default_target, config.target_chain.chain_id, connect_policy
        )

        self.records = RelayRecordStore()
        self.metrics = RelayMetrics()
        self.submitter = TransactionSubmitter(self.target, config.relay)
        self.processor = RelayProcessor(
            source=self.source,
            submitter=self.submitter,
            records=self.records,
            metrics=self.metrics,
            policy=config.relay,
            explorer_urls=config.target_chain.explorer_urls,
        )
        self.metrics_server = MetricsServer(config.metrics, self.metrics, stats_getter=self.get_stats)

        self.reconnect_policy = RetryPolicy.exponential(
            max_attempts=config.reconnect.max_attempts,
            base_delay=config.reconnect.base_delay,
            max_delay=config.reconnect.max_delay,
        )

        # Async coordination
        self.shutdown_event = asyncio.Event()
        # Set while the source endpoint is verified and blocks can be fetched
        self.source_ready = asyncio.Event()
        self._tasks: dict[str, asyncio.Task] = {}
        self._reconnect_tasks: dict[str, asyncio.Task] = {}

        self.source.add_disconnect_listener(self._on_disconnect)
        self.target.add_disconnect_listener(self._on_disconnect)

    def _init_clients(self) -> tuple[ChainClient, ChainClient]:
        """Build simulated networks in mock mode, web3 clients otherwise."""
        source_config = self.config.source_chain
        target_config = self.config.target_chain

        if self.config.mock_mode:
            source: ChainClient = ChainSimulator(SimulatorConfig(
                chain_id=source_config.chain_id,
                name=source_config.name,
                block_time=self.config.mock.block_time,
            ))
            target: ChainClient = ChainSimulator(SimulatorConfig(
                chain_id=target_config.chain_id,
                name=target_config.name,
                block_time=self.config.mock.block_time,
                failure_rate=self.config.mock.failure_rate,
            ))
            logger.info("Initialized simulated source and target networks")
            return source, target

        source = Web3ChainClient(rpc_url=source_config.rpc_url)
        target = Web3ChainClient(rpc_url=target_config.rpc_url, private_key=target_config.private_key)
        logger.info("Initialized web3 clients for source and target networks")
        return source, target

    @classmethod
    def from_env(cls, mock_mode: bool = False) -> "ChainRelayer":
        """
        Create a ChainRelayer instance from environment variables.

        Args:
            mock_mode: Run against simulated networks

        Returns:
            Configured ChainRelayer instance

        Raises:
            ValueError: If required environment variables are missing
        """
        config = RelayerConfig.from_env(mock_mode=mock_mode)
        config.log_config()
        return cls(config)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Connect both endpoints and verify their chain ids.

        Raises:
            VerificationTimeout: If either network cannot be verified
        """
        logger.info("Initializing chain relayer...")
        results = await asyncio.gather(self.source.connect(), self.target.connect(), return_exceptions=True)
        for endpoint, result in zip((self.source, self.target), results):
            if isinstance(result, Exception):
                logger.warning(f"Initial connection to {endpoint.name} failed: {result}")

        await wait_for_connections(self.source, self.target, self.config.verification)
        self.source_ready.set()

    async def start(self) -> None:
        """Subscribe to source blocks and start the worker, status logger and metrics server."""
        if self.running:
            return
        self.running = True
        self.shutdown_event.clear()

        queue = self.source.subscribe_blocks()
        self.metrics.block_queue_size.set_function(queue.qsize)
        self._tasks["blocks"] = asyncio.create_task(self._process_blocks(queue))
        self._tasks["status"] = asyncio.create_task(self._periodic_status_logger())

        await self.metrics_server.start()
        logger.info("Block monitoring started, waiting for blocks...")

    async def run(self) -> None:
        """
        Main loop for the relayer service.

        Raises:
            VerificationTimeout: If startup verification fails
            RelayConnectionError: If the source cannot be reconnected
        """
        logger.info("Chain relayer starting...")
        logger.info(
            f"Relaying {self.config.source_chain.name} ({self.config.source_chain.chain_id}) -> "
            f"{self.config.target_chain.name} ({self.config.target_chain.chain_id})"
        )

        try:
            await self.initialize()
            await self.start()

            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break
                except asyncio.TimeoutError:
                    pass

                if not await self._check_task_health():
                    logger.error("Critical task failure, shutting down")
                    break

            if self.fatal_error is not None:
                raise self.fatal_error

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            await self.shutdown()
            logger.info("Chain relayer stopped")

    def stop(self) -> None:
        """Stop the relayer service."""
        self.running = False
        self.shutdown_event.set()

    async def shutdown(self) -> None:
        """
        Release everything the relayer holds. Safe to call repeatedly.

        Relay records are kept; records still pending stay pending.
        """
        self.running = False
        self.source.unsubscribe_blocks()

        current = asyncio.current_task()
        tasks = [
            task
            for task in (*self._tasks.values(), *self._reconnect_tasks.values())
            if task is not current and not task.done()
        ]
        self._tasks.clear()
        self._reconnect_tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for endpoint, result in zip(
            (self.source, self.target),
            await asyncio.gather(self.source.disconnect(), self.target.disconnect(), return_exceptions=True),
        ):
            if isinstance(result, Exception):
                logger.warning(f"Error disconnecting {endpoint.name}: {result}")

        await self.metrics_server.stop()
        self._log_status()

    async def _check_task_health(self) -> bool:
        """Check if any critical task has failed."""
        for name, task in self._tasks.items():
            if task.done() and name != "status":
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    # ------------------------------------------------------------------
    # Block processing
    # ------------------------------------------------------------------

    async def _process_blocks(self, queue: asyncio.Queue[int]) -> None:
        """Consume source blocks one at a time, in arrival order."""
        while True:
            block_number = await queue.get()
            try:
                await self._process_block_until_done(block_number)
            except Exception as e:
                self.metrics.block_errors.inc()
                logger.error(f"Error processing block {block_number}: {e}", exc_info=True)
            finally:
                queue.task_done()

    async def _process_block_until_done(self, block_number: int) -> None:
        """
        Process a block, starting it over after every source reconnection.

        Transactions already relayed are skipped on the next pass, so a block
        interrupted by a source disconnect is finished rather than dropped.
        """
        while True:
            await self.source_ready.wait()
            try:
                await self.processor.process_block(block_number)
                return
            except NotConnected:
                if not self.source.is_ready:
                    self.source_ready.clear()
                logger.warning(f"Source lost while processing block {block_number}, waiting for reconnection")

    async def relay_transaction(self, source_hash: str) -> RelayRecord | None:
        return await self.processor.relay_transaction(source_hash)

    async def process_block(self, block_number: int) -> list[RelayRecord]:
        return await self.processor.process_block(block_number)

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def _on_disconnect(self, endpoint: NetworkEndpoint) -> None:
        self.metrics.disconnections.set(self.source.disconnections + self.target.disconnections)
        if endpoint is self.source:
            self.source_ready.clear()
        if not self.running:
            return
        if (task := self._reconnect_tasks.get(endpoint.name)) is not None and not task.done():
            return
        self._reconnect_tasks[endpoint.name] = asyncio.create_task(self._reconnect(endpoint))

    async def _reconnect(self, endpoint: NetworkEndpoint) -> bool:
        """
        Reconnect an endpoint with exponential backoff.

        Exhausting the attempts on the source endpoint is fatal and stops the
        relayer; on the target endpoint it is logged and relays keep failing
        until the process is restarted.

        Returns:
            True if the endpoint is connected and verified again
        """
        max_attempts = self.reconnect_policy.max_attempts

        async def attempt(number: int) -> None:
            logger.info(f"Reconnecting {endpoint.name} (attempt {number}/{max_attempts})")
            await endpoint.reconnect(_SINGLE_CONNECT)
            if not await endpoint.verify():
                raise RelayConnectionError(
                    f"{endpoint.name} reports chain {endpoint.detected_chain_id}, "
                    f"expected {endpoint.expected_chain_id}"
                )

        def log_retry(number: int, delay: float, error: BaseException) -> None:
            logger.warning(f"Reconnection attempt {number} for {endpoint.name} failed: {error}. Next attempt in {delay}s")

        try:
            await retry_async(
                attempt,
                self.reconnect_policy,
                on_retry=log_retry,
                delay_first=True,
            )
        except Exception as e:
            if endpoint is self.source:
                logger.critical(f"✗ Source reconnection failed after {max_attempts} attempts, stopping relayer")
                self.fatal_error = RelayConnectionError(
                    f"Source reconnection failed after {max_attempts} attempts: {e}"
                )
                self.stop()
            else:
                logger.error(f"✗ {endpoint.name} reconnection failed after {max_attempts} attempts: {e}")
            return False

        logger.info(f"✓ {endpoint.name} reconnected")
        if endpoint is self.source:
            self.source_ready.set()
        return True

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics(self) -> MetricsSnapshot:
        """Snapshot of relay counters derived from the record store."""
        return self.records.snapshot(self.source.disconnections + self.target.disconnections)

    def get_stats(self) -> dict[str, Any]:
        """
        Get current relayer statistics.

        Returns:
            Dictionary with the metrics snapshot, endpoint status and permanent failures
        """
        return {
            "metrics": self.get_metrics().to_dict(),
            "endpoints": [self.source.get_status(), self.target.get_status()],
            "permanent_failures": [
                record.to_dict() for record in self.records.by_outcome(RelayOutcome.PERMANENT_FAILURE)
            ],
        }

    def _log_status(self) -> None:
        metrics = self.get_metrics()
        logger.info(
            f"Status: {metrics.transactions} seen, {metrics.successful} relayed, "
            f"{metrics.failed} failed, {metrics.pending} pending, "
            f"{metrics.retries} retries, {metrics.disconnections} disconnections, "
            f"success rate {metrics.success_rate:.2f}%"
        )

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            self._log_status()
