"""
Network endpoints and the connection verification protocol.

A NetworkEndpoint wraps a chain client (real or simulated) and owns its
connection state machine:

    DISCONNECTED -> CONNECTING -> CONNECTED -> VERIFIED
                        |
                        +-> FAILED (terminal until reconnect())

A transport-level disconnect from CONNECTED or VERIFIED moves the endpoint
back to DISCONNECTED and increments its disconnection counter.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .config import VerificationConfig
from .exceptions import (
    InvalidStateTransition,
    NotConnected,
    RelayConnectionError,
    VerificationTimeout,
)
from .models import Block, ConnectionState, SubmissionRequest, Transaction, TransactionReceipt
from .retry import RetryPolicy, retry_async
from .utils.chain_client import BLOCK_EVENT, DISCONNECT_EVENT, ChainClient

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
        ConnectionState.FAILED,
    }),
    ConnectionState.CONNECTED: frozenset({ConnectionState.VERIFIED, ConnectionState.DISCONNECTED}),
    ConnectionState.VERIFIED: frozenset({ConnectionState.DISCONNECTED}),
    ConnectionState.FAILED: frozenset({ConnectionState.CONNECTING}),
}

_READY_STATES = (ConnectionState.CONNECTED, ConnectionState.VERIFIED)


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


class NetworkEndpoint:
    """Connection-state wrapper around a chain client."""

    def __init__(
        self,
        name: str,
        client: ChainClient,
        expected_chain_id: int,
        connect_policy: RetryPolicy | None = None,
    ) -> None:
        """
        Initialize the endpoint.

        Args:
            name: Label used in logs and diagnostics ("source" or "target")
            client: Chain client providing transport and RPC
            expected_chain_id: Chain ID the client must report to be verified
            connect_policy: Attempt ceiling and delay for connecting before FAILED
        """
        self.name = name
        self.client = client
        self.expected_chain_id = expected_chain_id
        self.connect_policy = connect_policy or RetryPolicy.fixed(max_attempts=3, delay=1.0)

        self.state = ConnectionState.DISCONNECTED
        self.disconnections = 0
        self.detected_chain_id: int | None = None
        self.last_block_number: int | None = None

        self._lock = asyncio.Lock()
        self._closing = False
        self._block_queue: asyncio.Queue[int] | None = None
        self._disconnect_listeners: list[Callable[["NetworkEndpoint"], None]] = []

        self.client.on(DISCONNECT_EVENT, self._on_transport_disconnect)

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}.{name}")

    def __repr__(self) -> str:
        return f"NetworkEndpoint({self.name}, state={self.state.value}, chain={self.expected_chain_id})"

    @property
    def is_verified(self) -> bool:
        return self.state is ConnectionState.VERIFIED

    @property
    def is_ready(self) -> bool:
        return self.state in _READY_STATES

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.name, self.state, new_state)
        self.logger.debug(f"{self.state.value} -> {new_state.value}")
        self.state = new_state

    # ------------------------------------------------------------------
    # Connection protocol
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Connect the underlying client.

        Raises:
            RelayConnectionError: If the endpoint is FAILED or the attempt ceiling is exceeded
        """
        async with self._lock:
            if self.is_ready:
                return
            if self.state is ConnectionState.FAILED:
                raise RelayConnectionError(f"{self.name} endpoint has failed; reconnect() is required")
            await self._connect_locked()

    async def reconnect(self, policy: RetryPolicy | None = None) -> None:
        """
        Connect again, resetting a FAILED endpoint to CONNECTING.

        Args:
            policy: Attempt ceiling for this reconnect, defaults to the connect policy
        """
        async with self._lock:
            if self.is_ready:
                return
            await self._connect_locked(policy)

    async def _connect_locked(self, policy: RetryPolicy | None = None) -> None:
        self._transition(ConnectionState.CONNECTING)
        policy = policy or self.connect_policy
        max_attempts = policy.max_attempts

        async def attempt(number: int) -> None:
            self.logger.info(f"Connecting {self.name} endpoint (attempt {number}/{max_attempts})")
            await self.client.connect()

        def log_retry(number: int, delay: float, error: BaseException) -> None:
            self.logger.warning(
                f"{self.name} connection attempt {number}/{max_attempts} failed: {error}. "
                f"Retrying in {delay}s..."
            )

        try:
            await retry_async(
                attempt,
                policy,
                retry_on=(ConnectionError, OSError),
                on_retry=log_retry,
            )
        except (ConnectionError, OSError) as e:
            self._transition(ConnectionState.FAILED)
            self.logger.error(f"{self.name} endpoint failed after {max_attempts} attempts")
            raise RelayConnectionError(f"{self.name} endpoint unreachable: {e}") from e
        except BaseException:
            self._transition(ConnectionState.DISCONNECTED)
            raise

        self._transition(ConnectionState.CONNECTED)
        self.logger.info(f"✓ Connected to {self.name} network")

    async def verify(self) -> bool:
        """
        Poll the endpoint once and mark it VERIFIED if its chain id matches.

        Issues a block-number query to confirm the transport answers, then a
        chain-id query compared against the expected chain id. Verification is
        sticky: a VERIFIED endpoint is not polled again.

        Returns:
            True if the endpoint is verified

        Raises:
            NotConnected: If the endpoint is not connected
        """
        async with self._lock:
            if self.is_verified:
                return True
            self._require_ready()

            self.last_block_number = _to_int(await self.client.request("eth_blockNumber", []))
            self.logger.info(f"{self.name} provider block number: {self.last_block_number}")

            chain_id = _to_int(await self.client.request("eth_chainId", []))
            self.detected_chain_id = chain_id
            if chain_id != self.expected_chain_id:
                self.logger.warning(
                    f"Chain ID mismatch for {self.name}. Got {chain_id}, expected {self.expected_chain_id}"
                )
                return False

            self._transition(ConnectionState.VERIFIED)
            self.logger.info(f"✓ {self.name} network verified with chainId: {chain_id}")
            return True

    async def disconnect(self) -> None:
        """Disconnect intentionally; does not count as a disconnection."""
        self._closing = True
        try:
            async with self._lock:
                await self.client.disconnect()
                if self.is_ready:
                    self._transition(ConnectionState.DISCONNECTED)
        finally:
            self._closing = False

    def add_disconnect_listener(self, listener: Callable[["NetworkEndpoint"], None]) -> None:
        self._disconnect_listeners.append(listener)

    def remove_disconnect_listener(self, listener: Callable[["NetworkEndpoint"], None]) -> None:
        if listener in self._disconnect_listeners:
            self._disconnect_listeners.remove(listener)

    def _on_transport_disconnect(self) -> None:
        if self._closing or not self.is_ready:
            return
        self._transition(ConnectionState.DISCONNECTED)
        self.disconnections += 1
        self.logger.warning(f"! Network disconnection detected for {self.name} ({self.disconnections} total)")
        for listener in list(self._disconnect_listeners):
            listener(self)

    # ------------------------------------------------------------------
    # Block subscription
    # ------------------------------------------------------------------

    def subscribe_blocks(self) -> asyncio.Queue[int]:
        """Register for block events; returns the single-consumer FIFO queue."""
        if self._block_queue is None:
            self._block_queue = asyncio.Queue()
            self.client.on(BLOCK_EVENT, self._on_block)
        return self._block_queue

    def unsubscribe_blocks(self) -> None:
        if self._block_queue is not None:
            self.client.off(BLOCK_EVENT, self._on_block)
            self._block_queue = None

    @property
    def is_subscribed(self) -> bool:
        return self._block_queue is not None

    def _on_block(self, block_number: int) -> None:
        self.last_block_number = block_number
        if self._block_queue is not None:
            self._block_queue.put_nowait(block_number)

    # ------------------------------------------------------------------
    # Operation dispatch
    # ------------------------------------------------------------------

    def _require_ready(self) -> None:
        if not self.is_ready:
            raise NotConnected(f"{self.name} endpoint is {self.state.value}")

    async def get_block_number(self) -> int:
        self._require_ready()
        return await self.client.get_block_number()

    async def get_block(self, block_number: int) -> Block | None:
        self._require_ready()
        return await self.client.get_block(block_number)

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        self._require_ready()
        return await self.client.get_transaction(tx_hash)

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        self._require_ready()
        return await self.client.get_transaction_receipt(tx_hash)

    async def send_transaction(self, request: SubmissionRequest) -> str:
        self._require_ready()
        return await self.client.send_transaction(request)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        self._require_ready()
        return await self.client.wait_for_receipt(tx_hash, timeout)

    async def estimate_gas(self, request: SubmissionRequest) -> int:
        self._require_ready()
        return await self.client.estimate_gas(request)

    async def get_gas_price(self) -> int:
        self._require_ready()
        return await self.client.get_gas_price()

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the endpoint.

        Returns:
            Dictionary with status information
        """
        return {
            "name": self.name,
            "state": self.state.value,
            "expected_chain_id": self.expected_chain_id,
            "detected_chain_id": self.detected_chain_id,
            "last_block_number": self.last_block_number,
            "disconnections": self.disconnections,
        }


class _StillUnverified(Exception):
    pass


async def _poll_endpoint(endpoint: NetworkEndpoint) -> bool:
    try:
        if endpoint.state is ConnectionState.DISCONNECTED:
            await endpoint.connect()
        return await endpoint.verify()
    except Exception as e:
        logger.info(f"{endpoint.name} network verification failed: {e}")
        return False


async def wait_for_connections(
    source: NetworkEndpoint,
    target: NetworkEndpoint,
    config: VerificationConfig | None = None,
) -> bool:
    """
    Verify both endpoints independently within an attempt ceiling and timeout.

    Each attempt polls only the endpoints that are not yet verified, so a
    quickly reachable network is not held back by a slow one.

    Returns:
        True once both endpoints are verified

    Raises:
        VerificationTimeout: If either endpoint is still unverified at the end
    """
    config = config or VerificationConfig()
    policy = RetryPolicy.fixed(max_attempts=config.max_attempts, delay=config.attempt_delay)
    attempts = 0

    logger.info("Waiting for both endpoints to connect and verify networks...")

    async def attempt(number: int) -> None:
        nonlocal attempts
        attempts = number
        logger.info(f"Verification attempt {number}/{config.max_attempts}")

        pending = [endpoint for endpoint in (source, target) if not endpoint.is_verified]
        await asyncio.gather(*(_poll_endpoint(endpoint) for endpoint in pending))

        if not (source.is_verified and target.is_verified):
            raise _StillUnverified()

    async def run() -> None:
        if config.settle_delay:
            logger.info(f"Waiting {config.settle_delay}s for providers to initialize...")
            await asyncio.sleep(config.settle_delay)
        await retry_async(attempt, policy, retry_on=(_StillUnverified,))

    try:
        await asyncio.wait_for(run(), timeout=config.timeout)
    except (_StillUnverified, asyncio.TimeoutError):
        error = VerificationTimeout(
            source_verified=source.is_verified,
            target_verified=target.is_verified,
            attempts=attempts,
            timeout=config.timeout,
        )
        logger.error(str(error))
        logger.error(f"Endpoint states: {source.get_status()} / {target.get_status()}")
        raise error from None

    logger.info("✓ Both providers connected and networks verified successfully")
    return True
