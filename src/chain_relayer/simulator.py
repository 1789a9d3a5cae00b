"""
Synthetic chain simulator.

An in-memory stand-in for a live network exposing the same connection,
query and RPC surface as a real chain client. It produces blocks on a timer,
fills them with synthetic transactions and can also act as a target network
that accepts, "mines" and returns receipts for submitted transactions.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any

from web3 import Web3

from .exceptions import NotConnected, RelayConnectionError, UnsupportedMethod
from .models import (
    Block,
    ConnectionState,
    SubmissionRequest,
    Transaction,
    TransactionReceipt,
    TransactionStatus,
)
from .utils.chain_client import (
    BLOCK_EVENT,
    CONNECT_EVENT,
    DISCONNECT_EVENT,
    ChainEventEmitter,
)

logger = logging.getLogger(__name__)

TEST_FROM_ADDRESS = "0x" + "1" * 40
TEST_TO_ADDRESS = "0x" + "2" * 40
ONE_ETHER = 10**18
STANDARD_GAS_LIMIT = 21_000
ONE_GWEI = 10**9


@dataclass(frozen=True, slots=True)
class SimulatorConfig:
    """Configuration for a simulated network.

    Attributes:
        chain_id: Chain ID reported over RPC
        name: Network name
        block_time: Seconds between produced blocks
        max_connect_attempts: Connect calls allowed before the simulator refuses
        detection_delay: Simulated network-detection latency on connect
        gas_price: Gas price reported to clients, in wei
        failure_rate: Probability that a submitted transaction fails on-chain
        confirmation_delay: Simulated latency before a receipt is returned
        seed: Seed for the transaction-count and failure randomness
    """
    chain_id: int = 138
    name: str = "defi-oracle-meta"
    block_time: float = 5.0
    max_connect_attempts: int = 3
    detection_delay: float = 0.1
    gas_price: int = ONE_GWEI
    failure_rate: float = 0.0
    confirmation_delay: float = 0.0
    seed: int | None = None


def block_hash_for(number: int) -> str:
    """Deterministic synthetic block hash: the hex of the decimal block number, left padded."""
    return "0x" + str(number).encode().hex().rjust(64, "0")


def _tx_hash_param(method: str, params: list[Any]) -> str:
    if not params or not params[0]:
        raise ValueError(f"{method}: missing transaction hash")
    return params[0]


def _parse_quantity(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"Invalid quantity: {value!r}")


class ChainSimulator(ChainEventEmitter):
    """In-memory fake network with block production and a minimal RPC surface."""

    def __init__(self, config: SimulatorConfig | None = None, **overrides: Any) -> None:
        super().__init__()
        if config is None:
            config = SimulatorConfig(**overrides)
        self.config = config

        self.state = ConnectionState.DISCONNECTED
        self.connection_attempts = 0

        self.block_number = 0
        self.blocks: dict[int, Block] = {0: Block(0, block_hash_for(0), int(time.time()))}
        self.transactions: dict[str, Transaction] = {}
        self.receipts: dict[str, TransactionReceipt] = {}

        self._rng = random.Random(config.seed)
        self._tx_sequence = 0
        self._account_nonce = 0
        self._production_task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"ChainSimulator(chain_id={self.config.chain_id}, state={self.state.value}, block={self.block_number})"

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_producing(self) -> bool:
        return self._production_task is not None and not self._production_task.done()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Connect to the simulated network and start block production.

        Raises:
            RelayConnectionError: If the connect attempt ceiling has been reached
        """
        if self.state is ConnectionState.CONNECTED:
            return

        if self.connection_attempts >= self.config.max_connect_attempts:
            raise RelayConnectionError(
                f"{self.config.name}: max connection attempts reached ({self.config.max_connect_attempts})"
            )
        self.connection_attempts += 1

        self.state = ConnectionState.CONNECTING
        try:
            await self._detect_network()
        except BaseException:
            self.state = ConnectionState.DISCONNECTED
            raise

        self.state = ConnectionState.CONNECTED
        self._start_block_production()
        logger.info(f"Simulated network {self.config.name} (chain {self.config.chain_id}) connected")
        self.emit(CONNECT_EVENT)

    async def _detect_network(self) -> dict[str, Any]:
        await asyncio.sleep(self.config.detection_delay)
        return {"chainId": self.config.chain_id, "name": self.config.name}

    async def disconnect(self) -> None:
        """Stop block production and disconnect. Safe to call repeatedly."""
        was_connected = self.state is ConnectionState.CONNECTED
        self._stop_block_production()
        self.state = ConnectionState.DISCONNECTED
        self.connection_attempts = 0
        if was_connected:
            logger.info(f"Simulated network {self.config.name} disconnected")
            self.emit(DISCONNECT_EVENT)

    def simulate_drop(self) -> None:
        """Simulate a transport-level connection loss (attempt counter is kept)."""
        if self.state is not ConnectionState.CONNECTED:
            return
        self._stop_block_production()
        self.state = ConnectionState.DISCONNECTED
        logger.warning(f"Simulated network {self.config.name} dropped the connection")
        self.emit(DISCONNECT_EVENT)

    def reset_attempts(self) -> None:
        self.connection_attempts = 0

    def _ensure_connected(self) -> None:
        if self.state is not ConnectionState.CONNECTED:
            raise NotConnected(f"{self.config.name}: provider not connected")

    # ------------------------------------------------------------------
    # Block production
    # ------------------------------------------------------------------

    def _start_block_production(self) -> None:
        if self.is_producing:
            return
        self._production_task = asyncio.create_task(self._produce_blocks())

    def _stop_block_production(self) -> None:
        task, self._production_task = self._production_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _produce_blocks(self) -> None:
        while self.state is ConnectionState.CONNECTED:
            await asyncio.sleep(self.config.block_time)
            if self.state is not ConnectionState.CONNECTED:
                break
            self.produce_block()

    def produce_block(self, tx_count: int | None = None) -> Block:
        """
        Produce the next block filled with synthetic transactions.

        Args:
            tx_count: Number of transactions to include (1-3 at random when omitted)

        Returns:
            The new block
        """
        self._ensure_connected()
        if tx_count is None:
            tx_count = self._rng.randint(1, 3)

        number = self.block_number + 1
        tx_hashes = tuple(self.generate_transaction(block_number=number).hash for _ in range(tx_count))
        block = Block(
            number=number,
            hash=block_hash_for(number),
            timestamp=int(time.time()),
            transactions=tx_hashes,
        )
        self.blocks[number] = block
        self.block_number = number

        logger.debug(f"Produced {block}")
        self.emit(BLOCK_EVENT, number)
        return block

    def generate_transaction(self, block_number: int | None = None) -> Transaction:
        """Synthesize a confirmed test transaction."""
        tx = Transaction(
            hash=self._next_hash(),
            from_address=TEST_FROM_ADDRESS,
            to_address=TEST_TO_ADDRESS,
            value=ONE_ETHER,
            gas_limit=STANDARD_GAS_LIMIT,
            gas_price=ONE_GWEI,
            nonce=len(self.transactions),
            data=b"",
            chain_id=self.config.chain_id,
            block_number=self.block_number if block_number is None else block_number,
            status=TransactionStatus.CONFIRMED,
        )
        self.transactions[tx.hash] = tx
        return tx

    def _next_hash(self) -> str:
        # Nanosecond timestamp plus a sequence number keeps hashes unique per run
        self._tx_sequence += 1
        seed = f"{self.config.chain_id}-{time.time_ns()}-{self._tx_sequence}"
        return Web3.to_hex(Web3.keccak(text=seed))

    # ------------------------------------------------------------------
    # RPC dispatch
    # ------------------------------------------------------------------

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Dispatch a JSON-RPC style request.

        Raises:
            NotConnected: If the simulator is not connected
            UnsupportedMethod: If the method is not implemented
            ValueError: If a method taking a transaction hash is called without one
        """
        self._ensure_connected()
        params = params or []

        match method:
            case "eth_chainId":
                return hex(self.config.chain_id)
            case "net_version":
                return str(self.config.chain_id)
            case "eth_blockNumber":
                return hex(self.block_number)
            case "eth_getBlockByNumber":
                block = self._lookup_block(params[0] if params else "latest")
                return self._block_to_dict(block) if block else None
            case "eth_getTransactionByHash":
                tx = self.transactions.get(_tx_hash_param(method, params))
                return tx.to_dict() if tx else None
            case "eth_getTransactionReceipt":
                receipt = self._receipt_for(_tx_hash_param(method, params))
                return receipt.to_dict() if receipt else None
            case "eth_gasPrice":
                return hex(self.config.gas_price)
            case "eth_estimateGas":
                data = (params[0] if params else {}).get("data", "0x")
                return hex(self._estimate(Web3.to_bytes(hexstr=data)))
            case "net_listening":
                return True
            case "eth_syncing":
                return False
            case _:
                raise UnsupportedMethod(method)

    def _lookup_block(self, tag: Any) -> Block | None:
        match tag:
            case "latest" | "pending" | "safe" | "finalized":
                number = self.block_number
            case "earliest":
                number = 0
            case _:
                number = _parse_quantity(tag)
        return self.blocks.get(number)

    @staticmethod
    def _block_to_dict(block: Block) -> dict[str, Any]:
        return {
            "number": hex(block.number),
            "hash": block.hash,
            "timestamp": hex(block.timestamp),
            "transactions": list(block.transactions),
        }

    def _receipt_for(self, tx_hash: str) -> TransactionReceipt | None:
        if receipt := self.receipts.get(tx_hash):
            return receipt
        tx = self.transactions.get(tx_hash)
        if tx is None or tx.status is TransactionStatus.PENDING:
            return None
        return TransactionReceipt(
            transaction_hash=tx.hash,
            status=1 if tx.status is TransactionStatus.CONFIRMED else 0,
            block_number=tx.block_number or 0,
            gas_used=STANDARD_GAS_LIMIT,
            effective_gas_price=tx.gas_price,
        )

    # ------------------------------------------------------------------
    # Typed client surface
    # ------------------------------------------------------------------

    async def get_chain_id(self) -> int:
        return int(await self.request("eth_chainId"), 16)

    async def get_block_number(self) -> int:
        return int(await self.request("eth_blockNumber"), 16)

    async def get_block(self, block_number: int) -> Block | None:
        self._ensure_connected()
        return self.blocks.get(block_number)

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        self._ensure_connected()
        return self.transactions.get(tx_hash)

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        self._ensure_connected()
        return self._receipt_for(tx_hash)

    async def get_gas_price(self) -> int:
        return int(await self.request("eth_gasPrice"), 16)

    async def estimate_gas(self, request: SubmissionRequest) -> int:
        self._ensure_connected()
        return self._estimate(request.data)

    @staticmethod
    def _estimate(data: bytes) -> int:
        return STANDARD_GAS_LIMIT + 16 * len(data)

    async def send_transaction(self, request: SubmissionRequest) -> str:
        """
        Accept a transaction, assign the nonce and settle it in the current block.

        Returns:
            Hash of the accepted transaction
        """
        self._ensure_connected()

        tx = Transaction(
            hash=self._next_hash(),
            from_address=TEST_FROM_ADDRESS,
            to_address=request.to,
            value=request.value,
            gas_limit=request.gas_limit or self._estimate(request.data),
            gas_price=request.gas_price or self.config.gas_price,
            nonce=self._account_nonce,
            data=request.data,
            chain_id=self.config.chain_id,
        )
        self._account_nonce += 1
        self.transactions[tx.hash] = tx

        failed = self._rng.random() < self.config.failure_rate
        tx.settle(TransactionStatus.FAILED if failed else TransactionStatus.CONFIRMED, self.block_number)
        self.receipts[tx.hash] = TransactionReceipt(
            transaction_hash=tx.hash,
            status=0 if failed else 1,
            block_number=self.block_number,
            gas_used=min(tx.gas_limit, self._estimate(request.data)),
            effective_gas_price=tx.gas_price,
        )
        logger.debug(f"Accepted transaction {tx.hash[:10]}... (nonce {tx.nonce}, failed={failed})")
        return tx.hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        """
        Wait for the receipt of a submitted transaction.

        Raises:
            TimeoutError: If no receipt is available within the timeout
        """
        self._ensure_connected()
        if self.config.confirmation_delay:
            await asyncio.sleep(min(self.config.confirmation_delay, timeout))
            if self.config.confirmation_delay > timeout:
                raise TimeoutError(f"Transaction {tx_hash} not confirmed within {timeout}s")

        receipt = self._receipt_for(tx_hash)
        if receipt is None:
            raise TimeoutError(f"Transaction {tx_hash} not found within {timeout}s")
        return receipt
