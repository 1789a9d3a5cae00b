"""
Shared data models for the chain relayer.

This module contains the data classes and enums used across the simulator,
the network endpoints and the relay orchestrator.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from web3 import Web3
from web3.types import TxParams, Wei


class ConnectionState(Enum):
    """Connection state of a network endpoint or chain client."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    VERIFIED = "verified"
    FAILED = "failed"


class TransactionStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class RelayOutcome(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    PERMANENT_FAILURE = "permanentFailure"


@dataclass(frozen=True, slots=True)
class Block:
    """A block as seen by the relayer.

    Attributes:
        number: Block number, strictly increasing by one per produced block
        hash: Block hash (with 0x prefix)
        timestamp: Unix timestamp in seconds
        transactions: Transaction hashes in block order
    """
    number: int
    hash: str
    timestamp: int
    transactions: tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"Block(number={self.number}, hash={self.hash[:10]}..., txs={len(self.transactions)})"


@dataclass(slots=True)
class Transaction:
    """A transaction on either chain.

    Everything except ``status`` and ``block_number`` is fixed at creation.
    Those two move out of ``PENDING`` exactly once through :meth:`settle`.
    """
    hash: str
    from_address: str
    to_address: str | None
    value: int
    gas_limit: int
    gas_price: int
    nonce: int
    data: bytes = b""
    chain_id: int | None = None
    block_number: int | None = None
    status: TransactionStatus = TransactionStatus.PENDING

    def settle(self, status: TransactionStatus, block_number: int) -> None:
        """Move a pending transaction to confirmed or failed."""
        if self.status is not TransactionStatus.PENDING:
            raise ValueError(f"Transaction {self.hash} already settled as {self.status.value}")
        if status is TransactionStatus.PENDING:
            raise ValueError("Cannot settle a transaction back to pending")
        self.status = status
        self.block_number = block_number

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-RPC style dictionary (quantities hex encoded)."""
        return {
            "hash": self.hash,
            "from": self.from_address,
            "to": self.to_address,
            "value": hex(self.value),
            "gas": hex(self.gas_limit),
            "gasPrice": hex(self.gas_price),
            "nonce": hex(self.nonce),
            "input": Web3.to_hex(self.data),
            "chainId": hex(self.chain_id) if self.chain_id is not None else None,
            "blockNumber": hex(self.block_number) if self.block_number is not None else None,
        }


@dataclass(frozen=True, slots=True)
class TransactionReceipt:
    """Receipt of a mined transaction.

    Attributes:
        transaction_hash: Hash of the transaction (with 0x prefix)
        status: 1 for success, 0 for failure
        block_number: Block the transaction was included in
        gas_used: Gas consumed by the transaction
        effective_gas_price: Price actually paid per unit of gas
    """
    transaction_hash: str
    status: int
    block_number: int
    gas_used: int
    effective_gas_price: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactionHash": self.transaction_hash,
            "status": hex(self.status),
            "blockNumber": hex(self.block_number),
            "gasUsed": hex(self.gas_used),
            "effectiveGasPrice": hex(self.effective_gas_price),
        }


@dataclass(frozen=True, slots=True)
class SubmissionRequest:
    """A source transaction projected onto the target chain.

    Nonce and chain id are intentionally absent: the target client assigns
    the nonce and signs for its own chain.
    """
    to: str | None
    value: int
    data: bytes = b""
    gas_limit: int | None = None
    gas_price: int | None = None

    @classmethod
    def from_transaction(cls, tx: Transaction) -> "SubmissionRequest":
        return cls(
            to=tx.to_address,
            value=tx.value,
            data=tx.data,
            gas_limit=tx.gas_limit or None,
            gas_price=tx.gas_price or None,
        )

    def to_tx_params(self) -> TxParams:
        """Build web3 transaction parameters."""
        params: TxParams = {
            "value": Wei(self.value),
            "data": Web3.to_hex(self.data),
        }
        if self.to:
            params["to"] = Web3.to_checksum_address(self.to)
        if self.gas_limit is not None:
            params["gas"] = self.gas_limit
        if self.gas_price is not None:
            params["gasPrice"] = Wei(self.gas_price)
        return params


@dataclass(slots=True)
class RelayRecord:
    """Ledger entry tracking the relay of one source transaction.

    Attributes:
        source_hash: Hash of the transaction on the source chain (unique key)
        target_hash: Hash of the latest submission on the target chain
        attempts: Number of relay attempts made so far
        outcome: Current outcome of the relay
        gas_used: Gas used by the successful target transaction
        error: Description of the last error, if any
        explorer_urls: Verification links for the successful target transaction
        first_seen_at: Unix time the source transaction was first seen
        updated_at: Unix time of the last change
        completed_at: Unix time the outcome left pending
    """
    source_hash: str
    target_hash: str | None = None
    attempts: int = 0
    outcome: RelayOutcome = RelayOutcome.PENDING
    gas_used: int | None = None
    error: str | None = None
    explorer_urls: dict[str, str] = field(default_factory=dict)
    first_seen_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    completed_at: float | None = None

    @property
    def is_final(self) -> bool:
        return self.outcome is not RelayOutcome.PENDING

    @property
    def retried(self) -> bool:
        return self.attempts > 1

    def begin_attempt(self) -> int:
        """Count a new attempt and return its number."""
        self.attempts += 1
        self.updated_at = time.time()
        return self.attempts

    def mark_success(self, target_hash: str, gas_used: int, explorer_urls: dict[str, str]) -> None:
        self.target_hash = target_hash
        self.gas_used = gas_used
        self.explorer_urls = dict(explorer_urls)
        self.error = None
        self._finish(RelayOutcome.SUCCESS)

    def mark_failed_attempt(self, error: str, target_hash: str | None = None) -> None:
        """Record a failed attempt without making it final."""
        if target_hash:
            self.target_hash = target_hash
        self.error = error
        self.updated_at = time.time()

    def mark_permanent_failure(self, error: str) -> None:
        self.error = error
        self._finish(RelayOutcome.PERMANENT_FAILURE)

    def _finish(self, outcome: RelayOutcome) -> None:
        self.outcome = outcome
        self.updated_at = self.completed_at = time.time()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "source_hash": self.source_hash,
            "target_hash": self.target_hash,
            "attempts": self.attempts,
            "outcome": self.outcome.value,
            "gas_used": self.gas_used,
            "error": self.error,
            "explorer_urls": self.explorer_urls,
            "first_seen_at": self.first_seen_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """Read-only aggregate over all relay records, recomputed on demand."""
    transactions: int
    successful: int
    failed: int
    pending: int
    retries: int
    retried_successes: int
    disconnections: int
    retried_records: int = 0

    @property
    def success_rate(self) -> float:
        """Share of seen transactions that were relayed successfully (0-100)."""
        if not self.transactions:
            return 0.0
        return self.successful / self.transactions * 100

    @property
    def retry_success_rate(self) -> float | None:
        """Share of retried transactions that eventually succeeded (0-100).

        ``None`` when no transaction needed a retry.
        """
        retried = self.retried_records
        if not retried:
            return None
        return self.retried_successes / retried * 100

    def to_dict(self) -> dict[str, Any]:
        retry_rate = self.retry_success_rate
        return {
            "transactions": self.transactions,
            "successful": self.successful,
            "failed": self.failed,
            "pending": self.pending,
            "retries": self.retries,
            "retried_successes": self.retried_successes,
            "disconnections": self.disconnections,
            "success_rate": f"{self.success_rate:.2f}%",
            "retry_success_rate": "N/A" if retry_rate is None else f"{retry_rate:.2f}%",
        }
