"""
Error taxonomy for the chain relayer.

Connection and verification errors are fatal once their retry budget is
spent; simulator sequencing errors surface immediately; gas ceiling
rejections and failed receipts are recorded per transaction.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ConnectionState, TransactionReceipt


class RelayError(Exception):
    """Base class for all relayer errors."""


class RelayConnectionError(RelayError, ConnectionError):
    """An endpoint could not be reached."""


class VerificationTimeout(RelayError):
    """Chain identity of one or both endpoints could not be confirmed in time."""

    def __init__(self, source_verified: bool, target_verified: bool, attempts: int, timeout: float) -> None:
        self.source_verified = source_verified
        self.target_verified = target_verified
        self.attempts = attempts
        self.timeout = timeout
        super().__init__(
            f"Connection verification failed after {attempts} attempts ({timeout}s timeout). "
            f"Unverified: {', '.join(self.unverified)}"
        )

    @property
    def unverified(self) -> list[str]:
        sides = []
        if not self.source_verified:
            sides.append("source")
        if not self.target_verified:
            sides.append("target")
        return sides


class UnsupportedMethod(RelayError):
    """RPC method is not implemented by the chain simulator."""

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(f"Method {method} not implemented")


class NotConnected(RelayError):
    """Operation dispatched while the client or endpoint is not connected."""


class InvalidStateTransition(RelayError):
    """Endpoint state machine was asked for a transition it does not allow."""

    def __init__(self, name: str, current: "ConnectionState", requested: "ConnectionState") -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"{name}: cannot transition from {current.value} to {requested.value}")


class GasCeilingExceeded(RelayError):
    """Target gas price is above the configured ceiling. Never retried."""

    def __init__(self, gas_price: int, ceiling: int) -> None:
        self.gas_price = gas_price
        self.ceiling = ceiling
        super().__init__(f"Gas price {gas_price} wei exceeds maximum allowed {ceiling} wei")


class TransactionFailure(RelayError):
    """The target chain receipt reports a failed transaction."""

    def __init__(self, receipt: "TransactionReceipt") -> None:
        self.receipt = receipt
        super().__init__(
            f"Transaction {receipt.transaction_hash} failed on-chain with status={receipt.status}"
        )
