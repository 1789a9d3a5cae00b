"""
Chain client capability consumed by the network endpoints.

Any implementation satisfying :class:`ChainClient`, real or simulated, can
back a :class:`~chain_relayer.endpoint.NetworkEndpoint`.
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from ..models import Block, SubmissionRequest, Transaction, TransactionReceipt

logger = logging.getLogger(__name__)

BLOCK_EVENT = "block"
CONNECT_EVENT = "connect"
DISCONNECT_EVENT = "disconnect"


class ChainEventEmitter:
    """Minimal synchronous publish/subscribe helper for client events."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[..., Any]]] = {}

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> None:
        # Copy so handlers may deregister themselves while being called
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Error in {event} handler: {e}", exc_info=True)


@runtime_checkable
class ChainClient(Protocol):
    """Capabilities the relayer needs from a network client."""

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    def off(self, event: str, handler: Callable[..., Any]) -> None: ...

    async def request(self, method: str, params: list[Any] | None = None) -> Any: ...

    async def get_chain_id(self) -> int: ...

    async def get_block_number(self) -> int: ...

    async def get_block(self, block_number: int) -> Block | None: ...

    async def get_transaction(self, tx_hash: str) -> Transaction | None: ...

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None: ...

    async def send_transaction(self, request: SubmissionRequest) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TransactionReceipt: ...

    async def estimate_gas(self, request: SubmissionRequest) -> int: ...

    async def get_gas_price(self) -> int: ...
