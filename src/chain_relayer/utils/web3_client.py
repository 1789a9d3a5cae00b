"""
Web3-backed chain client for live networks.

Wraps an AsyncWeb3 instance (HTTP or WebSocket provider), signs outgoing
transactions with a local account and turns block-number polling into
``block`` events. A failed poll is treated as a transport-level disconnect.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import BlockNotFound, TimeExhausted, TransactionNotFound
from web3.middleware import SignAndSendRawMiddlewareBuilder
from web3.providers import WebSocketProvider

from ..exceptions import NotConnected, RelayConnectionError, RelayError
from ..models import (
    Block,
    ConnectionState,
    SubmissionRequest,
    Transaction,
    TransactionReceipt,
    TransactionStatus,
)
from .chain_client import BLOCK_EVENT, CONNECT_EVENT, DISCONNECT_EVENT, ChainEventEmitter


class Web3ChainClient(ChainEventEmitter):
    """
    Chain client for a real network.

    Can be used in two modes:
    1. Signing mode: Initialize with a private key to send transactions
    2. Read-only mode: Initialize without a key for observing a source chain
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str = "",
        poll_interval: float = 2.0,
        request_timeout: float = 30.0,
    ) -> None:
        """
        Initialize the Web3ChainClient.

        Args:
            rpc_url: RPC URL for the network (http(s) or ws(s))
            private_key: Private key for signing transactions (optional)
            poll_interval: Seconds between block number polls
            request_timeout: HTTP request timeout in seconds
        """
        super().__init__()
        if not rpc_url:
            raise ValueError("RPC URL is required")

        self.rpc_url = rpc_url
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.account: LocalAccount | None = Account.from_key(private_key) if private_key else None

        self.w3: AsyncWeb3 | None = None
        self.state = ConnectionState.DISCONNECTED
        self.last_block_number: int | None = None
        self._poll_task: asyncio.Task | None = None

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def is_websocket(self) -> bool:
        return self.rpc_url.startswith(("ws://", "wss://"))

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def _build_web3(self) -> AsyncWeb3:
        if self.is_websocket:
            return AsyncWeb3(WebSocketProvider(self.rpc_url, request_timeout=self.request_timeout))
        return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            self.rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.request_timeout)},
        ))

    def _add_signing_middleware(self, w3: AsyncWeb3) -> None:
        if self.account is None:
            return
        w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(self.account))
        w3.eth.default_account = self.account.address

    async def connect(self) -> None:
        """
        Connect to the RPC endpoint and start polling for new blocks.

        Raises:
            RelayConnectionError: If the endpoint cannot be reached
        """
        if self.is_connected:
            return

        self.state = ConnectionState.CONNECTING
        self.logger.info(f"Connecting to {self.rpc_url}")
        try:
            w3 = self._build_web3()
            if self.is_websocket:
                await w3.provider.connect()
            if not await w3.is_connected():
                raise RelayConnectionError(f"Failed to connect to {self.rpc_url}")
            self._add_signing_middleware(w3)
            current = await w3.eth.block_number
            # On reconnect, polling resumes after the last block already emitted
            if self.last_block_number is None:
                self.last_block_number = current
        except RelayConnectionError:
            self.state = ConnectionState.DISCONNECTED
            raise
        except Exception as e:
            self.state = ConnectionState.DISCONNECTED
            raise RelayConnectionError(f"Failed to connect to {self.rpc_url}: {e}") from e

        self.w3 = w3
        self.state = ConnectionState.CONNECTED
        self._poll_task = asyncio.create_task(self._poll_blocks())
        self.logger.info(f"Connected to {self.rpc_url} at block {self.last_block_number}")
        self.emit(CONNECT_EVENT)

    async def disconnect(self) -> None:
        """Stop polling and close the provider. Safe to call repeatedly."""
        was_connected = self.is_connected
        self._stop_polling()
        w3, self.w3 = self.w3, None
        self.state = ConnectionState.DISCONNECTED

        if w3 is not None and self.is_websocket:
            try:
                await w3.provider.disconnect()
            except Exception as e:
                self.logger.warning(f"Error during provider cleanup: {e}")

        if was_connected:
            self.emit(DISCONNECT_EVENT)

    def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _poll_blocks(self) -> None:
        """Emit a block event for every new block number observed."""
        while self.is_connected and self.w3 is not None:
            await asyncio.sleep(self.poll_interval)
            try:
                current = await self.w3.eth.block_number
            except Exception as e:
                self.logger.error(f"Lost connection to {self.rpc_url}: {e}")
                self._handle_transport_loss()
                return

            last = self.last_block_number if self.last_block_number is not None else current - 1
            for number in range(last + 1, current + 1):
                self.emit(BLOCK_EVENT, number)
            self.last_block_number = max(last, current)

    def _handle_transport_loss(self) -> None:
        self._poll_task = None
        self.w3 = None
        self.state = ConnectionState.DISCONNECTED
        self.emit(DISCONNECT_EVENT)

    def _require_w3(self) -> AsyncWeb3:
        if not self.is_connected or self.w3 is None:
            raise NotConnected(f"Provider not connected: {self.rpc_url}")
        return self.w3

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        w3 = self._require_w3()
        response = await w3.provider.make_request(method, params or [])
        if error := response.get("error"):
            raise RelayError(f"RPC {method} failed: {error}")
        return response.get("result")

    async def get_chain_id(self) -> int:
        return await self._require_w3().eth.chain_id

    async def get_block_number(self) -> int:
        return await self._require_w3().eth.block_number

    async def get_block(self, block_number: int) -> Block | None:
        try:
            data = await self._require_w3().eth.get_block(block_number)
        except BlockNotFound:
            return None
        return Block(
            number=data["number"],
            hash=_hex(data["hash"]),
            timestamp=data["timestamp"],
            transactions=tuple(_hex(tx) for tx in data["transactions"]),
        )

    async def get_transaction(self, tx_hash: str) -> Transaction | None:
        try:
            data = await self._require_w3().eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        return transaction_from_web3(data)

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        try:
            data = await self._require_w3().eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return receipt_from_web3(data)

    def _tx_params(self, request: SubmissionRequest) -> dict[str, Any]:
        params = dict(request.to_tx_params())
        if self.account is not None:
            params["from"] = self.account.address
        return params

    async def send_transaction(self, request: SubmissionRequest) -> str:
        """Sign (nonce assigned by the middleware) and broadcast a transaction."""
        if self.account is None:
            raise RelayError("No private key configured, cannot send transactions")
        tx_hash = await self._require_w3().eth.send_transaction(self._tx_params(request))
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        try:
            data = await self._require_w3().eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise TimeoutError(f"Transaction {tx_hash} not confirmed within {timeout}s") from e
        return receipt_from_web3(data)

    async def estimate_gas(self, request: SubmissionRequest) -> int:
        return await self._require_w3().eth.estimate_gas(self._tx_params(request))

    async def get_gas_price(self) -> int:
        return await self._require_w3().eth.gas_price


def _hex(value: Any) -> str:
    return value if isinstance(value, str) else Web3.to_hex(value)


def transaction_from_web3(data: Mapping[str, Any]) -> Transaction:
    """Convert web3 TxData into a Transaction."""
    block_number = data.get("blockNumber")
    match data.get("input") or b"":
        case str() as hex_input:
            tx_input = Web3.to_bytes(hexstr=hex_input)
        case raw_input:
            tx_input = bytes(raw_input)
    return Transaction(
        hash=_hex(data["hash"]),
        from_address=data["from"],
        to_address=data.get("to"),
        value=data.get("value", 0),
        gas_limit=data.get("gas", 0),
        gas_price=data.get("gasPrice") or data.get("maxFeePerGas") or 0,
        nonce=data.get("nonce", 0),
        data=tx_input,
        chain_id=data.get("chainId"),
        block_number=block_number,
        status=TransactionStatus.PENDING if block_number is None else TransactionStatus.CONFIRMED,
    )


def receipt_from_web3(data: Mapping[str, Any]) -> TransactionReceipt:
    """Convert a web3 TxReceipt into a TransactionReceipt."""
    return TransactionReceipt(
        transaction_hash=_hex(data["transactionHash"]),
        status=data.get("status", 0),
        block_number=data.get("blockNumber", 0),
        gas_used=data.get("gasUsed", 0),
        effective_gas_price=data.get("effectiveGasPrice", 0),
    )
