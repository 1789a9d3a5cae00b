"""Transaction submission to the target chain.

This module projects a source chain transaction onto the target chain,
resolves gas parameters against the configured ceiling, submits it and waits
for a single confirmation.
"""

import logging
import math
from typing import TYPE_CHECKING

from .config import RelayPolicyConfig
from .exceptions import GasCeilingExceeded, TransactionFailure
from .models import SubmissionRequest, Transaction, TransactionReceipt

if TYPE_CHECKING:
    from .endpoint import NetworkEndpoint

logger = logging.getLogger(__name__)

FALLBACK_GAS_LIMIT = 500_000


class TransactionSubmitter:
    """Handles submission of relayed transactions to the target endpoint."""

    def __init__(self, target: "NetworkEndpoint", policy: RelayPolicyConfig) -> None:
        """
        Initialize the TransactionSubmitter.

        Args:
            target: Endpoint of the target chain
            policy: Relay policy providing the gas ceiling, buffer and confirmation timeout
        """
        self.target = target
        self.policy = policy

    async def resolve_gas_limit(self, request: SubmissionRequest) -> int:
        """Use the source gas limit, else a buffered estimate, else a fixed fallback."""
        if request.gas_limit:
            return request.gas_limit
        try:
            estimate = await self.target.estimate_gas(request)
        except Exception as e:
            logger.warning(f"Gas estimation failed, using fallback of {FALLBACK_GAS_LIMIT}: {e}")
            return FALLBACK_GAS_LIMIT
        return math.ceil(estimate * self.policy.gas_price_buffer)

    async def resolve_gas_price(self) -> int:
        """
        Fetch the current target gas price and enforce the ceiling.

        Raises:
            GasCeilingExceeded: If the price is above the configured maximum
        """
        gas_price = await self.target.get_gas_price()
        ceiling = self.policy.max_gas_price_wei
        if gas_price > ceiling:
            raise GasCeilingExceeded(gas_price, ceiling)
        return gas_price

    async def submit(self, tx: Transaction) -> tuple[str, TransactionReceipt]:
        """
        Submit a source transaction to the target chain and wait for one confirmation.

        The gas price check happens before anything is sent, so a rejection
        never leaves a transaction behind on the target chain.

        Args:
            tx: Transaction observed on the source chain

        Returns:
            Tuple of (target transaction hash, receipt)

        Raises:
            GasCeilingExceeded: If the target gas price is above the ceiling
            TransactionFailure: If the receipt reports a failed transaction
            TimeoutError: If no confirmation arrives within the timeout
        """
        projected = SubmissionRequest.from_transaction(tx)
        gas_price = await self.resolve_gas_price()
        gas_limit = await self.resolve_gas_limit(projected)

        request = SubmissionRequest(
            to=projected.to,
            value=projected.value,
            data=projected.data,
            gas_limit=gas_limit,
            gas_price=gas_price,
        )
        logger.debug(f"Submitting {tx.hash[:10]}... with gas={gas_limit} gasPrice={gas_price}")

        tx_hash = await self.target.send_transaction(request)
        logger.info(f"Transaction submitted: {tx_hash}")

        receipt = await self.target.wait_for_receipt(tx_hash, timeout=self.policy.confirmation_timeout)
        if not receipt.succeeded:
            raise TransactionFailure(receipt)

        logger.info(f"✓ Transaction confirmed in block {receipt.block_number}")
        return tx_hash, receipt
