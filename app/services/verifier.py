from __future__ import annotations

import logging
from typing import Optional, Protocol

from app.config import Settings
from app.schemas.billing import Invoice
from app.schemas.chain import TransactionReceipt, VerificationResult
from app.services.exceptions import (
    AmountMismatch,
    InvoiceAmountTooSmall,
    RecipientMismatch,
    TransactionFailed,
    TransactionNotFound,
    TransferEventNotFound,
)
from app.services.networks import NetworkConfig, get_network, to_smallest_unit
from app.services.transfers import find_token_transfers

logger = logging.getLogger(__name__)


class ReceiptSource(Protocol):
    async def get_transaction_receipt(
        self, network: NetworkConfig, tx_hash: str
    ) -> Optional[TransactionReceipt]:
        ...


class PaymentVerifier:
    """Turns a claimed transaction hash into an accept/reject verdict.

    A single receipt is fetched per call. Nothing is retried or polled here;
    a ``TransactionNotFound`` is the caller's cue to try again later.
    """

    def __init__(self, rpc: ReceiptSource, *, settings: Settings | None = None) -> None:
        self._rpc = rpc
        self._settings = settings

    async def verify(self, invoice: Invoice, tx_hash: str) -> VerificationResult:
        network = get_network(invoice.network, self._settings)
        expected = to_smallest_unit(invoice.amount, network.token_decimals)
        if expected <= 0:
            raise InvoiceAmountTooSmall(invoice.amount, network.token_decimals)

        receipt = await self._rpc.get_transaction_receipt(network, tx_hash)
        if receipt is None:
            raise TransactionNotFound(tx_hash)
        if not receipt.succeeded:
            logger.info("Rejecting %s for invoice %s: transaction reverted", tx_hash, invoice.id)
            raise TransactionFailed(tx_hash)

        transfers = find_token_transfers(receipt, network.token_address)
        if not transfers:
            logger.info(
                "Rejecting %s for invoice %s: no %s transfer",
                tx_hash,
                invoice.id,
                network.token_symbol,
            )
            raise TransferEventNotFound(tx_hash, network.token_address)

        recipient = invoice.recipient_address.lower()
        to_merchant = [t for t in transfers if t.recipient == recipient]
        if not to_merchant:
            raise RecipientMismatch(invoice.recipient_address, transfers[0].recipient)

        transfer = max(to_merchant, key=lambda t: t.amount)
        if transfer.amount < expected:
            logger.info(
                "Rejecting %s for invoice %s: paid %s of %s units",
                tx_hash,
                invoice.id,
                transfer.amount,
                expected,
            )
            raise AmountMismatch(expected, transfer.amount)

        logger.info(
            "Verified %s for invoice %s in block %s (%s units)",
            tx_hash,
            invoice.id,
            receipt.block_number,
            transfer.amount,
        )
        return VerificationResult(
            tx_hash=tx_hash,
            network=network.name,
            token_address=transfer.token_address,
            sender=transfer.sender,
            recipient=transfer.recipient,
            amount=transfer.amount,
            block_number=receipt.block_number,
        )
