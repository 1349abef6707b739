from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from app.schemas.billing import Invoice


class ServiceError(Exception):
    """Base exception for service layer failures."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class PaymentError(ServiceError):
    """A failure the caller can render as a specific, actionable message.

    ``kind`` is a stable code returned to API clients, ``status_code`` is the
    HTTP status the routers answer with and ``transient`` tells the caller
    whether resubmitting the same transaction later may succeed.
    """

    kind = "payment_error"
    status_code = 400
    transient = False


class InvoiceNotFound(PaymentError):
    kind = "invoice_not_found"
    status_code = 404

    def __init__(self, invoice_id: str):
        super().__init__(f"Invoice {invoice_id} not found")
        self.invoice_id = invoice_id


class UnsupportedNetwork(PaymentError):
    kind = "unsupported_network"

    def __init__(self, network: str):
        super().__init__(f"Network {network!r} is not supported")
        self.network = network


class InvalidTransactionHash(PaymentError):
    kind = "invalid_tx_hash"

    def __init__(self, tx_hash: str):
        super().__init__(f"{tx_hash!r} is not a valid transaction hash")
        self.tx_hash = tx_hash


class MerchantWalletMissing(PaymentError):
    kind = "merchant_wallet_missing"

    def __init__(self, merchant_id: str):
        super().__init__(f"Merchant {merchant_id} has no wallet address configured")
        self.merchant_id = merchant_id


class InvoiceAmountTooSmall(PaymentError):
    kind = "invoice_amount_too_small"

    def __init__(self, amount: Decimal, decimals: int):
        super().__init__(
            f"Amount {amount} rounds to zero units at {decimals} decimals"
        )
        self.amount = amount
        self.decimals = decimals


class TransactionNotFound(PaymentError):
    kind = "transaction_not_found"
    status_code = 404
    transient = True

    def __init__(self, tx_hash: str):
        super().__init__(
            f"Transaction {tx_hash} was not found; it may not be mined yet"
        )
        self.tx_hash = tx_hash


class RPCError(PaymentError):
    """The chain node could not be reached or answered with an error."""

    kind = "rpc_error"
    status_code = 502
    transient = True

    def __init__(
        self,
        message: str,
        *,
        rpc_code: int | None = None,
        http_status: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.rpc_code = rpc_code
        self.http_status = http_status


class TransactionFailed(PaymentError):
    kind = "transaction_failed"
    status_code = 422

    def __init__(self, tx_hash: str):
        super().__init__(f"Transaction {tx_hash} reverted on chain")
        self.tx_hash = tx_hash


class TransferEventNotFound(PaymentError):
    kind = "transfer_event_not_found"
    status_code = 422

    def __init__(self, tx_hash: str, token_address: str):
        super().__init__(
            f"Transaction {tx_hash} contains no transfer of token {token_address}"
        )
        self.tx_hash = tx_hash
        self.token_address = token_address


class RecipientMismatch(PaymentError):
    kind = "recipient_mismatch"
    status_code = 422

    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"Payment was sent to {actual}, expected {expected}"
        )
        self.expected = expected
        self.actual = actual


class AmountMismatch(PaymentError):
    kind = "amount_mismatch"
    status_code = 422

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Payment of {actual} units is less than the {expected} units owed"
        )
        self.expected = expected
        self.actual = actual


class AlreadyPaidWithDifferentTx(PaymentError):
    kind = "already_paid_with_different_tx"
    status_code = 409

    def __init__(self, invoice_id: str, existing_tx_hash: str | None):
        super().__init__(
            f"Invoice {invoice_id} is already settled by transaction {existing_tx_hash}"
        )
        self.invoice_id = invoice_id
        self.existing_tx_hash = existing_tx_hash


class TransactionAlreadyUsed(PaymentError):
    kind = "transaction_already_used"
    status_code = 409

    def __init__(self, tx_hash: str, invoice_id: str):
        super().__init__(
            f"Transaction {tx_hash} already settled invoice {invoice_id}"
        )
        self.tx_hash = tx_hash
        self.invoice_id = invoice_id


class InvalidTransition(PaymentError):
    kind = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, event: str):
        super().__init__(f"Cannot {event} an invoice in status {current!r}")
        self.current = current
        self.event = event


class StatusConflict(ServiceError):
    """Raised by the store when a compare-and-set sees an unexpected status."""

    def __init__(self, current: "Invoice"):
        super().__init__(
            f"Invoice {current.id} is in status {current.status.value!r}"
        )
        self.current = current
