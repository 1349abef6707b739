from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from app.config import Settings, get_settings
from app.schemas.billing import (
    Invoice,
    InvoiceListResponse,
    InvoiceRequest,
    InvoiceResponse,
    InvoiceStatus,
    InvoiceSummary,
    PaymentSubmitResponse,
    PublicInvoiceView,
)
from app.services.exceptions import (
    AlreadyPaidWithDifferentTx,
    InvalidTransactionHash,
    InvalidTransition,
    InvoiceNotFound,
    MerchantWalletMissing,
    StatusConflict,
)
from app.services.lifecycle import (
    PAY,
    SEND,
    VIEW,
    effective_status,
    ensure_transition,
    sources_for,
)
from app.services.networks import get_network, is_address, normalize_tx_hash, to_smallest_unit
from app.services.notifier import LoggingNotifier, PaymentNotification, PaymentNotifier
from app.services.store import InvoiceStore, get_store
from app.services.verifier import PaymentVerifier

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceService:
    def __init__(
        self,
        verifier: PaymentVerifier,
        *,
        store: InvoiceStore | None = None,
        notifier: PaymentNotifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._verifier = verifier
        self._store = store or get_store()
        self._notifier = notifier or LoggingNotifier()
        self._settings = settings or get_settings()

    async def create(self, merchant_id: str, request: InvoiceRequest) -> Invoice:
        network = get_network(request.network)
        merchant = await self._store.merchants.get(merchant_id)
        wallet = merchant.wallet_address if merchant else None
        if not is_address(wallet):
            raise MerchantWalletMissing(merchant_id)

        now = _utc_now()
        invoices = self._store.invoices
        invoice = Invoice(
            id=invoices.next_id(),
            merchant_id=merchant_id,
            invoice_number=invoices.next_number(merchant_id),
            client_email=request.client_email,
            client_name=request.client_name,
            description=request.description,
            items=request.items,
            amount=request.total,
            network=network.name,
            recipient_address=wallet,
            status=InvoiceStatus(request.status),
            issued_at=now,
            due_at=now + timedelta(days=request.due_days),
            created_at=now,
            updated_at=now,
        )
        logger.info(
            "Creating invoice %s for merchant %s: %s USD on %s",
            invoice.invoice_number,
            merchant_id,
            invoice.amount,
            network.name,
        )
        return await invoices.create(invoice)

    async def get(self, invoice_id: str) -> Invoice:
        invoice = await self._store.invoices.get(invoice_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice

    async def get_for_merchant(self, merchant_id: str, invoice_id: str) -> Invoice:
        invoice = await self.get(invoice_id)
        if invoice.merchant_id != merchant_id:
            # Other merchants' invoices are indistinguishable from missing ones.
            raise InvoiceNotFound(invoice_id)
        return invoice

    async def list(
        self,
        merchant_id: str,
        *,
        status: Optional[InvoiceStatus] = None,
        limit: int = 50,
    ) -> List[Invoice]:
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        rows = await self._store.invoices.list(merchant_id)
        if status is not None:
            now = _utc_now()
            rows = [row for row in rows if effective_status(row, now) is status]
        return rows[:limit]

    async def send(self, merchant_id: str, invoice_id: str) -> Invoice:
        invoice = await self.get_for_merchant(merchant_id, invoice_id)
        target = ensure_transition(invoice.status, SEND)
        try:
            updated = await self._store.invoices.update_status(
                invoice_id, target, expected=sources_for(SEND)
            )
        except StatusConflict as exc:
            raise InvalidTransition(exc.current.status.value, SEND) from exc
        if updated is None:
            raise InvoiceNotFound(invoice_id)
        return updated

    async def record_view(self, invoice_id: str) -> Invoice:
        """Move a freshly sent invoice to ``viewed``; repeat views change nothing."""

        invoice = await self.get(invoice_id)
        target = ensure_transition(invoice.status, VIEW)
        if target is invoice.status:
            return invoice
        try:
            updated = await self._store.invoices.update_status(
                invoice_id, target, expected={InvoiceStatus.SENT}
            )
        except StatusConflict as exc:
            # Lost a race with another view or a payment.
            ensure_transition(exc.current.status, VIEW)
            return exc.current
        if updated is None:
            raise InvoiceNotFound(invoice_id)
        return updated

    async def mark_paid(self, invoice_id: str, tx_hash: str, verified_amount: int) -> Invoice:
        invoice, _ = await self._settle(invoice_id, tx_hash, verified_amount)
        return invoice

    async def _settle(
        self, invoice_id: str, tx_hash: str, verified_amount: int
    ) -> Tuple[Invoice, bool]:
        tx_hash = self._require_tx_hash(tx_hash)
        invoice = await self.get(invoice_id)
        if invoice.status is InvoiceStatus.PAID:
            return self._replay(invoice, tx_hash), False
        ensure_transition(invoice.status, PAY)

        try:
            updated = await self._store.invoices.update_status(
                invoice_id,
                InvoiceStatus.PAID,
                expected=sources_for(PAY),
                tx_hash=tx_hash,
                paid_amount=verified_amount,
                paid_at=_utc_now(),
            )
        except StatusConflict as exc:
            current = exc.current
            if current.status is InvoiceStatus.PAID:
                return self._replay(current, tx_hash), False
            raise InvalidTransition(current.status.value, PAY) from exc
        if updated is None:
            raise InvoiceNotFound(invoice_id)
        logger.info("Invoice %s marked paid by %s", invoice_id, tx_hash)
        return updated, True

    def _replay(self, invoice: Invoice, tx_hash: str) -> Invoice:
        if invoice.tx_hash == tx_hash:
            return invoice
        logger.warning(
            "Conflicting settlement for invoice %s: stored %s, submitted %s",
            invoice.id,
            invoice.tx_hash,
            tx_hash,
        )
        raise AlreadyPaidWithDifferentTx(invoice.id, invoice.tx_hash)

    @staticmethod
    def _require_tx_hash(tx_hash: str) -> str:
        normalized = normalize_tx_hash(tx_hash)
        if normalized is None:
            raise InvalidTransactionHash(tx_hash)
        return normalized

    async def submit_payment(self, invoice_id: str, tx_hash: str) -> Invoice:
        """Verify ``tx_hash`` on chain and settle the invoice with it."""

        tx_hash = self._require_tx_hash(tx_hash)
        invoice = await self.get(invoice_id)
        if invoice.status is InvoiceStatus.PAID:
            return self._replay(invoice, tx_hash)
        ensure_transition(invoice.status, PAY)

        result = await self._verifier.verify(invoice, tx_hash)
        settled, fresh = await self._settle(invoice_id, tx_hash, result.amount)
        if fresh:
            await self._notify(settled)
        return settled

    async def _notify(self, invoice: Invoice) -> None:
        notification = PaymentNotification(
            invoice_id=invoice.id,
            merchant_id=invoice.merchant_id,
            tx_hash=invoice.tx_hash,
            amount=invoice.paid_amount,
            network=invoice.network,
            paid_at=invoice.paid_at,
        )
        try:
            await self._notifier.notify_paid(notification)
        except Exception:
            # The payment is settled; a failed notification must not undo it.
            logger.exception("Failed to send payment notification for invoice %s", invoice.id)

    def payment_url(self, invoice: Invoice) -> str:
        return f"{self._settings.app_url.rstrip('/')}/invoice/{invoice.id}"

    def to_response(self, invoice: Invoice) -> InvoiceResponse:
        return InvoiceResponse(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            client_email=invoice.client_email,
            client_name=invoice.client_name,
            description=invoice.description,
            items=invoice.items,
            amount=invoice.amount,
            network=invoice.network,
            recipient_address=invoice.recipient_address,
            status=effective_status(invoice),
            payment_url=self.payment_url(invoice),
            tx_hash=invoice.tx_hash,
            paid_at=invoice.paid_at,
            issue_date=invoice.issued_at,
            due_date=invoice.due_at,
            created_at=invoice.created_at,
        )

    def to_list_response(self, invoices: List[Invoice]) -> InvoiceListResponse:
        now = _utc_now()
        items = [
            InvoiceSummary(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                client_email=invoice.client_email,
                client_name=invoice.client_name,
                amount=invoice.amount,
                network=invoice.network,
                status=effective_status(invoice, now),
                issue_date=invoice.issued_at,
                due_date=invoice.due_at,
                paid_at=invoice.paid_at,
                created_at=invoice.created_at,
            )
            for invoice in invoices
        ]
        return InvoiceListResponse(invoices=items, count=len(items))

    def to_public_view(self, invoice: Invoice) -> PublicInvoiceView:
        network = get_network(invoice.network, self._settings)
        return PublicInvoiceView(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            client_name=invoice.client_name,
            description=invoice.description,
            items=invoice.items,
            amount=invoice.amount,
            network=network.name,
            chain_id=network.chain_id,
            token_symbol=network.token_symbol,
            token_address=network.token_address,
            token_decimals=network.token_decimals,
            amount_units=str(to_smallest_unit(invoice.amount, network.token_decimals)),
            recipient_address=invoice.recipient_address,
            status=effective_status(invoice),
            due_date=invoice.due_at,
            tx_hash=invoice.tx_hash,
            explorer_url=network.explorer_tx_url(invoice.tx_hash) if invoice.tx_hash else None,
            paid_at=invoice.paid_at,
        )

    def to_payment_response(self, invoice: Invoice) -> PaymentSubmitResponse:
        network = get_network(invoice.network, self._settings)
        return PaymentSubmitResponse(
            invoice_id=invoice.id,
            tx_hash=invoice.tx_hash,
            amount_units=str(invoice.paid_amount),
            paid_at=invoice.paid_at,
            explorer_url=network.explorer_tx_url(invoice.tx_hash),
        )
