from __future__ import annotations

import itertools
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import DefaultDict, Dict, Iterable, Iterator, List, Optional

from app.config import get_settings
from app.schemas.billing import Invoice, InvoiceStatus
from app.services.exceptions import StatusConflict, TransactionAlreadyUsed


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MerchantRecord:
    merchant_id: str
    name: Optional[str] = None
    wallet_address: Optional[str] = None


class MerchantRepository:
    def __init__(self, wallets: Dict[str, str] | None = None) -> None:
        self._merchants: Dict[str, MerchantRecord] = {}
        for merchant_id, wallet in (wallets or {}).items():
            self._merchants[merchant_id] = MerchantRecord(merchant_id, wallet_address=wallet)

    async def get(self, merchant_id: str) -> Optional[MerchantRecord]:
        return self._merchants.get(merchant_id)

    async def upsert(
        self,
        merchant_id: str,
        *,
        wallet_address: Optional[str] = None,
        name: Optional[str] = None,
    ) -> MerchantRecord:
        record = self._merchants.get(merchant_id) or MerchantRecord(merchant_id)
        if wallet_address is not None:
            record.wallet_address = wallet_address
        if name is not None:
            record.name = name
        self._merchants[merchant_id] = record
        return record


class InvoiceRepository:
    """In-memory invoice table.

    ``update_status`` is the only write path after creation and behaves like
    a conditional ``UPDATE ... WHERE status IN (...)``: the check and the
    write happen under one lock with no suspension point in between.
    """

    def __init__(self) -> None:
        self._invoices: Dict[str, Invoice] = {}
        self._by_tx_hash: Dict[str, str] = {}
        self._numbers: DefaultDict[str, Iterator[int]] = defaultdict(lambda: itertools.count(1))
        self._lock = threading.Lock()

    def next_id(self) -> str:
        return str(uuid.uuid4())

    def next_number(self, merchant_id: str) -> str:
        with self._lock:
            return f"INV-{next(self._numbers[merchant_id]):05d}"

    async def create(self, invoice: Invoice) -> Invoice:
        with self._lock:
            if invoice.id in self._invoices:
                raise ValueError(f"Invoice {invoice.id} already exists")
            self._invoices[invoice.id] = invoice
        return invoice

    async def get(self, invoice_id: str) -> Optional[Invoice]:
        return self._invoices.get(invoice_id)

    async def list(self, merchant_id: Optional[str] = None) -> List[Invoice]:
        rows = [
            invoice
            for invoice in self._invoices.values()
            if (merchant_id is None or invoice.merchant_id == merchant_id)
        ]
        return sorted(rows, key=lambda invoice: invoice.created_at, reverse=True)

    async def update_status(
        self,
        invoice_id: str,
        status: InvoiceStatus,
        *,
        expected: Iterable[InvoiceStatus],
        tx_hash: Optional[str] = None,
        paid_amount: Optional[int] = None,
        paid_at: Optional[datetime] = None,
    ) -> Optional[Invoice]:
        """Compare-and-set ``status``; ``None`` if the invoice does not exist.

        Raises ``StatusConflict`` with the current record when its status is
        not in ``expected``, and ``TransactionAlreadyUsed`` when ``tx_hash``
        already settles another invoice.
        """

        allowed = set(expected)
        with self._lock:
            current = self._invoices.get(invoice_id)
            if current is None:
                return None
            if current.status not in allowed:
                raise StatusConflict(current)
            if tx_hash is not None:
                owner = self._by_tx_hash.get(tx_hash.lower())
                if owner is not None and owner != invoice_id:
                    raise TransactionAlreadyUsed(tx_hash, owner)

            changes: Dict[str, object] = {"status": status, "updated_at": _utc_now()}
            if tx_hash is not None:
                changes.update(tx_hash=tx_hash, paid_amount=paid_amount, paid_at=paid_at)
            # full validation keeps status and settlement fields consistent
            updated = Invoice.model_validate({**current.model_dump(), **changes})
            self._invoices[invoice_id] = updated
            if tx_hash is not None:
                self._by_tx_hash[tx_hash.lower()] = invoice_id
            return updated


@dataclass
class InvoiceStore:
    invoices: InvoiceRepository
    merchants: MerchantRepository


_store: Optional[InvoiceStore] = None


def get_store() -> InvoiceStore:
    global _store
    if _store is None:
        _store = InvoiceStore(
            invoices=InvoiceRepository(),
            merchants=MerchantRepository(get_settings().merchant_wallets),
        )
    return _store


def reset_store() -> None:
    global _store
    _store = None
