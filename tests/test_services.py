import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.config import Settings
from app.schemas.billing import InvoiceRequest, InvoiceStatus, LineItem
from app.services.exceptions import (
    AlreadyPaidWithDifferentTx,
    AmountMismatch,
    InvalidTransactionHash,
    InvalidTransition,
    InvoiceNotFound,
    MerchantWalletMissing,
    StatusConflict,
    TransactionAlreadyUsed,
    TransactionNotFound,
    UnsupportedNetwork,
)
from app.services.invoice import InvoiceService
from app.services.lifecycle import effective_status
from app.services.store import get_store, reset_store
from app.services.verifier import PaymentVerifier
from factories import (
    MERCHANT_ID,
    MERCHANT_WALLET,
    OTHER_TX_HASH,
    OTHER_WALLET,
    TX_HASH,
    FakeRpc,
    receipt_payload,
    transfer_log,
)


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    reset_store()
    yield
    reset_store()


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.notifications = []

    async def notify_paid(self, notification) -> None:
        self.notifications.append(notification)
        if self.fail:
            raise RuntimeError("mail server down")


def _service(receipts=None, notifier=None):
    store = get_store()
    asyncio.run(store.merchants.upsert(MERCHANT_ID, wallet_address=MERCHANT_WALLET))
    rpc = FakeRpc(receipts)
    service = InvoiceService(
        PaymentVerifier(rpc),
        store=store,
        notifier=notifier or RecordingNotifier(),
        settings=Settings(),
    )
    return service, rpc


def _request(**overrides) -> InvoiceRequest:
    fields = {
        "client_email": "client@example.com",
        "client_name": "Acme Ltd",
        "items": [
            LineItem(description="Design work", quantity=2, price=Decimal("40")),
            LineItem(description="Hosting", quantity=1, price=Decimal("20")),
        ],
    }
    fields.update(overrides)
    return InvoiceRequest(**fields)


def _paid_receipts(amount: int = 100_000_000, tx_hash: str = TX_HASH):
    return {tx_hash: receipt_payload([transfer_log(amount)], tx_hash=tx_hash)}


def test_create_computes_total_and_snapshots_wallet() -> None:
    service, _ = _service()

    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))

    assert invoice.amount == Decimal("100")
    assert invoice.status is InvoiceStatus.SENT
    assert invoice.recipient_address == MERCHANT_WALLET
    assert invoice.invoice_number == "INV-00001"
    assert invoice.due_at - invoice.issued_at == timedelta(days=7)

    store = get_store()
    asyncio.run(store.merchants.upsert(MERCHANT_ID, wallet_address=OTHER_WALLET))
    stored = asyncio.run(service.get(invoice.id))
    assert stored.recipient_address == MERCHANT_WALLET

    second = asyncio.run(service.create(MERCHANT_ID, _request()))
    assert second.invoice_number == "INV-00002"
    assert second.recipient_address == OTHER_WALLET


def test_create_requires_wallet_and_known_network() -> None:
    service, _ = _service()

    with pytest.raises(MerchantWalletMissing):
        asyncio.run(service.create("merchant_without_wallet", _request()))
    with pytest.raises(UnsupportedNetwork):
        asyncio.run(service.create(MERCHANT_ID, _request(network="solana")))


def test_line_item_prices_are_limited_to_cents() -> None:
    with pytest.raises(ValidationError):
        LineItem(description="Dust", quantity=1, price=Decimal("0.0000004"))
    with pytest.raises(ValidationError):
        _request(items=[LineItem(description="Free", quantity=1, price=Decimal("0"))])

    assert LineItem(description="Cent", quantity=1, price=Decimal("0.01")).price == Decimal("0.01")


def test_draft_send_view_transitions() -> None:
    service, _ = _service()
    draft = asyncio.run(service.create(MERCHANT_ID, _request(status="draft")))

    with pytest.raises(InvalidTransition):
        asyncio.run(service.record_view(draft.id))

    sent = asyncio.run(service.send(MERCHANT_ID, draft.id))
    assert sent.status is InvoiceStatus.SENT

    with pytest.raises(InvalidTransition):
        asyncio.run(service.send(MERCHANT_ID, draft.id))

    viewed = asyncio.run(service.record_view(draft.id))
    assert viewed.status is InvoiceStatus.VIEWED
    again = asyncio.run(service.record_view(draft.id))
    assert again == viewed


def test_send_is_scoped_to_the_owning_merchant() -> None:
    service, _ = _service()
    draft = asyncio.run(service.create(MERCHANT_ID, _request(status="draft")))

    with pytest.raises(InvoiceNotFound):
        asyncio.run(service.send("someone_else", draft.id))


def test_mark_paid_sets_settlement_fields_together() -> None:
    service, _ = _service()
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))

    paid = asyncio.run(service.mark_paid(invoice.id, TX_HASH, 100_000_000))

    assert paid.status is InvoiceStatus.PAID
    assert paid.tx_hash == TX_HASH
    assert paid.paid_amount == 100_000_000
    assert paid.paid_at is not None


def test_mark_paid_is_idempotent_for_the_same_transaction() -> None:
    service, _ = _service()
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))

    first = asyncio.run(service.mark_paid(invoice.id, TX_HASH, 100_000_000))
    second = asyncio.run(service.mark_paid(invoice.id, TX_HASH.upper().replace("0X", "0x"), 100_000_000))

    assert second == first


def test_mark_paid_with_another_transaction_conflicts() -> None:
    service, _ = _service()
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))
    asyncio.run(service.mark_paid(invoice.id, TX_HASH, 100_000_000))

    with pytest.raises(AlreadyPaidWithDifferentTx) as excinfo:
        asyncio.run(service.mark_paid(invoice.id, OTHER_TX_HASH, 100_000_000))

    assert excinfo.value.existing_tx_hash == TX_HASH
    assert asyncio.run(service.get(invoice.id)).tx_hash == TX_HASH


def test_mark_paid_rejects_drafts_and_unknown_invoices() -> None:
    service, _ = _service()
    draft = asyncio.run(service.create(MERCHANT_ID, _request(status="draft")))

    with pytest.raises(InvalidTransition):
        asyncio.run(service.mark_paid(draft.id, TX_HASH, 1))
    with pytest.raises(InvoiceNotFound):
        asyncio.run(service.mark_paid("missing", TX_HASH, 1))


def test_concurrent_mark_paid_settles_exactly_once(monkeypatch) -> None:
    service, _ = _service()
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))
    repository = get_store().invoices
    original_get = repository.get
    seen = []

    async def yielding_get(invoice_id):
        current = await original_get(invoice_id)
        seen.append(current.status)
        # hand control to the other settlement before it writes
        await asyncio.sleep(0)
        return current

    monkeypatch.setattr(repository, "get", yielding_get)

    async def race():
        return await asyncio.gather(
            service.mark_paid(invoice.id, TX_HASH, 100_000_000),
            service.mark_paid(invoice.id, OTHER_TX_HASH, 100_000_000),
            return_exceptions=True,
        )

    results = asyncio.run(race())

    assert seen == [InvoiceStatus.SENT, InvoiceStatus.SENT]
    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyPaidWithDifferentTx)
    assert asyncio.run(original_get(invoice.id)).tx_hash == winners[0].tx_hash


def test_stale_read_loses_the_compare_and_set(monkeypatch) -> None:
    service, _ = _service()
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))
    stale = asyncio.run(service.get(invoice.id))
    asyncio.run(service.mark_paid(invoice.id, TX_HASH, 100_000_000))

    async def stale_get(invoice_id):
        return stale

    monkeypatch.setattr(get_store().invoices, "get", stale_get)

    with pytest.raises(AlreadyPaidWithDifferentTx):
        asyncio.run(service.mark_paid(invoice.id, OTHER_TX_HASH, 100_000_000))
    replay = asyncio.run(service.mark_paid(invoice.id, TX_HASH, 100_000_000))
    assert replay.status is InvoiceStatus.PAID


def test_store_compare_and_set_rejects_unexpected_status() -> None:
    service, _ = _service()
    draft = asyncio.run(service.create(MERCHANT_ID, _request(status="draft")))

    with pytest.raises(StatusConflict) as excinfo:
        asyncio.run(
            get_store().invoices.update_status(
                draft.id, InvoiceStatus.VIEWED, expected={InvoiceStatus.SENT}
            )
        )

    assert excinfo.value.current.status is InvoiceStatus.DRAFT


def test_one_transaction_cannot_settle_two_invoices() -> None:
    service, _ = _service()
    first = asyncio.run(service.create(MERCHANT_ID, _request()))
    second = asyncio.run(service.create(MERCHANT_ID, _request()))
    asyncio.run(service.mark_paid(first.id, TX_HASH, 100_000_000))

    with pytest.raises(TransactionAlreadyUsed):
        asyncio.run(service.mark_paid(second.id, TX_HASH, 100_000_000))

    assert asyncio.run(service.get(second.id)).status is InvoiceStatus.SENT


def test_submit_payment_verifies_and_notifies_once() -> None:
    notifier = RecordingNotifier()
    service, rpc = _service(_paid_receipts(), notifier)
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))

    paid = asyncio.run(service.submit_payment(invoice.id, TX_HASH))
    replay = asyncio.run(service.submit_payment(invoice.id, TX_HASH))

    assert paid.status is InvoiceStatus.PAID
    assert paid.paid_amount == 100_000_000
    assert replay == paid
    assert len(rpc.calls) == 1
    assert len(notifier.notifications) == 1
    assert notifier.notifications[0].invoice_id == invoice.id
    assert notifier.notifications[0].amount == 100_000_000


def test_submit_payment_after_view_and_past_due() -> None:
    service, _ = _service(_paid_receipts())
    invoice = asyncio.run(service.create(MERCHANT_ID, _request(due_days=0)))
    asyncio.run(service.record_view(invoice.id))

    paid = asyncio.run(service.submit_payment(invoice.id, TX_HASH))

    assert paid.status is InvoiceStatus.PAID


def test_submit_payment_survives_notifier_failure() -> None:
    notifier = RecordingNotifier(fail=True)
    service, _ = _service(_paid_receipts(), notifier)
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))

    paid = asyncio.run(service.submit_payment(invoice.id, TX_HASH))

    assert paid.status is InvoiceStatus.PAID
    assert asyncio.run(service.get(invoice.id)).status is InvoiceStatus.PAID
    assert len(notifier.notifications) == 1


def test_rejected_payment_leaves_invoice_unpaid() -> None:
    notifier = RecordingNotifier()
    service, _ = _service(_paid_receipts(amount=99_999_999), notifier)
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))

    with pytest.raises(AmountMismatch):
        asyncio.run(service.submit_payment(invoice.id, TX_HASH))

    stored = asyncio.run(service.get(invoice.id))
    assert stored.status is InvoiceStatus.SENT
    assert stored.tx_hash is None
    assert notifier.notifications == []


def test_submit_payment_on_paid_invoice_skips_the_chain() -> None:
    service, rpc = _service(_paid_receipts())
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))
    asyncio.run(service.submit_payment(invoice.id, TX_HASH))

    with pytest.raises(AlreadyPaidWithDifferentTx):
        asyncio.run(service.submit_payment(invoice.id, OTHER_TX_HASH))

    assert rpc.calls == [("base", TX_HASH)]


def test_submit_payment_validates_input_before_the_chain() -> None:
    service, rpc = _service()
    invoice = asyncio.run(service.create(MERCHANT_ID, _request()))

    with pytest.raises(InvalidTransactionHash):
        asyncio.run(service.submit_payment(invoice.id, "0xnothex"))
    with pytest.raises(InvoiceNotFound):
        asyncio.run(service.submit_payment("missing", TX_HASH))
    with pytest.raises(TransactionNotFound):
        asyncio.run(service.submit_payment(invoice.id, TX_HASH))

    assert rpc.calls == [("base", TX_HASH)]
    assert asyncio.run(service.get(invoice.id)).status is InvoiceStatus.SENT


def test_overdue_is_derived_at_read_time() -> None:
    service, _ = _service()
    invoice = asyncio.run(service.create(MERCHANT_ID, _request(due_days=3)))
    later = datetime.now(timezone.utc) + timedelta(days=4)

    assert effective_status(invoice) is InvoiceStatus.SENT
    assert effective_status(invoice, later) is InvoiceStatus.OVERDUE
    assert asyncio.run(service.get(invoice.id)).status is InvoiceStatus.SENT

    paid = asyncio.run(service.mark_paid(invoice.id, TX_HASH, 100_000_000))
    assert effective_status(paid, later) is InvoiceStatus.PAID


def test_list_filters_on_effective_status_and_caps_limit() -> None:
    service, _ = _service()
    overdue = asyncio.run(service.create(MERCHANT_ID, _request(due_days=0)))
    current = asyncio.run(service.create(MERCHANT_ID, _request(due_days=30)))
    paid = asyncio.run(service.create(MERCHANT_ID, _request(due_days=30)))
    asyncio.run(service.mark_paid(paid.id, TX_HASH, 100_000_000))

    all_rows = asyncio.run(service.list(MERCHANT_ID, limit=500))
    overdue_rows = asyncio.run(service.list(MERCHANT_ID, status=InvoiceStatus.OVERDUE))
    sent_rows = asyncio.run(service.list(MERCHANT_ID, status=InvoiceStatus.SENT))
    limited = asyncio.run(service.list(MERCHANT_ID, limit=1))

    assert {row.id for row in all_rows} == {overdue.id, current.id, paid.id}
    assert [row.id for row in overdue_rows] == [overdue.id]
    assert [row.id for row in sent_rows] == [current.id]
    assert len(limited) == 1
    assert asyncio.run(service.list("someone_else")) == []
