"""Legal invoice status transitions.

``overdue`` is never stored by this module. It is derived when an invoice is
read: an unpaid ``sent`` or ``viewed`` invoice past its due date reports as
overdue. ``paid`` is terminal.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, FrozenSet

from app.schemas.billing import Invoice, InvoiceStatus
from app.services.exceptions import InvalidTransition

SEND = "send"
VIEW = "view"
PAY = "pay"

UNPAID_OPEN: FrozenSet[InvoiceStatus] = frozenset(
    {InvoiceStatus.SENT, InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE}
)

_TRANSITIONS: Dict[str, Dict[InvoiceStatus, InvoiceStatus]] = {
    SEND: {InvoiceStatus.DRAFT: InvoiceStatus.SENT},
    VIEW: {
        InvoiceStatus.SENT: InvoiceStatus.VIEWED,
        InvoiceStatus.VIEWED: InvoiceStatus.VIEWED,
        InvoiceStatus.OVERDUE: InvoiceStatus.OVERDUE,
    },
    PAY: {status: InvoiceStatus.PAID for status in UNPAID_OPEN},
}


def sources_for(event: str) -> FrozenSet[InvoiceStatus]:
    """Statuses from which ``event`` is accepted."""

    return frozenset(_TRANSITIONS[event])


def ensure_transition(current: InvoiceStatus, event: str) -> InvoiceStatus:
    """Return the status ``event`` leads to from ``current`` or raise."""

    target = _TRANSITIONS[event].get(current)
    if target is None:
        raise InvalidTransition(current.value, event)
    return target


def effective_status(invoice: Invoice, now: datetime | None = None) -> InvoiceStatus:
    now = now or datetime.now(timezone.utc)
    if invoice.status in (InvoiceStatus.SENT, InvoiceStatus.VIEWED) and now > invoice.due_at:
        return InvoiceStatus.OVERDUE
    return invoice.status
