from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentNotification:
    invoice_id: str
    merchant_id: str
    tx_hash: str
    amount: int  # smallest token units
    network: str
    paid_at: datetime


class PaymentNotifier(Protocol):
    async def notify_paid(self, notification: PaymentNotification) -> None:
        ...


class LoggingNotifier:
    """Default notifier; email delivery hooks in behind the same interface."""

    async def notify_paid(self, notification: PaymentNotification) -> None:
        logger.info(
            "Invoice %s paid by %s on %s (%s units)",
            notification.invoice_id,
            notification.tx_hash,
            notification.network,
            notification.amount,
        )
