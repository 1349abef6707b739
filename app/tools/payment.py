"""Customer-facing payment page endpoints; no API key required."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies.services import get_invoice_service
from app.schemas.billing import (
    PaymentSubmitRequest,
    PaymentSubmitResponse,
    PublicInvoiceView,
)
from app.services import InvoiceService
from app.services.exceptions import PaymentError, ServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{invoice_id}", response_model=PublicInvoiceView)
async def view_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    invoice = await service.get(invoice_id)
    return service.to_public_view(invoice)


@router.post("/{invoice_id}/view", response_model=PublicInvoiceView)
async def record_view(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
):
    """Mark a sent invoice as viewed; repeat views are no-ops.

    A paid or draft invoice answers 409 ``invalid_transition``. Payment pages
    should read ``GET /pay/{invoice_id}`` for the current status and only
    post here while the invoice is still awaiting payment.
    """

    invoice = await service.record_view(invoice_id)
    return service.to_public_view(invoice)


@router.post("/{invoice_id}/submit", response_model=PaymentSubmitResponse)
async def submit_payment(
    invoice_id: str,
    req: PaymentSubmitRequest,
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        invoice = await service.submit_payment(invoice_id, req.tx_hash)
    except PaymentError as exc:
        logger.info("Payment %s for invoice %s rejected: %s", req.tx_hash, invoice_id, exc.kind)
        raise
    except ServiceError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return service.to_payment_response(invoice)
