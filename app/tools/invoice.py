from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies.services import get_invoice_service, require_merchant
from app.schemas.billing import (
    InvoiceListResponse,
    InvoiceRequest,
    InvoiceResponse,
    InvoiceStatus,
)
from app.services import InvoiceService
from app.services.exceptions import PaymentError, ServiceError

router = APIRouter()


@router.post("/create", response_model=InvoiceResponse, status_code=201)
async def create_invoice(
    req: InvoiceRequest,
    merchant_id: str = Depends(require_merchant),
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        invoice = await service.create(merchant_id, req)
    except PaymentError:
        raise
    except ServiceError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return service.to_response(invoice)


@router.get("/list", response_model=InvoiceListResponse)
async def list_invoices(
    status: Optional[InvoiceStatus] = None,
    limit: int = Query(default=50, ge=1),
    merchant_id: str = Depends(require_merchant),
    service: InvoiceService = Depends(get_invoice_service),
):
    invoices = await service.list(merchant_id, status=status, limit=limit)
    return service.to_list_response(invoices)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    merchant_id: str = Depends(require_merchant),
    service: InvoiceService = Depends(get_invoice_service),
):
    invoice = await service.get_for_merchant(merchant_id, invoice_id)
    return service.to_response(invoice)


@router.post("/{invoice_id}/send", response_model=InvoiceResponse)
async def send_invoice(
    invoice_id: str,
    merchant_id: str = Depends(require_merchant),
    service: InvoiceService = Depends(get_invoice_service),
):
    invoice = await service.send(merchant_id, invoice_id)
    return service.to_response(invoice)
