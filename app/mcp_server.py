# app/mcp_server.py
from __future__ import annotations

import logging
from typing import Optional

from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field

from app.dependencies.services import build_invoice_service
from app.services.exceptions import PaymentError

log = logging.getLogger("ravgateway.mcp")

# Name shown to clients
mcp = FastMCP("ravgateway_mcp")

# --------------------------
# Tool I/O models
# --------------------------
class InvoiceStatusInput(BaseModel):
    invoice_id: str = Field(..., description="Invoice id from the payment link")

class InvoiceStatusOutput(BaseModel):
    invoice_id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[str] = None
    network: Optional[str] = None
    token_symbol: Optional[str] = None
    amount_units: Optional[str] = None
    recipient_address: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None

class PaymentSubmitInput(BaseModel):
    invoice_id: str
    tx_hash: str = Field(..., description="0x-prefixed hash of the token transfer transaction")

class PaymentSubmitOutput(BaseModel):
    invoice_id: str
    status: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    transient: bool = False

# --------------------------
# Tools
# --------------------------
@mcp.tool(name="invoice_status", description="Look up an invoice and what it takes to pay it")
async def invoice_status(input: InvoiceStatusInput, ctx: Context) -> InvoiceStatusOutput:
    log.debug("invoice_status input=%s", input.model_dump())
    service = build_invoice_service()
    try:
        view = service.to_public_view(await service.get(input.invoice_id))
    except PaymentError as exc:
        return InvoiceStatusOutput(invoice_id=input.invoice_id, error=exc.kind, message=str(exc))
    out = InvoiceStatusOutput(
        invoice_id=view.invoice_id,
        status=view.status.value,
        amount=str(view.amount),
        network=view.network,
        token_symbol=view.token_symbol,
        amount_units=view.amount_units,
        recipient_address=view.recipient_address,
        tx_hash=view.tx_hash,
    )
    log.debug("invoice_status output=%s", out.model_dump())
    return out

@mcp.tool(name="payment_submit", description="Verify an on-chain payment and settle the invoice")
async def payment_submit(input: PaymentSubmitInput, ctx: Context) -> PaymentSubmitOutput:
    log.debug("payment_submit input=%s", input.model_dump())
    service = build_invoice_service()
    try:
        invoice = await service.submit_payment(input.invoice_id, input.tx_hash)
    except PaymentError as exc:
        out = PaymentSubmitOutput(
            invoice_id=input.invoice_id,
            error=exc.kind,
            message=str(exc),
            transient=exc.transient,
        )
    else:
        out = PaymentSubmitOutput(
            invoice_id=invoice.id,
            status=invoice.status.value,
            tx_hash=invoice.tx_hash,
        )
    log.debug("payment_submit output=%s", out.model_dump())
    return out
