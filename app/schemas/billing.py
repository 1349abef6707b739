from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PAID = "paid"
    OVERDUE = "overdue"


class LineItem(BaseModel):
    description: str
    quantity: int = Field(gt=0)
    price: Decimal = Field(ge=0, decimal_places=2)


class Invoice(BaseModel):
    """Stored invoice record.

    ``recipient_address`` is the merchant wallet captured when the invoice
    was issued; later profile changes never redirect an open invoice.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    merchant_id: str
    invoice_number: str
    client_email: str
    client_name: Optional[str] = None
    description: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)
    amount: Decimal = Field(gt=0)
    network: str
    recipient_address: str
    status: InvoiceStatus
    tx_hash: Optional[str] = None
    paid_amount: Optional[int] = None  # smallest token units
    paid_at: Optional[datetime] = None
    issued_at: datetime
    due_at: datetime
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_settlement_fields(self) -> "Invoice":
        settled = [self.tx_hash is not None, self.paid_at is not None, self.paid_amount is not None]
        if any(settled) and not all(settled):
            raise ValueError("tx_hash, paid_at and paid_amount must be set together")
        if all(settled) != (self.status is InvoiceStatus.PAID):
            raise ValueError("only paid invoices carry settlement details")
        return self


class InvoiceRequest(BaseModel):
    client_email: str
    items: List[LineItem] = Field(min_length=1)
    client_name: Optional[str] = None
    description: Optional[str] = None
    network: str = "base"
    due_days: int = Field(default=7, ge=0)
    status: Literal["draft", "sent"] = "sent"

    @property
    def total(self) -> Decimal:
        return sum((item.price * item.quantity for item in self.items), Decimal(0))

    @model_validator(mode="after")
    def _check_total(self) -> "InvoiceRequest":
        if self.total <= 0:
            raise ValueError("invoice total must be positive")
        return self


class InvoiceResponse(BaseModel):
    invoice_id: str
    invoice_number: str
    client_email: str
    client_name: Optional[str] = None
    description: Optional[str] = None
    items: List[LineItem]
    amount: Decimal
    network: str
    recipient_address: str
    status: InvoiceStatus
    payment_url: str
    tx_hash: Optional[str] = None
    paid_at: Optional[datetime] = None
    issue_date: datetime
    due_date: datetime
    created_at: datetime


class InvoiceSummary(BaseModel):
    invoice_id: str
    invoice_number: str
    client_email: str
    client_name: Optional[str] = None
    amount: Decimal
    network: str
    status: InvoiceStatus
    issue_date: datetime
    due_date: datetime
    paid_at: Optional[datetime] = None
    created_at: datetime


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceSummary]
    count: int


class PublicInvoiceView(BaseModel):
    """What the customer payment page needs to build the transfer."""

    invoice_id: str
    invoice_number: str
    client_name: Optional[str] = None
    description: Optional[str] = None
    items: List[LineItem]
    amount: Decimal
    network: str
    chain_id: int
    token_symbol: str
    token_address: str
    token_decimals: int
    amount_units: str  # decimal string, cUSD amounts overflow JS numbers
    recipient_address: str
    status: InvoiceStatus
    due_date: datetime
    tx_hash: Optional[str] = None
    explorer_url: Optional[str] = None
    paid_at: Optional[datetime] = None


class PaymentSubmitRequest(BaseModel):
    tx_hash: str


class PaymentSubmitResponse(BaseModel):
    status: Literal["paid"] = "paid"
    invoice_id: str
    tx_hash: str
    amount_units: str
    paid_at: datetime
    explorer_url: str


class PaymentErrorResponse(BaseModel):
    error: str
    message: str
    transient: bool = False
