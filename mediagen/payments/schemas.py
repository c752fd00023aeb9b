import uuid
from decimal import Decimal

from pydantic import BaseModel


class CreateInvoiceRequest(BaseModel):
    package_id: str


class InvoiceResponse(BaseModel):
    purchase_id: uuid.UUID
    invoice_id: str
    invoice_url: str
    amount_usd: Decimal
    credits_amount: int


class CreditPackageResponse(BaseModel):
    id: str
    name: str
    amount_usd: Decimal
    credits: int


class WebhookResponse(BaseModel):
    ok: bool = True
    purchase_id: str
    payment_status: str
    credited_now: bool
