import json

from fastapi import APIRouter, Request

from mediagen.config import settings
from mediagen.core.dependencies import CurrentUser, DbSession, HttpClient
from mediagen.core.exceptions import InvalidInputError
from mediagen.payments import service
from mediagen.payments.schemas import (
    CreateInvoiceRequest,
    CreditPackageResponse,
    InvoiceResponse,
    WebhookResponse,
)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/packages", response_model=list[CreditPackageResponse])
async def list_packages() -> list[CreditPackageResponse]:
    return [
        CreditPackageResponse(id=p.id, name=p.name, amount_usd=p.amount_usd, credits=p.credits)
        for p in service.CREDIT_PACKAGES.values()
    ]


@router.post("/invoice", response_model=InvoiceResponse, status_code=201)
async def create_invoice(
    body: CreateInvoiceRequest, request: Request, db: DbSession, user: CurrentUser, client: HttpClient
) -> InvoiceResponse:
    async with db.begin():
        purchase, invoice_url = await service.create_invoice(
            db, client, user, body.package_id, base_url=request.headers.get("origin")
        )
    return InvoiceResponse(
        purchase_id=purchase.id,
        invoice_id=purchase.invoice_id,
        invoice_url=invoice_url,
        amount_usd=purchase.amount_usd,
        credits_amount=purchase.credits_amount,
    )


@router.post("/ipn", response_model=WebhookResponse)
async def ipn_webhook(request: Request, db: DbSession) -> WebhookResponse:
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except ValueError:
        raise InvalidInputError("Malformed payload")
    outcome = await service.handle_webhook(
        db, request.headers.get(settings.payment_signature_header), payload
    )
    return WebhookResponse(
        purchase_id=outcome.purchase_id,
        payment_status=outcome.payment_status,
        credited_now=outcome.credited_now,
    )
