"""
Crypto top-ups through NOWPayments.

Invoice creation records a pending Purchase. The IPN webhook is the only
thing that credits: signature first (no side effects on mismatch), then the
purchase lookup, then an unconditional status update, then at most one
credit guarded by both the ledger idempotency key and the `credited` flag.
"""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.auth.models import User, UserTier
from mediagen.config import settings
from mediagen.core.exceptions import (
    AppError,
    ConfigurationError,
    ContentionError,
    InvalidInputError,
    NotFoundError,
    SignatureMismatchError,
)
from mediagen.core.security import verify_signature
from mediagen.ledger import service as ledger_service
from mediagen.ledger.models import OperationType
from mediagen.payments.models import Purchase

logger = logging.getLogger(__name__)

SETTLED_STATUSES = frozenset({"finished"})


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    amount_usd: Decimal
    credits: int


CREDIT_PACKAGES: dict[str, CreditPackage] = {
    pkg.id: pkg
    for pkg in (
        CreditPackage("starter", "Starter Package", Decimal("5.00"), 5000),
        CreditPackage("popular", "Popular Package", Decimal("9.99"), 10000),
        CreditPackage("pro", "Pro Package", Decimal("19.99"), 20000),
        CreditPackage("elite", "Elite Package", Decimal("49.99"), 50000),
    )
}


@dataclass(frozen=True)
class WebhookOutcome:
    purchase_id: str
    payment_status: str
    credited_now: bool


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


async def create_invoice(
    db: AsyncSession,
    client: httpx.AsyncClient,
    user: User,
    package_id: str,
    base_url: str | None = None,
) -> tuple[Purchase, str]:
    """Create the upstream invoice and a pending purchase. Returns (purchase, invoice_url)."""
    package = CREDIT_PACKAGES.get(package_id)
    if package is None:
        raise InvalidInputError("Invalid package")
    if not settings.nowpayments_api_key:
        raise ConfigurationError("Payment system not configured")

    base_url = (base_url or settings.app_base_url).rstrip("/")
    body = {
        "price_amount": float(package.amount_usd),
        "price_currency": "usd",
        "order_id": f"{user.id}-{int(time.time() * 1000)}",
        "order_description": f"{package.name} - {package.credits:,} credits",
        "success_url": f"{base_url}/buy-credits?success=true",
        "cancel_url": f"{base_url}/buy-credits",
        "ipn_callback_url": f"{base_url}/payments/ipn",
    }
    try:
        response = await client.post(
            f"{settings.nowpayments_base_url}/invoice",
            json=body,
            headers={"x-api-key": settings.nowpayments_api_key},
        )
        response.raise_for_status()
        invoice = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error(f"Failed to create invoice for {user.id}: {exc}")
        raise AppError("Failed to create payment invoice", status_code=502) from exc

    invoice_id = _as_str(invoice.get("id"))
    invoice_url = invoice.get("invoice_url")
    if not invoice_id or not invoice_url:
        logger.error(f"Invoice response missing id/url: {invoice}")
        raise AppError("Failed to create payment invoice", status_code=502)

    purchase = Purchase(
        user_id=user.id,
        package_id=package.id,
        invoice_id=invoice_id,
        amount_usd=package.amount_usd,
        credits_amount=package.credits,
        payment_status="waiting",
    )
    db.add(purchase)
    await db.flush()
    logger.info(f"Invoice {invoice_id} created for {user.id} ({package.id})")
    return purchase, invoice_url


async def find_purchase(
    db: AsyncSession, invoice_id: str | None, payment_id: str | None
) -> Purchase | None:
    conditions = []
    if invoice_id:
        conditions.append(Purchase.invoice_id == invoice_id)
    if payment_id:
        conditions.append(Purchase.payment_id == payment_id)
    if not conditions:
        return None
    result = await db.execute(
        select(Purchase)
        .where(or_(*conditions))
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _credit_purchase(db: AsyncSession, snapshot: dict[str, Any]) -> bool:
    """One transaction: ledger credit + credited flag. Returns whether credits were added."""
    user_id = snapshot["user_id"]
    try:
        result = await ledger_service.credit(
            db,
            user_id,
            snapshot["credits_amount"],
            OperationType.CRYPTO_PURCHASE,
            description=f"Crypto purchase: ${snapshot['amount_usd']} → {snapshot['credits_amount']} credits",
            idempotency_key=f"crypto_purchase:{snapshot['reference']}",
            metadata={
                "purchase_id": str(snapshot["purchase_id"]),
                "invoice_id": snapshot["invoice_id"],
                "payment_id": snapshot["payment_id"],
            },
        )
        await db.execute(
            update(Purchase)
            .where(Purchase.id == snapshot["purchase_id"])
            .values(credited=True)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            update(User).where(User.id == user_id).values(tier=UserTier.PAID)
        )
        await db.commit()
    except IntegrityError as exc:
        # A concurrent delivery applied the same key first.
        await db.rollback()
        raise ContentionError(str(user_id)) from exc
    except ContentionError:
        await db.rollback()
        raise
    return result.applied


async def handle_webhook(
    db: AsyncSession,
    signature: str | None,
    payload: Any,
    secret: str | None = None,
) -> WebhookOutcome:
    if not signature:
        raise InvalidInputError("Missing signature")
    secret = secret if secret is not None else settings.nowpayments_ipn_secret
    if not secret:
        raise ConfigurationError("IPN not configured")
    if not isinstance(payload, dict):
        raise InvalidInputError("Malformed payload")
    if not verify_signature(payload, signature, secret):
        logger.warning("IPN rejected: signature mismatch")
        raise SignatureMismatchError()

    invoice_id = _as_str(payload.get("invoice_id"))
    payment_id = _as_str(payload.get("payment_id"))
    purchase = await find_purchase(db, invoice_id, payment_id)
    if purchase is None:
        logger.warning(f"IPN for unknown purchase invoice={invoice_id} payment={payment_id}")
        raise NotFoundError("Purchase", invoice_id or payment_id or "unknown")

    payment_status = str(payload.get("payment_status") or purchase.payment_status)
    purchase.payment_id = payment_id or purchase.payment_id
    purchase.payment_status = payment_status
    purchase.pay_currency = _as_str(payload.get("pay_currency")) or purchase.pay_currency
    if payload.get("actually_paid") is not None:
        purchase.actually_paid = Decimal(str(payload["actually_paid"]))
    await db.commit()
    logger.info(f"IPN for purchase {purchase.id}: status={payment_status}")

    if payment_status not in SETTLED_STATUSES or purchase.credited:
        return WebhookOutcome(str(purchase.id), payment_status, credited_now=False)

    snapshot = {
        "purchase_id": purchase.id,
        "user_id": purchase.user_id,
        "credits_amount": purchase.credits_amount,
        "amount_usd": purchase.amount_usd,
        "invoice_id": purchase.invoice_id,
        "payment_id": purchase.payment_id,
        "reference": purchase.payment_id or purchase.invoice_id,
    }
    try:
        applied = await ledger_service.retry_on_contention(
            lambda: _credit_purchase(db, snapshot),
            attempts=settings.ledger_contention_retries,
        )
    except (ContentionError, SQLAlchemyError) as exc:
        await db.rollback()
        logger.error(f"Crediting purchase {snapshot['purchase_id']} failed: {exc}")
        raise AppError("Failed to credit purchase", status_code=500) from exc

    if applied:
        logger.info(
            f"Credited {snapshot['credits_amount']} credits to {snapshot['user_id']} "
            f"for purchase {snapshot['purchase_id']}"
        )
    else:
        logger.info(f"Purchase {snapshot['purchase_id']} was already credited (duplicate delivery)")
    return WebhookOutcome(str(snapshot["purchase_id"]), payment_status, credited_now=applied)
