"""Tests for crypto top-ups: invoice creation and the IPN webhook."""
import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from mediagen.auth.models import User, UserTier
from mediagen.core.exceptions import (
    AppError,
    ConfigurationError,
    InvalidInputError,
    NotFoundError,
    SignatureMismatchError,
)
from mediagen.core.security import canonical_json, sign_payload, verify_signature
from mediagen.ledger.models import LedgerEntry, OperationType
from mediagen.ledger.service import get_balance
from mediagen.payments import service as payments
from mediagen.payments.models import Purchase

SECRET = "ipn-secret"


async def _purchase(db, user, invoice_id="inv-1", package_id="starter"):
    package = payments.CREDIT_PACKAGES[package_id]
    purchase = Purchase(
        user_id=user.id,
        package_id=package.id,
        invoice_id=invoice_id,
        amount_usd=package.amount_usd,
        credits_amount=package.credits,
    )
    db.add(purchase)
    await db.commit()
    return purchase


def _ipn(invoice_id="inv-1", status="finished", **extra):
    payload = {
        "invoice_id": invoice_id,
        "payment_id": 5077125051,
        "payment_status": status,
        "pay_currency": "btc",
        "actually_paid": 0.00012,
        **extra,
    }
    return payload, sign_payload(payload, SECRET)


class TestSignature:
    def test_key_order_does_not_matter(self):
        a = {"b": 1, "a": {"d": 2, "c": [3, {"f": 4, "e": 5}]}}
        b = json.loads('{"a": {"c": [3, {"e": 5, "f": 4}], "d": 2}, "b": 1}')
        assert canonical_json(a) == canonical_json(b)
        assert verify_signature(b, sign_payload(a, SECRET), SECRET)

    def test_signature_is_case_insensitive_hex(self):
        payload = {"a": 1}
        assert verify_signature(payload, sign_payload(payload, SECRET).upper(), SECRET)

    def test_tampered_payload_fails(self):
        payload, signature = _ipn()
        payload["payment_status"] = "finished "
        assert not verify_signature(payload, signature, SECRET)


@pytest.mark.asyncio
async def test_finished_payment_credits_once(db, make_user):
    user = await make_user()
    purchase = await _purchase(db, user)
    payload, signature = _ipn()

    first = await payments.handle_webhook(db, signature, payload, secret=SECRET)
    second = await payments.handle_webhook(db, signature, payload, secret=SECRET)

    assert first.credited_now is True
    assert second.credited_now is False
    assert await get_balance(db, user.id) == 5000

    credits = await db.scalar(
        select(func.count()).select_from(LedgerEntry).where(
            LedgerEntry.user_id == user.id,
            LedgerEntry.operation_type == OperationType.CRYPTO_PURCHASE,
        )
    )
    assert credits == 1

    db.expire_all()
    reloaded = await db.get(Purchase, purchase.id)
    assert reloaded.credited is True
    assert reloaded.payment_status == "finished"
    assert reloaded.payment_id == "5077125051"
    assert reloaded.actually_paid == Decimal("0.00012")
    assert (await db.get(User, user.id)).tier == UserTier.PAID


@pytest.mark.asyncio
async def test_intermediate_status_is_recorded_without_credit(db, make_user):
    user = await make_user()
    purchase = await _purchase(db, user)
    payload, signature = _ipn(status="confirming")

    outcome = await payments.handle_webhook(db, signature, payload, secret=SECRET)

    assert outcome.credited_now is False
    assert outcome.payment_status == "confirming"
    assert await get_balance(db, user.id) == 0
    db.expire_all()
    assert (await db.get(Purchase, purchase.id)).payment_status == "confirming"


@pytest.mark.asyncio
async def test_lookup_by_payment_id(db, make_user):
    user = await make_user()
    purchase = await _purchase(db, user)
    purchase.payment_id = "pay-77"
    await db.commit()
    payload, signature = _ipn(invoice_id=None, payment_id="pay-77")

    outcome = await payments.handle_webhook(db, signature, payload, secret=SECRET)

    assert outcome.purchase_id == str(purchase.id)
    assert outcome.credited_now is True


@pytest.mark.asyncio
async def test_bad_signature_has_no_side_effects(db, make_user):
    user = await make_user()
    purchase = await _purchase(db, user)
    payload, signature = _ipn()
    payload["credits"] = 999999

    with pytest.raises(SignatureMismatchError) as exc_info:
        await payments.handle_webhook(db, signature, payload, secret=SECRET)

    assert exc_info.value.status_code == 403
    assert await get_balance(db, user.id) == 0
    db.expire_all()
    assert (await db.get(Purchase, purchase.id)).payment_status == "waiting"


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(db):
    payload, _ = _ipn()
    with pytest.raises(InvalidInputError):
        await payments.handle_webhook(db, None, payload, secret=SECRET)


@pytest.mark.asyncio
async def test_missing_secret_is_a_configuration_error(db):
    payload, signature = _ipn()
    with pytest.raises(ConfigurationError):
        await payments.handle_webhook(db, signature, payload, secret="")


@pytest.mark.asyncio
async def test_unknown_purchase_is_not_found(db):
    payload, signature = _ipn(invoice_id="nope")
    with pytest.raises(NotFoundError):
        await payments.handle_webhook(db, signature, payload, secret=SECRET)


@pytest.mark.asyncio
async def test_create_invoice_records_pending_purchase(db, make_user, monkeypatch):
    from mediagen.config import settings

    monkeypatch.setattr(settings, "nowpayments_api_key", "np-key")
    user = await make_user()
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["api_key"] = request.headers["x-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": 4522625843, "invoice_url": "https://nowpayments.test/i/4522625843"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        purchase, invoice_url = await payments.create_invoice(
            db, client, user, "popular", base_url="https://app.test/"
        )
    await db.commit()

    assert invoice_url == "https://nowpayments.test/i/4522625843"
    assert purchase.invoice_id == "4522625843"
    assert purchase.credits_amount == 10000
    assert purchase.payment_status == "waiting"
    assert seen["api_key"] == "np-key"
    assert seen["body"]["price_amount"] == 9.99
    assert seen["body"]["ipn_callback_url"] == "https://app.test/payments/ipn"


@pytest.mark.asyncio
async def test_create_invoice_rejects_unknown_package(db, make_user, http_client):
    user = await make_user()
    with pytest.raises(InvalidInputError):
        await payments.create_invoice(db, http_client, user, "platinum")


@pytest.mark.asyncio
async def test_create_invoice_upstream_failure(db, make_user, http_client, monkeypatch):
    from mediagen.config import settings

    monkeypatch.setattr(settings, "nowpayments_api_key", "np-key")
    user = await make_user()

    with pytest.raises(AppError) as exc_info:
        await payments.create_invoice(db, http_client, user, "starter")
    assert exc_info.value.status_code == 502
