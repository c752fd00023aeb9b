"""Tests for token resolution and first-use provisioning."""
import uuid

import pytest
from sqlalchemy import select

from mediagen.config import settings
from mediagen.core.exceptions import UnauthorizedError
from mediagen.core.security import create_access_token
from mediagen.auth.service import provision_user, resolve_user
from mediagen.ledger.models import LedgerEntry, OperationType
from mediagen.ledger.service import get_balance, get_ledger_balance


@pytest.mark.asyncio
async def test_new_subject_is_provisioned_with_signup_bonus(db):
    user_id = uuid.uuid4()
    token = create_access_token(str(user_id), {"email": "New@Example.com", "name": "New User"})

    user = await resolve_user(db, token)

    assert user.id == user_id
    assert user.email == "new@example.com"
    assert user.display_name == "New User"
    assert await get_balance(db, user_id) == settings.signup_bonus_credits
    assert await get_ledger_balance(db, user_id) == settings.signup_bonus_credits

    entry = (await db.execute(select(LedgerEntry).where(LedgerEntry.user_id == user_id))).scalar_one()
    assert entry.operation_type == OperationType.BONUS
    assert entry.idempotency_key == f"signup_bonus:{user_id}"


@pytest.mark.asyncio
async def test_known_subject_is_not_provisioned_again(db):
    user_id = uuid.uuid4()
    token = create_access_token(str(user_id), {"email": "a@example.com"})

    first = await resolve_user(db, token)
    second = await resolve_user(db, token)

    assert first.id == second.id
    assert await get_balance(db, user_id) == settings.signup_bonus_credits


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(db):
    with pytest.raises(UnauthorizedError):
        await resolve_user(db, "not-a-jwt")


@pytest.mark.asyncio
async def test_unknown_subject_without_email_is_rejected(db):
    token = create_access_token(str(uuid.uuid4()))
    with pytest.raises(UnauthorizedError):
        await resolve_user(db, token)


@pytest.mark.asyncio
async def test_non_uuid_subject_is_rejected(db):
    token = create_access_token("user-42", {"email": "a@example.com"})
    with pytest.raises(UnauthorizedError):
        await resolve_user(db, token)


@pytest.mark.asyncio
async def test_bonus_can_be_disabled(db, monkeypatch):
    monkeypatch.setattr(settings, "signup_bonus_credits", 0)

    user = await provision_user(db, uuid.uuid4(), "zero@example.com")

    assert user.credits == 0
    assert await get_ledger_balance(db, user.id) == 0
