"""
Current-user resolution.

Sessions are issued by the external identity provider as HS256 JWTs whose
`sub` is the user id. A subject we have never seen is provisioned on first
use, provided the token carries an email, and receives the signup bonus
through the ledger like any other credit.
"""
import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.auth.models import User
from mediagen.config import settings
from mediagen.core.exceptions import UnauthorizedError
from mediagen.core.security import decode_access_token
from mediagen.ledger import service as ledger_service
from mediagen.ledger.models import OperationType

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def provision_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    email: str,
    display_name: str | None = None,
    avatar_url: str | None = None,
) -> User:
    """Create the user and grant the signup bonus in one transaction."""
    user = User(
        id=user_id,
        email=email.lower(),
        display_name=display_name,
        avatar_url=avatar_url,
        credits=0,
    )
    db.add(user)
    await db.flush()
    if settings.signup_bonus_credits > 0:
        await ledger_service.credit(
            db,
            user_id,
            settings.signup_bonus_credits,
            OperationType.BONUS,
            description="Signup bonus",
            idempotency_key=f"signup_bonus:{user_id}",
        )
    await db.commit()
    await db.refresh(user)
    logger.info(f"Provisioned user {user_id} with {settings.signup_bonus_credits} bonus credits")
    return user


async def resolve_user(db: AsyncSession, token: str) -> User:
    claims: dict[str, Any] | None = decode_access_token(token)
    if claims is None:
        raise UnauthorizedError("Invalid token")
    try:
        user_id = uuid.UUID(str(claims["sub"]))
    except ValueError:
        raise UnauthorizedError("Invalid token")

    user = await get_user(db, user_id)
    if user is not None:
        return user

    email = claims.get("email")
    if not email:
        raise UnauthorizedError("User not found")
    try:
        return await provision_user(
            db, user_id, email, claims.get("name"), claims.get("picture")
        )
    except IntegrityError:
        # Another request provisioned the same subject first.
        await db.rollback()
        user = await get_user(db, user_id)
        if user is None:
            raise UnauthorizedError("User could not be provisioned")
        return user
