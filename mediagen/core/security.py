import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from mediagen.config import settings


def create_access_token(
    subject: str, claims: dict[str, Any] | None = None, expires_minutes: int = 60
) -> str:
    """Issue a session token. The identity provider normally does this; kept for dev and tests."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {**(claims or {}), "sub": subject, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Returns the token claims or None if invalid."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def canonical_json(payload: Any) -> str:
    """Serialize with every object's keys sorted, at any depth, and no whitespace.

    Intermediaries may reorder keys in transit; signing this form makes the
    signature insensitive to that.
    """
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sign_payload(payload: Any, secret: str) -> str:
    return hmac.new(
        secret.encode(), canonical_json(payload).encode(), hashlib.sha512
    ).hexdigest()


def verify_signature(payload: Any, signature: str, secret: str) -> bool:
    return hmac.compare_digest(sign_payload(payload, secret), signature.strip().lower())
