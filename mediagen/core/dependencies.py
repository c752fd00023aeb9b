from typing import Annotated

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.admin.service import require_admin
from mediagen.auth.models import User
from mediagen.auth.service import resolve_user
from mediagen.config import settings
from mediagen.core.exceptions import UnauthorizedError
from mediagen.core.rate_limit import client_ip, enforce, get_rate_limiter
from mediagen.db.session import async_session_factory
from mediagen.generation.service import GenerationOrchestrator
from mediagen.media.storage import ObjectStore, get_object_store
from mediagen.providers.credentials import CredentialPool

security_scheme = HTTPBearer(auto_error=False)

_http_client: httpx.AsyncClient | None = None
_orchestrator: GenerationOrchestrator | None = None


async def get_db() -> AsyncSession:  # type: ignore[misc]
    async with async_session_factory() as session:
        yield session


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    if credentials is None:
        raise UnauthorizedError()
    user = await resolve_user(db, credentials.credentials)
    # End the lookup transaction so handlers can open their own with db.begin().
    await db.commit()
    return user


async def get_admin_user(user: Annotated[User, Depends(get_current_user)]) -> User:
    require_admin(user)
    return user


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=settings.media_fetch_timeout_seconds)
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def get_orchestrator() -> GenerationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = GenerationOrchestrator(
            session_factory=async_session_factory,
            store=get_object_store(),
            http_client=get_http_client(),
            credentials=CredentialPool.from_settings(settings),
        )
    return _orchestrator


async def generation_rate_limit(
    request: Request, user: Annotated[User, Depends(get_current_user)]
) -> None:
    limiter = get_rate_limiter()
    await enforce(limiter, "ip", client_ip(request), settings.ip_rate_limit)
    await enforce(limiter, "user", str(user.id), settings.user_rate_limit)


DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(get_admin_user)]
Store = Annotated[ObjectStore, Depends(get_object_store)]
HttpClient = Annotated[httpx.AsyncClient, Depends(get_http_client)]
Orchestrator = Annotated[GenerationOrchestrator, Depends(get_orchestrator)]
