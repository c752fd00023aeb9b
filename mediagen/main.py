from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mediagen.admin.router import router as admin_router
from mediagen.auth.router import router as auth_router
from mediagen.core.dependencies import close_http_client
from mediagen.core.exceptions import AppError, RateLimitExceededError
from mediagen.core.logging_setup import configure_logging
from mediagen.core.rate_limit import close_rate_limiter
from mediagen.db.session import engine
from mediagen.generation.router import router as generation_router
from mediagen.ledger.router import router as ledger_router
from mediagen.media.router import router as media_router
from mediagen.payments.router import router as payments_router
from mediagen.providers.registry import close_all as close_providers


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    yield
    await close_providers()
    await close_http_client()
    await close_rate_limiter()
    await engine.dispose()


app = FastAPI(
    title="mediagen",
    version="1.0.0",
    description="Credit-metered AI media generation with provider failover and crypto top-ups.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitExceededError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    content: dict = {"detail": exc.message}
    remaining = getattr(exc, "remaining_credits", None)
    if remaining is not None:
        content["remaining_credits"] = remaining
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0]["msg"].removeprefix("Value error, ") if errors else "Invalid request parameters"
    return JSONResponse(status_code=400, content={"detail": message})


app.include_router(auth_router)
app.include_router(ledger_router)
app.include_router(generation_router)
app.include_router(media_router)
app.include_router(payments_router)
app.include_router(admin_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "1.0.0"}
