"""
Generation orchestrator.

Flow (each phase in its own short transaction, no lock held across I/O):
  1. Idempotency lookup → cached result or 409
  2. Resolve operation + model → 400 if unknown
  3. Claim the idempotency key (unique per user)
  4. Atomic charge + job row (compare-and-swap, retried on contention)
  5. Provider call under retry/failover (+ polling)
  6. Re-host the media, record it, mark job + key succeeded
  7. On failure: job + key failed. Charged credits are NOT refunded.
"""
import logging
import uuid
from datetime import timedelta
from typing import Any, Callable

import httpx
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediagen.admin import service as admin_service
from mediagen.config import settings
from mediagen.core.exceptions import (
    AppError,
    ContentionError,
    DuplicateRequestError,
    GenerationFailedError,
    InsufficientCreditsError,
    InvalidInputError,
    OperationDisabledError,
    StorageError,
)
from mediagen.db.base import utcnow
from mediagen.generation.catalog import Catalog, Operation
from mediagen.generation.models import GenerationJob, JobStatus
from mediagen.generation.schemas import GenerateRequest
from mediagen.idempotency import service as idempotency
from mediagen.idempotency.models import IdempotencyStatus
from mediagen.ledger import service as ledger_service
from mediagen.media import service as media_service
from mediagen.media.storage import ObjectStore
from mediagen.providers.base import BaseProvider, GenerationRequest, ModelConfig, ProviderResult
from mediagen.providers.credentials import CredentialPool
from mediagen.providers.errors import ProviderFailure
from mediagen.providers.registry import get_provider
from mediagen.providers.retry import RetryPolicy

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "The generation service is busy right now. Please try again in a moment."
FAILED_MESSAGE = "Generation failed. Please try again."

# Upstream text matching these is never shown to users.
_INTERNAL_PATTERNS = (
    "internal",
    "loading",
    "warming",
    "initializing",
    "starting",
    "timed out",
    "timeout",
    "quota",
    "rate limit",
    "unreachable",
)


def public_message(exc: ProviderFailure) -> str:
    text = f"{exc.code} {exc.message}".lower()
    if any(pattern in text for pattern in _INTERNAL_PATTERNS) or exc.retryable:
        return BUSY_MESSAGE
    return FAILED_MESSAGE


class GenerationOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: ObjectStore,
        http_client: httpx.AsyncClient,
        credentials: CredentialPool,
        retry_policy: RetryPolicy | None = None,
        catalog: Catalog | None = None,
        provider_lookup: Callable[[str], BaseProvider] = get_provider,
    ):
        self._session_factory = session_factory
        self._store = store
        self._http = http_client
        self._credentials = credentials
        self._retry = retry_policy or RetryPolicy(
            max_retries=settings.default_max_retries,
            backoff_seconds=settings.retry_backoff_seconds,
            timeout_seconds=settings.default_timeout_seconds,
        )
        self.catalog = catalog or Catalog()
        self._provider_lookup = provider_lookup

    async def handle(
        self,
        user_id: uuid.UUID,
        request: GenerateRequest,
    ) -> dict[str, Any]:
        key = request.idempotency_key

        async with self._session_factory() as db:
            if not await admin_service.is_generation_enabled(db):
                raise OperationDisabledError()
            if key is not None:
                cached = await self._cached_or_conflict(db, user_id, key)
                if cached is not None:
                    return cached

        operation = self.catalog.operation(request.operation)
        if operation is None:
            raise InvalidInputError(f"Unknown operation: {request.operation}")
        model = self.catalog.model_for(operation, request.model)
        if model is None:
            raise InvalidInputError(f"Model not available for {operation.kind}: {request.model}")
        if operation.requires_image and not request.image_url:
            raise InvalidInputError("Please upload a valid image")
        if request.duration is not None and int(request.duration) != operation.duration:
            raise InvalidInputError(f"Duration {request.duration}s is not available for {operation.kind}")

        if key is not None:
            try:
                async with self._session_factory() as db:
                    async with db.begin():
                        await idempotency.begin(db, user_id, key, operation.kind)
            except DuplicateRequestError:
                # Lost the race: hand back whatever the winner has produced so far.
                async with self._session_factory() as db:
                    cached = await self._cached_or_conflict(db, user_id, key)
                if cached is not None:
                    return cached
                raise

        job_id, balance = await self._charge(user_id, key, operation, model)

        try:
            result = await self._generate(request, operation, model)
            stored = await self._rehost(result, user_id)
        except ProviderFailure as exc:
            logger.error(
                f"Generation job {job_id} failed on {model.id}: {exc.code} {exc.message} "
                f"detail={exc.detail!r}"
            )
            message = public_message(exc)
            await self._mark_failed(job_id, user_id, key, f"{exc.code}: {exc.message}", message)
            raise GenerationFailedError(message, remaining_credits=balance) from exc
        except AppError as exc:
            logger.error(f"Generation job {job_id} failed: {exc.message}")
            await self._mark_failed(job_id, user_id, key, exc.message, exc.message)
            raise
        except Exception as exc:
            logger.exception(f"Generation job {job_id} failed unexpectedly on {model.id}")
            await self._mark_failed(job_id, user_id, key, f"{type(exc).__name__}: {exc}", FAILED_MESSAGE)
            raise GenerationFailedError(FAILED_MESSAGE, remaining_credits=balance) from exc

        return await self._finish(job_id, user_id, key, request, operation, model, result, stored, balance)

    async def _cached_or_conflict(
        self, db: AsyncSession, user_id: uuid.UUID, key: str
    ) -> dict[str, Any] | None:
        record = await idempotency.get(db, user_id, key)
        if record is None:
            return None
        if record.status == IdempotencyStatus.SUCCEEDED and record.result:
            logger.info(f"Returning cached result for key {key}")
            return {**record.result, "cached": True}
        if record.status == IdempotencyStatus.STARTED:
            raise DuplicateRequestError(key, "This request is already being processed")
        raise DuplicateRequestError(key, "This request already failed. Please retry with a new key.")

    async def _charge(
        self,
        user_id: uuid.UUID,
        key: str | None,
        operation: Operation,
        model: ModelConfig,
    ) -> tuple[uuid.UUID, int]:
        async def charge_and_open_job() -> tuple[uuid.UUID, int]:
            async with self._session_factory() as db:
                async with db.begin():
                    entry = await ledger_service.charge(
                        db,
                        user_id,
                        operation.cost,
                        operation.operation_type,
                        description=f"{model.name} {operation.kind} generation",
                        idempotency_key=f"charge:{user_id}:{key}" if key else None,
                        metadata={"model": model.id, "idempotency_key": key},
                    )
                    job = GenerationJob(
                        user_id=user_id,
                        operation=operation.kind,
                        model_id=model.id,
                        cost=operation.cost,
                        status=JobStatus.PROCESSING,
                        idempotency_key=key,
                        ledger_entry_id=entry.id,
                        provider=model.provider,
                    )
                    db.add(job)
                    await db.flush()
                    return job.id, entry.balance_after

        try:
            return await ledger_service.retry_on_contention(
                charge_and_open_job, attempts=settings.ledger_contention_retries
            )
        except (InsufficientCreditsError, ContentionError) as exc:
            if key is not None:
                await self._complete_key(
                    user_id, key, IdempotencyStatus.FAILED, {"error": exc.message}
                )
            raise

    async def _generate(
        self, request: GenerateRequest, operation: Operation, model: ModelConfig
    ) -> ProviderResult:
        provider = self._provider_lookup(model.provider)
        policy = self._retry.with_limits(model.max_retries, model.timeout_seconds)
        generation_request = GenerationRequest(
            prompt=request.prompt,
            negative_prompt=request.negative_prompt,
            width=request.width,
            height=request.height,
            steps=request.num_inference_steps,
            guidance=request.guidance_scale,
            seed=request.seed,
            image_url=request.image_url,
            duration=operation.duration,
        )
        return await policy.execute(
            lambda credential: provider.generate(generation_request, model, credential),
            self._credentials,
            model.credential_family,
        )

    async def _rehost(self, result: ProviderResult, user_id: uuid.UUID) -> media_service.StoredObject:
        if result.content is not None:
            return await media_service.ingest_bytes(
                self._store, result.content, result.content_type or "image/png", user_id
            )
        if result.media_url:
            return await media_service.ingest(self._http, self._store, result.media_url, user_id)
        raise StorageError("Provider returned no media")

    async def _finish(
        self,
        job_id: uuid.UUID,
        user_id: uuid.UUID,
        key: str | None,
        request: GenerateRequest,
        operation: Operation,
        model: ModelConfig,
        result: ProviderResult,
        stored: media_service.StoredObject,
        balance: int,
    ) -> dict[str, Any]:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    media = await media_service.record_temp_media(
                        db,
                        user_id,
                        stored,
                        media_type=operation.media_type,
                        prompt=request.prompt,
                        metadata={
                            "model": model.id,
                            "operation": operation.kind,
                            "provider": result.provider,
                        },
                    )
                    response = {
                        "media_id": str(media.id),
                        "media_url": stored.url,
                        "remaining_credits": balance,
                        "credits_used": operation.cost,
                        "operation": operation.kind,
                        "model": model.id,
                    }
                    await db.execute(
                        update(GenerationJob)
                        .where(GenerationJob.id == job_id)
                        .values(
                            status=JobStatus.COMPLETED,
                            result_url=stored.url,
                            media_id=media.id,
                            provider=result.provider,
                        )
                    )
                    if key is not None:
                        await idempotency.complete(
                            db, user_id, key, IdempotencyStatus.SUCCEEDED, response
                        )
        except SQLAlchemyError as exc:
            logger.error(f"Recording media for job {job_id} failed: {exc}")
            await media_service.delete_objects(self._store, [stored.storage_key])
            await self._mark_failed(job_id, user_id, key, str(exc), StorageError().message)
            raise StorageError() from exc

        try:
            async with self._session_factory() as db:
                await media_service.prune_temp_media(db, self._store, user_id)
        except SQLAlchemyError as exc:
            logger.warning(f"Pruning temp media for {user_id} failed: {exc}")

        logger.info(f"Generation job {job_id} completed for {user_id} ({model.id})")
        return {**response, "cached": False}

    async def _complete_key(
        self,
        user_id: uuid.UUID,
        key: str,
        status: IdempotencyStatus,
        result: dict[str, Any],
    ) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                await idempotency.complete(db, user_id, key, status, result)

    async def _mark_failed(
        self,
        job_id: uuid.UUID,
        user_id: uuid.UUID,
        key: str | None,
        detail: str,
        public: str,
    ) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                await db.execute(
                    update(GenerationJob)
                    .where(GenerationJob.id == job_id)
                    .values(status=JobStatus.FAILED, error_message=detail[:2000])
                )
                if key is not None:
                    await idempotency.complete(
                        db, user_id, key, IdempotencyStatus.FAILED, {"error": public}
                    )


async def fail_orphaned_jobs(db: AsyncSession, older_than_minutes: int | None = None) -> int:
    """
    Jobs still `processing` long after any attempt could have finished were
    abandoned by a crashed or cancelled request. Mark them (and their keys)
    failed; credits stay charged, matching the live failure path.
    """
    minutes = older_than_minutes if older_than_minutes is not None else settings.orphaned_job_minutes
    cutoff = utcnow() - timedelta(minutes=minutes)
    result = await db.execute(
        select(GenerationJob.id, GenerationJob.user_id, GenerationJob.idempotency_key).where(
            GenerationJob.status == JobStatus.PROCESSING,
            GenerationJob.updated_at < cutoff,
        )
    )
    rows = result.all()
    for job_id, user_id, key in rows:
        await db.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.PROCESSING)
            .values(status=JobStatus.FAILED, error_message="Abandoned while processing")
        )
        if key is not None:
            await idempotency.complete(
                db, user_id, key, IdempotencyStatus.FAILED, {"error": FAILED_MESSAGE}
            )
    await db.commit()
    if rows:
        logger.warning(f"Marked {len(rows)} orphaned generation jobs as failed")
    return len(rows)


async def list_jobs(db: AsyncSession, user_id: uuid.UUID, limit: int = 50) -> list[GenerationJob]:
    result = await db.execute(
        select(GenerationJob)
        .where(GenerationJob.user_id == user_id)
        .order_by(GenerationJob.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
