from fastapi import APIRouter, Depends, Query

from mediagen.core.dependencies import CurrentUser, DbSession, Orchestrator, generation_rate_limit
from mediagen.generation.schemas import (
    GenerateRequest,
    GenerateResponse,
    JobResponse,
    ModelInfo,
    OperationInfo,
)
from mediagen.generation.service import list_jobs

router = APIRouter(prefix="/generate", tags=["generation"])


@router.post(
    "",
    response_model=GenerateResponse,
    dependencies=[Depends(generation_rate_limit)],
)
async def generate(
    body: GenerateRequest, user: CurrentUser, orchestrator: Orchestrator
) -> GenerateResponse:
    result = await orchestrator.handle(user.id, body)
    return GenerateResponse.model_validate(result)


@router.get("/models", response_model=list[OperationInfo])
async def list_models(orchestrator: Orchestrator) -> list[OperationInfo]:
    catalog = orchestrator.catalog
    return [
        OperationInfo(
            kind=operation.kind,
            cost=operation.cost,
            default_model=operation.default_model,
            models=[
                ModelInfo(id=m.id, name=m.name, media_type=m.media_type, provider=m.provider)
                for m in catalog.models_for(operation)
            ],
        )
        for operation in catalog.operations.values()
    ]


@router.get("/jobs", response_model=list[JobResponse])
async def jobs(
    db: DbSession, user: CurrentUser, limit: int = Query(default=50, ge=1, le=200)
) -> list[JobResponse]:
    return [JobResponse.model_validate(job) for job in await list_jobs(db, user.id, limit=limit)]
