from fastapi import APIRouter

from mediagen.admin import service
from mediagen.admin.schemas import SettingsResponse, SettingUpdate
from mediagen.auth.service import get_user_by_email
from mediagen.core.dependencies import AdminUser, DbSession
from mediagen.core.exceptions import NotFoundError
from mediagen.ledger import service as ledger_service
from mediagen.ledger.models import OperationType
from mediagen.ledger.schemas import (
    DiscrepancyResponse,
    GrantCreditsRequest,
    LedgerEntryResponse,
    ReconciliationResponse,
)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/settings", response_model=SettingsResponse)
async def get_settings(db: DbSession, admin: AdminUser) -> SettingsResponse:
    return SettingsResponse(settings=await service.get_all(db))


@router.post("/settings", response_model=SettingsResponse)
async def update_setting(body: SettingUpdate, db: DbSession, admin: AdminUser) -> SettingsResponse:
    async with db.begin():
        await service.set_setting(db, body.key, body.value, changed_by=admin)
    return SettingsResponse(settings=await service.get_all(db))


@router.post("/credits/grant", response_model=LedgerEntryResponse, status_code=201)
async def grant_credits(body: GrantCreditsRequest, db: DbSession, admin: AdminUser) -> LedgerEntryResponse:
    async def apply():
        async with db.begin():
            user = await get_user_by_email(db, body.email)
            if user is None:
                raise NotFoundError("User", body.email)
            return await ledger_service.credit(
                db,
                user.id,
                body.amount,
                OperationType.ADMIN_GRANT,
                description=body.reason or "Admin credit grant",
                idempotency_key=body.idempotency_key,
                metadata={"granted_by": str(admin.id)},
            )

    result = await ledger_service.retry_on_contention(apply)
    return LedgerEntryResponse.model_validate(result.entry)


@router.get("/reconciliation", response_model=ReconciliationResponse)
async def reconciliation(db: DbSession, admin: AdminUser) -> ReconciliationResponse:
    report = await ledger_service.reconcile(db)
    return ReconciliationResponse(
        total_users=report.total_users,
        discrepancies=[
            DiscrepancyResponse(
                user_id=d.user_id,
                current_balance=d.current_balance,
                ledger_balance=d.ledger_balance,
                difference=d.difference,
            )
            for d in report.discrepancies
        ],
    )
