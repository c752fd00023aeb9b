from fastapi import APIRouter, Query

from mediagen.core.dependencies import CurrentUser, DbSession
from mediagen.ledger import service
from mediagen.ledger.schemas import BalanceResponse, LedgerEntryResponse

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("", response_model=BalanceResponse)
async def get_balance(db: DbSession, user: CurrentUser) -> BalanceResponse:
    balance = await service.get_balance(db, user.id)
    return BalanceResponse(user_id=user.id, credits=balance)


@router.get("/ledger", response_model=list[LedgerEntryResponse])
async def list_ledger(
    db: DbSession,
    user: CurrentUser,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[LedgerEntryResponse]:
    entries = await service.list_entries(db, user.id, limit=limit, offset=offset)
    return [LedgerEntryResponse.model_validate(e) for e in entries]
