import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from mediagen.ledger.models import OperationType


class BalanceResponse(BaseModel):
    user_id: uuid.UUID
    credits: int


class LedgerEntryResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    user_id: uuid.UUID
    delta: int
    balance_after: int
    operation_type: OperationType
    description: str | None = None
    metadata: dict | None = Field(default=None, validation_alias="metadata_")
    created_at: datetime


class GrantCreditsRequest(BaseModel):
    email: EmailStr
    amount: int = Field(gt=0)
    reason: str | None = None
    idempotency_key: str | None = None


class DiscrepancyResponse(BaseModel):
    user_id: uuid.UUID
    current_balance: int
    ledger_balance: int
    difference: int


class ReconciliationResponse(BaseModel):
    total_users: int
    discrepancies: list[DiscrepancyResponse]
