import enum
import uuid

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mediagen.db.base import Base, TimestampMixin, UUIDMixin


class OperationType(str, enum.Enum):
    IMAGE = "IMAGE"
    EDIT = "EDIT"
    VIDEO_3S = "VIDEO_3S"
    VIDEO_5S = "VIDEO_5S"
    BONUS = "BONUS"
    CRYPTO_PURCHASE = "CRYPTO_PURCHASE"
    ADMIN_GRANT = "ADMIN_GRANT"
    REFUND = "REFUND"


class LedgerEntry(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "credit_ledger"
    __table_args__ = (
        Index("ix_credit_ledger_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    # Signed integer: positive = credit in, negative = charge
    delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    operation_type: Mapped[OperationType] = mapped_column(Enum(OperationType), nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
