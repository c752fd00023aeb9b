import enum
import uuid

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mediagen.db.base import Base, TimestampMixin, UpdatedAtMixin, UUIDMixin


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationJob(UUIDMixin, TimestampMixin, UpdatedAtMixin, Base):
    """Created together with the charge; terminal state set when the provider call resolves."""
    __tablename__ = "generation_jobs"
    __table_args__ = (
        Index("ix_generation_jobs_status_updated", "status", "updated_at"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    operation: Mapped[str] = mapped_column(String(32), nullable=False)
    model_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cost: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JobStatus.PENDING,
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ledger_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("credit_ledger.id"), nullable=True
    )
    provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    result_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    media_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
