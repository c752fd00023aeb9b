import uuid
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mediagen.db.base import Base, TimestampMixin, UpdatedAtMixin, UUIDMixin


class Purchase(UUIDMixin, TimestampMixin, UpdatedAtMixin, Base):
    """A crypto top-up. Created with the invoice, updated by every IPN delivery."""
    __tablename__ = "crypto_purchases"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    package_id: Mapped[str] = mapped_column(String(32), nullable=False)
    invoice_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    credits_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="waiting")
    pay_currency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    actually_paid: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    # Flips to True exactly once; a redelivered webhook never credits again.
    credited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
