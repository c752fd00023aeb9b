import enum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from mediagen.db.base import Base, TimestampMixin, UUIDMixin


class UserTier(str, enum.Enum):
    FREE = "FREE"
    PAID = "PAID"


class User(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )

    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    # Written only by mediagen.ledger.service; every change has a ledger row.
    credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tier: Mapped[UserTier] = mapped_column(Enum(UserTier), nullable=False, default=UserTier.FREE)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
