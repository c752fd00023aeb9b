from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from mediagen.db.base import Base, TimestampMixin, UpdatedAtMixin


class AppSetting(TimestampMixin, UpdatedAtMixin, Base):
    """Runtime switches an admin can flip without a deploy."""
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[dict] = mapped_column(JSON, nullable=False)
