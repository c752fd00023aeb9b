import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Index, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mediagen.db.base import Base, TimestampMixin, UpdatedAtMixin, UUIDMixin


class MediaStatus(str, enum.Enum):
    TEMP = "temp"
    SAVED = "saved"


class Media(UUIDMixin, TimestampMixin, UpdatedAtMixin, Base):
    __tablename__ = "media"
    __table_args__ = (
        Index("ix_media_user_status_created", "user_id", "status", "created_at"),
        Index("ix_media_status_expires", "status", "expires_at"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    status: Mapped[MediaStatus] = mapped_column(
        Enum(MediaStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=MediaStatus.TEMP,
    )
    media_type: Mapped[str] = mapped_column(String(32), nullable=False, default="image")
    storage_key: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    # Only set while temp.
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
