"""StreamSession model: durable metadata for realtime avatar sessions."""

from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from barback.core.db import Base
from barback.models.enums import StreamStatus
from barback.utils.datetime import now_utc


class StreamSession(Base):
    """Persisted record of a session. Transport handles never leave the process."""

    __tablename__ = "stream_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    provider_stream_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    avatar_source: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=StreamStatus.CREATED.value,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=now_utc)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(nullable=False, default=now_utc)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    close_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<StreamSession(id={self.id}, status={self.status})>"
