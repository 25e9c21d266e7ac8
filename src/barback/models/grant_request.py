"""GrantRequest model: time-boxed owner authorization for an ultra shelf item."""

import uuid
from datetime import datetime

from sqlalchemy import Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from barback.core.db import Base
from barback.models.enums import GrantStatus
from barback.utils.datetime import now_utc


class GrantRequest(Base):
    """Access grant request for one (session, item) pair."""

    __tablename__ = "grant_requests"
    __table_args__ = (
        # At most one pending request per session/item, enforced by the store
        Index(
            "uq_grant_requests_one_pending",
            "session_id",
            "item_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_grant_requests_session_item", "session_id", "item_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    requester_name: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=GrantStatus.PENDING.value,
        index=True,
    )

    requested_at: Mapped[datetime] = mapped_column(nullable=False, default=now_utc)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)

    resolved_by: Mapped[str] = mapped_column(String(100), nullable=False, default="owner")
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<GrantRequest(id={self.id}, session_id={self.session_id}, "
            f"item_id={self.item_id}, status={self.status})>"
        )
