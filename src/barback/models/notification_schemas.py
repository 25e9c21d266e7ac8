"""Pydantic schemas for owner notifications."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationRead(BaseModel):
    id: str
    kind: str
    created_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)
    title: str = ""
    message: str = ""
    priority: str = "medium"
    read: bool = False

    model_config = ConfigDict(from_attributes=True)


class NotificationList(BaseModel):
    notifications: list[NotificationRead]
    unread_count: int


class UnreadCount(BaseModel):
    unread_count: int


class MarkReadResult(BaseModel):
    marked: int
    unread_count: int
