"""Pydantic schemas for realtime avatar streams."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StreamCreate(BaseModel):
    """Optional avatar image to animate; the configured default otherwise."""

    avatar_source: str | None = Field(None, max_length=2000)


class StreamCreated(BaseModel):
    session_id: str
    stream_id: str
    offer: dict[str, Any]
    ice_servers: list[dict[str, Any]] = Field(default_factory=list)


class StreamStart(BaseModel):
    answer: dict[str, Any]


class IceCandidate(BaseModel):
    candidate: str | None = None
    sdpMid: str | None = None
    sdpMLineIndex: int | None = None


class IceResult(BaseModel):
    forwarded: bool


class StreamMessage(BaseModel):
    text: str = Field(..., min_length=1, max_length=4000)
    requester_id: str | None = Field(None, max_length=128)


class StreamReply(BaseModel):
    """Reply for one turn; ``dispatched`` is False when the avatar could not speak it."""

    session_id: str
    conversation_id: int
    reply: str
    model: str
    usage: dict[str, int] = Field(default_factory=dict)
    dispatched: bool
    segments: list[str] = Field(default_factory=list)


class StreamRead(BaseModel):
    id: str
    status: str
    created_at: datetime
    started_at: datetime | None = None
    last_activity: datetime
    avatar_source: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CloseResult(BaseModel):
    session_id: str
    closed: bool


class SweepResult(BaseModel):
    closed: int
    remaining: int
