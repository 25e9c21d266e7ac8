"""Pydantic schemas for the access grant API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GrantRequestCreate(BaseModel):
    """Schema for a guest asking for an ultra shelf item."""

    session_id: str = Field(..., min_length=1, max_length=128)
    item_id: str = Field(..., min_length=1, max_length=64)
    requester_name: str = Field("Guest", min_length=1, max_length=200)

    @field_validator("session_id", "item_id", "requester_name")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class GrantResolve(BaseModel):
    """Owner decision on a pending request."""

    approved: bool
    note: str = Field("", max_length=1000)


class GrantRead(BaseModel):
    """Schema for reading a grant request."""

    id: str
    session_id: str
    item_id: str
    requester_name: str
    status: str
    requested_at: datetime
    resolved_at: datetime | None = None
    expires_at: datetime
    resolved_by: str
    note: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AuthorizationCheck(BaseModel):
    session_id: str
    item_id: str
    authorized: bool


class RevokeResult(BaseModel):
    session_id: str
    item_id: str
    revoked: bool


class GrantStats(BaseModel):
    """Request counts per status."""

    pending: int
    approved: int
    denied: int
    total: int
