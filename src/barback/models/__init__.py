"""Domain models package."""

from barback.models.catalog_item import CatalogItem
from barback.models.conversation import Conversation, ConversationMessage
from barback.models.enums import (
    CatalogSegmentKey,
    GrantStatus,
    MessageRole,
    NotificationKind,
    ShelfTier,
    StreamStatus,
)
from barback.models.grant_request import GrantRequest
from barback.models.grant_schemas import GrantRead, GrantRequestCreate, GrantResolve
from barback.models.stream_session import StreamSession

__all__ = [
    "CatalogItem",
    "CatalogSegmentKey",
    "Conversation",
    "ConversationMessage",
    "GrantRead",
    "GrantRequest",
    "GrantRequestCreate",
    "GrantResolve",
    "GrantStatus",
    "MessageRole",
    "NotificationKind",
    "ShelfTier",
    "StreamSession",
    "StreamStatus",
]
