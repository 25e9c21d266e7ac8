"""
Enums for domain models.
Enums provide type safety and clarity. Validation for categorical fields.
"""

import enum


class GrantStatus(str, enum.Enum):
    """Access grant request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class StreamStatus(str, enum.Enum):
    """Realtime avatar session lifecycle states."""

    CREATED = "created"
    STARTED = "started"
    CLOSED = "closed"


class ShelfTier(str, enum.Enum):
    """Catalog shelf tiers. ULTRA items require an owner grant."""

    LOWER = "lower"
    TOP = "top"
    ULTRA = "ultra"


class CatalogSegmentKey(str, enum.Enum):
    """Named partitions of the beverage catalog."""

    SPIRITS = "spirits"
    COCKTAILS = "cocktails"
    WINES = "wines"
    BEERS = "beers"
    MOCKTAILS = "mocktails"
    NON_ALCOHOLIC = "non_alcoholic"


class MessageRole(str, enum.Enum):
    """Author of a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"


class NotificationKind(str, enum.Enum):
    """Owner notification event kinds."""

    GRANT_REQUESTED = "grant_requested"
    GRANT_RESOLVED = "grant_resolved"
    GRANT_REVOKED = "grant_revoked"
