"""Catalog store access: segment loads and ORM-backed change notifications."""

import itertools
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import event, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Session

from barback.core.db import store_errors
from barback.core.logging import get_logger
from barback.models.catalog_item import CatalogItem
from barback.models.enums import CatalogSegmentKey, ShelfTier

logger = get_logger(__name__)

# segment -> (ordering, row limit)
SEGMENT_QUERIES = {
    CatalogSegmentKey.SPIRITS.value: (CatalogItem.price.desc(), 15),
    CatalogSegmentKey.COCKTAILS.value: (CatalogItem.rating.desc(), 10),
    CatalogSegmentKey.WINES.value: (CatalogItem.rating.desc(), 8),
    CatalogSegmentKey.BEERS.value: (CatalogItem.rating.desc(), 8),
    CatalogSegmentKey.MOCKTAILS.value: (CatalogItem.rating.desc(), 8),
    CatalogSegmentKey.NON_ALCOHOLIC.value: (CatalogItem.rating.desc(), 8),
}

DEFAULT_SEGMENT_KEYS = tuple(SEGMENT_QUERIES)


@dataclass(frozen=True)
class CatalogEntry:
    """Immutable snapshot of a CatalogItem, safe to share across requests."""

    id: str
    segment: str
    name: str
    brand: Optional[str] = None
    type: Optional[str] = None
    sub_type: Optional[str] = None
    origin: Optional[str] = None
    age: Optional[int] = None
    vintage: Optional[int] = None
    price: Decimal = Decimal("0.00")
    rating: float = 0.0
    shelf_tier: str = ShelfTier.LOWER.value
    description: Optional[str] = None

    @classmethod
    def from_model(cls, item: CatalogItem) -> "CatalogEntry":
        return cls(
            id=item.id,
            segment=item.segment,
            name=item.name,
            brand=item.brand,
            type=item.type,
            sub_type=item.sub_type,
            origin=item.origin,
            age=item.age,
            vintage=item.vintage,
            price=item.price,
            rating=item.rating,
            shelf_tier=item.shelf_tier,
            description=item.description,
        )

    @property
    def display_name(self) -> str:
        return f"{self.brand} {self.name}" if self.brand else self.name

    @property
    def is_restricted(self) -> bool:
        return self.shelf_tier == ShelfTier.ULTRA.value


class CatalogLoader:
    """Loads one segment's available items from the store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def __call__(self, segment: str) -> list[CatalogEntry]:
        ordering, limit = SEGMENT_QUERIES.get(segment, (CatalogItem.rating.desc(), 8))
        stmt = (
            select(CatalogItem)
            .where(CatalogItem.segment == segment, CatalogItem.is_available.is_(True))
            .order_by(ordering, CatalogItem.id)
            .limit(limit)
        )
        async with store_errors(f"catalog load {segment}"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [CatalogEntry.from_model(item) for item in result.scalars().all()]


async def get_catalog_item(session: AsyncSession, item_id: str) -> Optional[CatalogItem]:
    """Direct lookup, bypassing the cache."""
    async with store_errors("catalog item lookup"):
        return await session.get(CatalogItem, item_id)


_CHANGED_SEGMENTS = "barback.catalog_changed_segments"


class CatalogChangeFeed:
    """Payload-free per-segment notifications for committed catalog writes.

    Hooks the ORM session events for every Session in the process: flushed
    CatalogItem rows record their segment(s) on the session, and the segments
    are announced once the transaction commits. Rolled-back work is dropped.
    Writes that bypass the ORM unit of work (bulk UPDATE, other processes)
    are invisible here and are covered by the cache TTL.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[[str], None]]] = defaultdict(list)
        self._installed = False

    def install(self) -> None:
        if self._installed:
            return
        event.listen(Session, "after_flush", self._after_flush)
        event.listen(Session, "after_commit", self._after_commit)
        event.listen(Session, "after_soft_rollback", self._after_rollback)
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        event.remove(Session, "after_flush", self._after_flush)
        event.remove(Session, "after_commit", self._after_commit)
        event.remove(Session, "after_soft_rollback", self._after_rollback)
        self._installed = False

    def subscribe(self, segment: str, callback: Callable[[str], None]) -> Callable[[], None]:
        if not self._installed:
            raise RuntimeError("Catalog change feed is not installed")
        self._subscribers[segment].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[segment]:
                self._subscribers[segment].remove(callback)

        return unsubscribe

    def notify(self, segment: str) -> None:
        for callback in list(self._subscribers.get(segment, ())):
            try:
                callback(segment)
            except Exception:
                logger.exception("catalog_feed.subscriber_failed", segment=segment)

    def _after_flush(self, session: Session, flush_context) -> None:
        changed = session.info.setdefault(_CHANGED_SEGMENTS, set())
        for obj in itertools.chain(session.new, session.dirty, session.deleted):
            if not isinstance(obj, CatalogItem):
                continue
            if obj.segment:
                changed.add(obj.segment)
            # A row moved between segments invalidates the old one too
            history = inspect(obj).attrs.segment.history
            changed.update(value for value in history.deleted if value)

    def _after_commit(self, session: Session) -> None:
        changed = session.info.pop(_CHANGED_SEGMENTS, None)
        for segment in sorted(changed or ()):
            self.notify(segment)

    def _after_rollback(self, session: Session, previous_transaction) -> None:
        session.info.pop(_CHANGED_SEGMENTS, None)
