"""Read-through, TTL-bound cache of catalog segments.

Every segment is refreshed single-flight: concurrent misses on the same key
await one shared load task, so a stampede on an expired segment costs a
single store read. A failed refresh keeps serving the previous items
(stale-while-revalidate) and only raises when nothing was ever loaded.

Change notifications are optional. When a feed is attached the cache
invalidates segments as the store reports writes; without one it falls back
to TTL expiry, which is the consistency floor either way.
"""

import asyncio
import os
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Sequence

from barback.core.logging import get_logger
from barback.utils.datetime import Clock, now_utc

logger = get_logger(__name__)

CATALOG_CACHE_TTL_SECONDS = int(os.getenv("CATALOG_CACHE_TTL_SECONDS", "300"))

SegmentLoader = Callable[[str], Awaitable[Sequence[Any]]]


class ChangeFeed(Protocol):
    """Per-segment write notifications. Payload-free: a call only means "changed"."""

    def subscribe(self, segment: str, callback: Callable[[str], None]) -> Callable[[], None]:
        ...


@dataclass(frozen=True)
class CatalogSegment:
    """Snapshot of one segment. Replaced wholesale, never edited in place."""

    key: str
    items: tuple[Any, ...]
    refreshed_at: datetime
    ttl: timedelta
    stale: bool = False

    def is_fresh(self, now: datetime) -> bool:
        return not self.stale and now - self.refreshed_at < self.ttl

    def age(self, now: datetime) -> timedelta:
        return now - self.refreshed_at


class CatalogCache:
    """Owns every cached CatalogSegment for the process."""

    def __init__(
        self,
        loader: SegmentLoader,
        segment_keys: Iterable[str] = (),
        ttl_seconds: int = CATALOG_CACHE_TTL_SECONDS,
        clock: Clock = now_utc,
    ):
        self._loader = loader
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._known_keys: set[str] = set(segment_keys)
        self._segments: dict[str, CatalogSegment] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        # Bumped by invalidate(); a load that started under an older
        # generation stores its result already marked stale.
        self._generations: dict[str, int] = {}
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def known_keys(self) -> list[str]:
        return sorted(self._known_keys | set(self._segments))

    def peek(self, key: str) -> Optional[CatalogSegment]:
        """Current snapshot without triggering a load."""
        return self._segments.get(key)

    async def get(self, key: str) -> list[Any]:
        """Return the freshest known items, loading synchronously on miss or expiry."""
        self._known_keys.add(key)
        segment = self._segments.get(key)
        if segment is not None and segment.is_fresh(self._clock()):
            return list(segment.items)
        return list(await self._refresh(key))

    def invalidate(self, key: str) -> None:
        """Force the next get() for this segment to reload."""
        self._generations[key] = self._generations.get(key, 0) + 1
        segment = self._segments.get(key)
        if segment is not None and not segment.stale:
            self._segments[key] = replace(segment, stale=True)
        logger.debug("catalog_cache.invalidated", segment=key)

    async def refresh_all(self) -> int:
        """Eagerly reload every known segment. Returns how many loads succeeded."""
        keys = self.known_keys
        if not keys:
            return 0
        results = await asyncio.gather(
            *(self._refresh(key) for key in keys), return_exceptions=True
        )
        refreshed = 0
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                logger.warning("catalog_cache.refresh_all_failed", segment=key, error=str(result))
            else:
                refreshed += 1
        logger.info("catalog_cache.refreshed_all", segments=len(keys), refreshed=refreshed)
        return refreshed

    def attach_change_feed(self, feed: Optional[ChangeFeed]) -> bool:
        """Subscribe invalidate() to write notifications for every known segment.

        Returns False when no feed (or no working subscription) is available;
        the cache then relies on TTL alone.
        """
        if feed is None:
            logger.info("catalog_cache.change_feed_absent", message="TTL-only consistency")
            return False

        attached = False
        for key in self.known_keys:
            try:
                self._unsubscribers.append(feed.subscribe(key, self.invalidate))
                attached = True
            except Exception as exc:
                logger.warning(
                    "catalog_cache.change_feed_unavailable", segment=key, error=str(exc)
                )
        return attached

    async def close(self) -> None:
        """Drop feed subscriptions and wait out in-flight loads."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        pending = list(self._inflight.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _refresh(self, key: str) -> tuple[Any, ...]:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._load(key), name=f"catalog-refresh:{key}")
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._load_finished(key, done))
        # shield: one cancelled caller must not cancel the load the others wait on
        return await asyncio.shield(task)

    def _load_finished(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Retrieve so an exception nobody awaited does not warn at GC time
            task.exception()

    async def _load(self, key: str) -> tuple[Any, ...]:
        generation = self._generations.get(key, 0)
        started_at = self._clock()
        try:
            items = tuple(await self._loader(key))
        except Exception as exc:
            previous = self._segments.get(key)
            if previous is None:
                logger.error("catalog_cache.refresh_failed", segment=key, error=str(exc))
                raise
            logger.warning(
                "catalog_cache.serving_stale",
                segment=key,
                error=str(exc),
                age_seconds=int(previous.age(self._clock()).total_seconds()),
            )
            return previous.items

        self._segments[key] = CatalogSegment(
            key=key,
            items=items,
            refreshed_at=started_at,
            ttl=self._ttl,
            stale=self._generations.get(key, 0) != generation,
        )
        logger.debug("catalog_cache.refreshed", segment=key, items=len(items))
        return items
