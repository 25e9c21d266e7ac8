"""Access grant workflow for ultra shelf items.

States are pending, approved and denied. After creation a request moves
exactly once, pending -> approved or pending -> denied; an owner revoke
forces approved -> denied. Nothing ever returns to pending.

Authorization is always re-derived from stored timestamps at read time:
sweep_expired() only reclaims rows and is never needed for correctness.
"""

import asyncio
import os
import weakref
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from barback.core.catalog import get_catalog_item
from barback.core.db import store_errors
from barback.core.errors import (
    AlreadyResolvedError,
    DuplicateRequestError,
    NotFoundError,
    NotRestrictedError,
    RequestExpiredError,
)
from barback.core.logging import get_logger
from barback.core.notifications import NotificationHub
from barback.models.enums import GrantStatus, NotificationKind
from barback.models.grant_request import GrantRequest
from barback.utils.datetime import Clock, now_utc

logger = get_logger(__name__)

GRANT_TTL_SECONDS = int(os.getenv("GRANT_TTL_SECONDS", str(2 * 60 * 60)))

PENDING = GrantStatus.PENDING.value
APPROVED = GrantStatus.APPROVED.value
DENIED = GrantStatus.DENIED.value


def grant_payload(grant: GrantRequest) -> dict[str, Any]:
    """Plain-dict copy of a grant for notifications."""
    return {
        "request_id": grant.id,
        "session_id": grant.session_id,
        "item_id": grant.item_id,
        "requester_name": grant.requester_name,
        "status": grant.status,
        "requested_at": grant.requested_at.isoformat(),
        "resolved_at": grant.resolved_at.isoformat() if grant.resolved_at else None,
        "expires_at": grant.expires_at.isoformat(),
        "note": grant.note,
    }


class GrantWorkflow:
    """Issues, resolves, revokes and expires access grants."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[NotificationHub] = None,
        ttl_seconds: int = GRANT_TTL_SECONDS,
        clock: Clock = now_utc,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        # One lock per (session, item); entries vanish once nobody holds them
        self._locks: "weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def _lock_for(self, session_id: str, item_id: str) -> asyncio.Lock:
        key = (session_id, item_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @staticmethod
    async def _find_outstanding(
        db: AsyncSession, session_id: str, item_id: str, now: datetime
    ) -> Optional[GrantRequest]:
        stmt = (
            select(GrantRequest)
            .where(
                GrantRequest.session_id == session_id,
                GrantRequest.item_id == item_id,
                GrantRequest.status.in_([PENDING, APPROVED]),
                GrantRequest.expires_at > now,
            )
            .order_by(GrantRequest.requested_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def request(self, session_id: str, item_id: str, requester_name: str) -> GrantRequest:
        """Open a pending request for a restricted item.

        Raises NotFoundError for unknown items, NotRestrictedError for items
        outside the ultra shelf, and DuplicateRequestError when the pair
        already has a pending or approved-unexpired request.
        """
        lock = self._lock_for(session_id, item_id)
        async with lock:
            async with store_errors("grant request"):
                async with self._session_factory() as db:
                    item = await get_catalog_item(db, item_id)
                    if item is None:
                        raise NotFoundError("CatalogItem", item_id)
                    if not item.is_restricted:
                        raise NotRestrictedError(item_id, item.shelf_tier)

                    now = self._clock()
                    existing = await self._find_outstanding(db, session_id, item_id, now)
                    if existing is not None:
                        logger.info(
                            "grants.duplicate_request",
                            session_id=session_id,
                            item_id=item_id,
                            existing_id=existing.id,
                            state=existing.status,
                        )
                        raise DuplicateRequestError(existing, existing.status)

                    # Expired but unswept pending rows still occupy the unique index
                    await db.execute(
                        delete(GrantRequest).where(
                            GrantRequest.session_id == session_id,
                            GrantRequest.item_id == item_id,
                            GrantRequest.status == PENDING,
                            GrantRequest.expires_at <= now,
                        )
                    )

                    grant = GrantRequest(
                        session_id=session_id,
                        item_id=item_id,
                        requester_name=requester_name,
                        status=PENDING,
                        requested_at=now,
                        expires_at=now + self._ttl,
                    )
                    db.add(grant)
                    try:
                        await db.commit()
                    except IntegrityError:
                        # Lost a race against another process holding the same pair
                        await db.rollback()
                        existing = await self._find_outstanding(db, session_id, item_id, now)
                        state = existing.status if existing is not None else PENDING
                        raise DuplicateRequestError(existing, state)

                    item_info = {
                        "id": item.id,
                        "name": item.name,
                        "brand": item.brand,
                        "type": item.type,
                    }
                    item_name = item.display_name

        logger.info(
            "grants.requested",
            request_id=grant.id,
            session_id=session_id,
            item_id=item_id,
            expires_at=grant.expires_at.isoformat(),
        )
        self._publish(
            NotificationKind.GRANT_REQUESTED,
            {**grant_payload(grant), "item": item_info},
            title="New Ultra Shelf Request",
            message=f"{requester_name} has requested access to {item_name}",
            priority="high",
        )
        return grant

    async def resolve(self, request_id: str, approved: bool, note: str = "") -> GrantRequest:
        """Approve or deny a pending request.

        Approval opens a fresh usage window: expiry becomes resolution time
        plus the grant TTL. A pending request past its own expiry can no
        longer be answered and raises RequestExpiredError.
        """
        now = self._clock()
        values: dict[str, Any] = {
            "status": APPROVED if approved else DENIED,
            "resolved_at": now,
            "note": note,
        }
        if approved:
            values["expires_at"] = now + self._ttl

        async with store_errors("grant resolve"):
            async with self._session_factory() as db:
                # Conditional update: concurrent resolutions cannot both win
                result = await db.execute(
                    update(GrantRequest)
                    .where(
                        GrantRequest.id == request_id,
                        GrantRequest.status == PENDING,
                        GrantRequest.expires_at > now,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    existing = await db.get(GrantRequest, request_id)
                    if existing is None:
                        raise NotFoundError("GrantRequest", request_id)
                    if existing.status == PENDING:
                        logger.info("grants.resolve_expired", request_id=request_id)
                        raise RequestExpiredError(request_id)
                    raise AlreadyResolvedError(request_id, existing.status)
                await db.commit()
                grant = await db.get(GrantRequest, request_id)

        logger.info(
            "grants.resolved",
            request_id=request_id,
            status=grant.status,
            expires_at=grant.expires_at.isoformat(),
        )
        self._publish(
            NotificationKind.GRANT_RESOLVED,
            {**grant_payload(grant), "approved": approved},
            title=f"Ultra Shelf Request {'Approved' if approved else 'Denied'}",
            message=f"Request for {grant.item_id} has been {'approved' if approved else 'denied'}",
            priority="medium",
        )
        return grant

    async def is_authorized(self, session_id: str, item_id: str) -> bool:
        """True iff an approved request for the pair has not passed its own expiry."""
        now = self._clock()
        stmt = (
            select(GrantRequest.id)
            .where(
                GrantRequest.session_id == session_id,
                GrantRequest.item_id == item_id,
                GrantRequest.status == APPROVED,
                GrantRequest.expires_at > now,
            )
            .limit(1)
        )
        async with store_errors("grant authorization check"):
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return result.scalar_one_or_none() is not None

    async def revoke(self, session_id: str, item_id: str) -> bool:
        """Force approved requests for the pair to denied. False if none were approved."""
        now = self._clock()
        async with self._lock_for(session_id, item_id):
            async with store_errors("grant revoke"):
                async with self._session_factory() as db:
                    result = await db.execute(
                        update(GrantRequest)
                        .where(
                            GrantRequest.session_id == session_id,
                            GrantRequest.item_id == item_id,
                            GrantRequest.status == APPROVED,
                        )
                        .values(status=DENIED, resolved_at=now, note="Authorization revoked")
                        .execution_options(synchronize_session=False)
                    )
                    await db.commit()
                    revoked = result.rowcount

        if not revoked:
            return False
        logger.info("grants.revoked", session_id=session_id, item_id=item_id, count=revoked)
        self._publish(
            NotificationKind.GRANT_REVOKED,
            {"session_id": session_id, "item_id": item_id, "revoked": revoked},
            title="Ultra Shelf Authorization Revoked",
            message=f"Authorization for {item_id} has been revoked",
            priority="medium",
        )
        return True

    async def sweep_expired(self) -> int:
        """Delete every request past its expiry. Safe to run at any time."""
        now = self._clock()
        async with store_errors("grant sweep"):
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(GrantRequest)
                    .where(GrantRequest.expires_at <= now)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        if result.rowcount:
            logger.info("grants.swept", deleted=result.rowcount)
        return result.rowcount

    async def get(self, request_id: str) -> GrantRequest:
        async with store_errors("grant lookup"):
            async with self._session_factory() as db:
                grant = await db.get(GrantRequest, request_id)
        if grant is None:
            raise NotFoundError("GrantRequest", request_id)
        return grant

    async def list_pending(self) -> list[GrantRequest]:
        """Outstanding requests awaiting the owner, newest first."""
        now = self._clock()
        stmt = (
            select(GrantRequest)
            .where(GrantRequest.status == PENDING, GrantRequest.expires_at > now)
            .order_by(GrantRequest.requested_at.desc(), GrantRequest.id)
        )
        async with store_errors("grant list pending"):
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())

    async def list_for_session(self, session_id: str) -> list[GrantRequest]:
        """Active (approved, unexpired) grants held by a session."""
        now = self._clock()
        stmt = (
            select(GrantRequest)
            .where(
                GrantRequest.session_id == session_id,
                GrantRequest.status == APPROVED,
                GrantRequest.expires_at > now,
            )
            .order_by(GrantRequest.resolved_at.desc())
        )
        async with store_errors("grant list session"):
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())

    async def stats(self) -> dict[str, int]:
        """Row counts per status, plus total."""
        stmt = select(GrantRequest.status, func.count()).group_by(GrantRequest.status)
        async with store_errors("grant stats"):
            async with self._session_factory() as db:
                rows = (await db.execute(stmt)).all()

        counts = {PENDING: 0, APPROVED: 0, DENIED: 0, "total": 0}
        for status, count in rows:
            counts[status] = count
            counts["total"] += count
        return counts

    def _publish(self, kind: NotificationKind, payload: dict[str, Any], **fields: Any) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.publish(kind.value, payload, **fields)
        except Exception:
            # Record already committed
            logger.exception("grants.notify_failed", kind=kind.value)
