"""Owner notification endpoints, including a server-sent events stream."""

import asyncio
import json
import os
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from barback.api.deps import get_notification_hub
from barback.core.errors import NotFoundError
from barback.core.logging import get_logger
from barback.core.notifications import NotificationEvent, NotificationHub
from barback.models.notification_schemas import (
    MarkReadResult,
    NotificationList,
    UnreadCount,
)
from barback.utils.datetime import now_utc

logger = get_logger(__name__)

router = APIRouter(prefix="/owner-notifications", tags=["owner-notifications"])

SSE_PING_INTERVAL_SECONDS = float(os.getenv("SSE_PING_INTERVAL_SECONDS", "30"))
# Undelivered frames held per SSE connection
SSE_CONNECTION_BUFFER = int(os.getenv("SSE_CONNECTION_BUFFER", "32"))


def format_sse(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data, default=str)}\n\n"


async def event_stream(
    hub: NotificationHub,
    request: Request,
    ping_interval: float = SSE_PING_INTERVAL_SECONDS,
    buffer_size: int = SSE_CONNECTION_BUFFER,
) -> AsyncIterator[str]:
    """Yield SSE frames for one connection: a hello, then events and keep-alive pings.

    The connection owns exactly one hub subscription, dropped when the
    client goes away or the generator is closed. A stalled client fills its
    own queue, then the hub's per-subscriber buffer, after which the hub
    drops further events for this connection only.
    """
    received: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=buffer_size)
    unsubscribe = hub.subscribe(received.put)
    logger.info("notifications.stream_opened", subscribers=hub.subscriber_count)
    try:
        yield format_sse({"type": "connected", "message": "Connected to notifications"})
        while not await request.is_disconnected():
            try:
                event = await asyncio.wait_for(received.get(), timeout=ping_interval)
            except asyncio.TimeoutError:
                yield format_sse({"type": "ping", "timestamp": now_utc().isoformat()})
                continue
            yield format_sse({"type": "notification", **event.to_dict()})
    finally:
        unsubscribe()
        logger.info("notifications.stream_closed", subscribers=hub.subscriber_count)


@router.get("", response_model=NotificationList)
async def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    hub: NotificationHub = Depends(get_notification_hub),
):
    """Newest-first notifications with the current unread count."""
    events = hub.list(limit=limit, unread_only=unread_only)
    return {
        "notifications": [event.to_dict() for event in events],
        "unread_count": hub.unread_count(),
    }


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(hub: NotificationHub = Depends(get_notification_hub)):
    return UnreadCount(unread_count=hub.unread_count())


@router.post("/mark-all-read", response_model=MarkReadResult)
async def mark_all_read(hub: NotificationHub = Depends(get_notification_hub)):
    marked = hub.mark_all_read()
    return MarkReadResult(marked=marked, unread_count=hub.unread_count())


@router.post("/{event_id}/read", response_model=MarkReadResult)
async def mark_read(event_id: str, hub: NotificationHub = Depends(get_notification_hub)):
    if not hub.mark_read(event_id):
        raise NotFoundError("Notification", event_id)
    return MarkReadResult(marked=1, unread_count=hub.unread_count())


@router.get("/stream")
async def stream_notifications(
    request: Request,
    hub: NotificationHub = Depends(get_notification_hub),
):
    return StreamingResponse(
        event_stream(hub, request),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
