"""Sentry context middleware to capture request context in error reports."""

import uuid

import sentry_sdk
from starlette.types import ASGIApp, Receive, Scope, Send

from barback.core.logging import get_logger, get_request_id

logger = get_logger(__name__)


def stream_session_from_path(path: str) -> str | None:
    """Avatar session id for /streams/{id}/... paths."""
    parts = path.strip("/").split("/")
    if len(parts) >= 2 and parts[0] == "streams" and parts[1] != "cleanup":
        return parts[1]
    return None


class SentryContextMiddleware:
    """
    Middleware to inject structured context into Sentry error reports.

    Captures:
    - request_id: Unique request identifier
    - stream_session_id: Avatar session addressed by the request (if any)
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Set by RequestIDMiddleware, which wraps this one
        request_id = get_request_id()
        if request_id == "no-request-id":
            request_id = str(uuid.uuid4())

        path = scope.get("path", "")
        sentry_sdk.set_tag("request_id", request_id)
        stream_session_id = stream_session_from_path(path)
        if stream_session_id:
            sentry_sdk.set_tag("stream_session_id", stream_session_id)

        sentry_sdk.set_context(
            "request",
            {
                "method": scope.get("method"),
                "path": path,
                "request_id": request_id,
            },
        )

        await self.app(scope, receive, send)
