"""Request logging and ID injection middleware."""

import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from barback.core.logging import clear_log_context, get_logger, set_request_id

# Probe endpoints logged at debug so they don't drown real traffic
QUIET_PATHS = {"/health"}


class RequestIDMiddleware:
    """
    Assign every HTTP request an id and log its start, completion and failure.

    An incoming X-Request-ID header is reused, otherwise a UUID is generated.
    The id is bound into the log context and echoed back on the response.
    Streaming responses (the SSE feed) log completion when headers go out.
    """

    def __init__(self, app: ASGIApp):
        self.app = app
        self.logger = get_logger(__name__)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        clear_log_context()
        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode("latin1") or str(uuid.uuid4())
        set_request_id(request_id)

        path = scope["path"]
        log = self.logger.debug if path in QUIET_PATHS else self.logger.info
        started = time.monotonic()
        log("request.start", method=scope["method"], path=path)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                response_headers = list(message.get("headers", []))
                response_headers.append((b"x-request-id", request_id.encode("latin1")))
                message["headers"] = response_headers
                log(
                    "request.complete",
                    method=scope["method"],
                    path=path,
                    status_code=message.get("status"),
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        except Exception:
            self.logger.exception(
                "request.failed",
                method=scope["method"],
                path=path,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise
