"""Correlation ID middleware.

Takes the caller's X-Correlation-ID (or makes one up) and binds it for the
duration of the request, so every log line the request produces carries
it. Written as pure ASGI to stay clear of BaseHTTPMiddleware's task
handling around asyncpg connections.
"""

import time

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from autoreminder.logging_config import correlation_scope, get_logger

logger = get_logger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
_HEADER_KEY = CORRELATION_ID_HEADER.lower().encode()
_MAX_ID_LENGTH = 128


class CorrelationIdMiddleware:
    """Pure ASGI middleware that tags requests and responses with an id."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        incoming = headers.get(_HEADER_KEY, b"").decode(errors="replace").strip()

        with correlation_scope(incoming[:_MAX_ID_LENGTH] or None) as correlation_id:
            start_time = time.perf_counter()
            status_code: int | None = None
            method = scope.get("method", "")
            path = scope.get("path", "")

            async def send_wrapper(message: Message) -> None:
                nonlocal status_code

                if message["type"] == "http.response.start":
                    status_code = message.get("status")
                    response_headers = list(message.get("headers", []))
                    response_headers.append((_HEADER_KEY, correlation_id.encode()))
                    message = {**message, "headers": response_headers}

                await send(message)

            try:
                await self.app(scope, receive, send_wrapper)
            except Exception:
                logger.exception(
                    "Request failed",
                    method=method,
                    path=path,
                    duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                raise

            logger.info(
                "Request completed",
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
