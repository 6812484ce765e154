"""ASGI middleware for request_id and trace_id.

Raw ASGI: response bodies pass through unbuffered and disconnects reach
the endpoint.
"""
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from shared.logging import clear_request_context, set_request_context


def get_request_id_from_headers(headers: Headers) -> str | None:
    """Extract X-Request-ID from request headers."""
    return headers.get("x-request-id")


def get_trace_id_from_headers(headers: Headers) -> str | None:
    """Extract X-Trace-ID from request headers."""
    return headers.get("x-trace-id")


class RequestIdMiddleware:
    """Add request_id and trace_id to context and response headers."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = get_request_id_from_headers(headers) or str(uuid.uuid4())
        trace_id = get_trace_id_from_headers(headers) or request_id

        async def send_with_ids(message: Message) -> None:
            if message["type"] == "http.response.start":
                out = MutableHeaders(scope=message)
                out["X-Request-ID"] = request_id
                out["X-Trace-ID"] = trace_id
            await send(message)

        set_request_context(request_id=request_id, trace_id=trace_id)
        try:
            await self.app(scope, receive, send_with_ids)
        finally:
            clear_request_context()
