"""Middleware for the HTTP server."""

from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from moltbot_relay.observability import RequestContext, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the logging context of each HTTP request.

    An incoming X-Request-ID header is reused; otherwise one is generated.
    The id is echoed back on the response. WebSocket connections bypass
    this middleware and get their context from the relay proxy.
    """

    def __init__(self, app: Any, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Any],
    ) -> Response:
        async with RequestContext(request_id=request.headers.get(self.header_name)) as ctx:
            response = await call_next(request)
            response.headers[self.header_name] = ctx.request_id
            return response
