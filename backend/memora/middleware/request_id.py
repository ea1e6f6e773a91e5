"""
Memora Backend — Request ID Middleware
========================================

What:  Tags each request with an id, stores it in a ContextVar and echoes it
       in the X-Request-ID response header.
Why:   Error envelopes carry `request_id`, so a guest reporting a failed
       selection can be matched to the exact log lines.
How:   A client-provided X-Request-ID is reused; otherwise a short uuid4 is
       generated.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local, so concurrent requests on one event loop keep their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
