"""
Irshad Backend: Request ID Middleware
======================================

What:  Assigns a short id to every request and returns it as X-Request-ID.
How:   Honors an incoming X-Request-ID (the admin frontend sends one),
       otherwise generates eight hex characters. The id lives in a
       ContextVar so exception handlers and access logs can read it, and
       in request.state for route handlers.

Webhook deliveries carry Stripe's own event id in the body; the request id
is what ties the access log line to the processor's log lines.
"""

import logging
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Coroutine-local: concurrent requests on one thread each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_REQUEST_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        # Client-supplied ids end up in log lines
        rid = rid[:MAX_REQUEST_ID_LENGTH]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
