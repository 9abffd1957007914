# middleware.py
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.metrics import increment_http_requests

logger = logging.getLogger("fundrelease.http")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with X-Request-ID (client-supplied or generated) and
    emits one http_request_end line per request. Headers and bodies are
    never logged; cron and admin calls carry the API key.
    """

    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = req_id
        started = time.perf_counter()

        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers["X-Request-ID"] = req_id
            return response
        finally:
            duration_ms = int((time.perf_counter() - started) * 1000)
            increment_http_requests(request.url.path, status)
            logger.log(
                logging.WARNING if status >= 500 else logging.INFO,
                "http_request_end request_id=%s method=%s path=%s status=%s duration_ms=%s",
                req_id,
                request.method,
                request.url.path,
                status,
                duration_ms,
            )
