"""
Request ID middleware for correlation tracking.
Every API call gets an id that is echoed back and attached to its log records.
"""
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id.

    Accepts an incoming ``X-Request-ID`` header or generates a uuid4,
    stores it on ``request.state`` and in a context variable, and returns
    it in the response headers.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_context.set(request_id)
        started = time.perf_counter()
        logger.debug("Request started", extra=_request_fields(request, request_id))
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Request failed: %s", exc,
                extra=_request_fields(request, request_id, started),
                exc_info=True,
            )
            raise
        finally:
            request_id_context.reset(token)

        response.headers[self.header_name] = request_id
        fields = _request_fields(request, request_id, started)
        fields["status_code"] = response.status_code
        logger.info("Request completed", extra=fields)
        return response


def _request_fields(request: Request, request_id: str, started: Optional[float] = None) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else None,
    }
    if started is not None:
        fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return fields


def get_request_id() -> Optional[str]:
    """Current request id, or None outside a request."""
    return request_id_context.get()


class RequestIdLogFilter(logging.Filter):
    """Stamps the current request id onto records that lack one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True
