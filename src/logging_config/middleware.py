"""ASGI Request Tracing Middleware.

Every HTTP request runs inside a RequestContext: the request id (taken
from X-Request-ID or generated), the correlation id, and the work item
the request concerns, so log lines emitted by the workflow during the
request can be traced back to it.
"""

import logging
import re
import time
from typing import Optional

from src.logging_config.config import DEFAULT_LOGGING_CONFIG, LoggingConfig
from src.logging_config.context import RequestContext, generate_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"
WORK_ITEM_ID_HEADER = "X-Work-Item-ID"

# /api/v1/approvals/<work_item_id>/...
_WORK_ITEM_PATH = re.compile(r"/approvals/([^/]+)")


def work_item_from_path(path: str) -> str:
    match = _WORK_ITEM_PATH.search(path)
    return match.group(1) if match else ""


class RequestTracingMiddleware:
    """Binds tracing identifiers to each HTTP request and logs its outcome.

    Identifiers are echoed back as response headers. Paths listed in
    ``LoggingConfig.exclude_paths`` are traced but not logged.

    Usage:
        app.add_middleware(RequestTracingMiddleware)
    """

    def __init__(self, app, config: Optional[LoggingConfig] = None):
        self.app = app
        self.config = config or DEFAULT_LOGGING_CONFIG

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        path = scope.get("path", "")
        request_id = self._header(headers, REQUEST_ID_HEADER) or generate_request_id()
        correlation_id = self._header(headers, CORRELATION_ID_HEADER) or request_id
        work_item_id = self._header(headers, WORK_ITEM_ID_HEADER) or work_item_from_path(path)

        trace_headers = [
            (REQUEST_ID_HEADER.lower().encode(), request_id.encode()),
            (CORRELATION_ID_HEADER.lower().encode(), correlation_id.encode()),
        ]
        start = time.perf_counter()
        status_code = 500

        async def send_with_trace(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
                message = {
                    **message,
                    "headers": list(message.get("headers", [])) + trace_headers,
                }
            await send(message)

        with RequestContext(
            request_id=request_id,
            correlation_id=correlation_id,
            work_item_id=work_item_id,
        ):
            try:
                await self.app(scope, receive, send_with_trace)
            finally:
                if path not in self.config.exclude_paths:
                    self._log(scope.get("method", ""), path, status_code, start)

    @staticmethod
    def _log(method: str, path: str, status_code: int, start: float) -> None:
        logger.log(
            logging.WARNING if status_code >= 400 else logging.INFO,
            "%s %s -> %d", method, path, status_code,
            extra={
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )

    @staticmethod
    def _header(headers: dict, name: str) -> Optional[str]:
        value = headers.get(name.lower().encode())
        return value.decode("utf-8", errors="replace") if value else None
