import logging
import time
import uuid
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .config import LOG_EXCLUDE_PATHS
from .logging_config import trace_id_var

logger = logging.getLogger("integrations_api.http")

class TracingMiddleware(BaseHTTPMiddleware):
    """Assigns a trace id per request and writes one access record per response"""

    def __init__(self, app: ASGIApp, exclude_paths: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.exclude_paths = frozenset(LOG_EXCLUDE_PATHS if exclude_paths is None else exclude_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Honour an upstream request id so worker and API logs line up
        trace_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = trace_id_var.set(trace_id)
        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Unhandled error on %s %s", request.method, request.url.path,
                                  extra=self._fields(request, 500, started))
                raise

            if request.url.path not in self.exclude_paths:
                status = response.status_code
                level = logging.ERROR if status >= 500 else logging.WARNING if status >= 400 else logging.INFO
                logger.log(level, "%s %s %s", request.method, request.url.path, status,
                           extra=self._fields(request, status, started))

            response.headers["X-Request-ID"] = trace_id
            return response
        finally:
            trace_id_var.reset(token)

    @staticmethod
    def _fields(request: Request, status: int, started: float) -> dict:
        return {
            "component": "http",
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": request.client.host if request.client else "unknown",
            "actor_id": getattr(request.state, "actor_id", None),
            "tenant_id": getattr(request.state, "tenant_id", None),
        }
