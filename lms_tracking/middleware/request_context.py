"""Per-request logging context.

Every request gets an id (``X-Request-ID`` when the caller sends one)
and the tenant it runs for, both held in ContextVars so that any log
line emitted while serving the request carries them, including lines
from services that never see the request object.  Detached rollups
are created inside the request and inherit a copy of the context.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
tenant_id_var: ContextVar[str | None] = ContextVar("tenant_id", default=None)
organisation_id_var: ContextVar[str | None] = ContextVar(
    "organisation_id", default=None
)


class _RequestContextFilter(logging.Filter):
    """Copy the request context onto each LogRecord.

    Values passed explicitly through ``extra=`` win over the context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if getattr(record, "tenant_id", None) is None:
            record.tenant_id = tenant_id_var.get()  # type: ignore[attr-defined]
        if getattr(record, "organisation_id", None) is None:
            org_id = organisation_id_var.get()
            record.organisation_id = org_id  # type: ignore[attr-defined]
        return True


def install_log_filter() -> None:
    """Attach the context filter to the root handlers (idempotent).

    Handler-level so records from every logger pass through it, not only
    those logged on the root logger itself.
    """
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, _RequestContextFilter) for f in handler.filters):
            handler.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        tenant_id_var.set(request.headers.get("tenantid"))
        organisation_id_var.set(request.headers.get("organisationid"))

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        response.headers["X-Request-ID"] = req_id
        return response
