from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header, HTTPException, status

from lms_tracking.core.config import SETTINGS
from lms_tracking.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotEligibleError,
    NotFoundError,
    StoreTimeoutError,
    TrackingError,
    UpstreamUnavailableError,
)
from lms_tracking.models.tracking import TenantScope

logger = logging.getLogger(__name__)


def require_tenant(
    tenantid: Annotated[str | None, Header()] = None,
    organisationid: Annotated[str | None, Header()] = None,
) -> TenantScope:
    """Resolve the tenant scope from the ``tenantid`` / ``organisationid`` headers.

    Both are opaque strings supplied by the gateway; nothing is verified
    here beyond their presence.
    """
    if not tenantid or not organisationid:
        logger.warning("Request rejected: missing tenant headers")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="tenantid and organisationid headers are required",
        )
    return TenantScope(tenant_id=tenantid, organisation_id=organisationid)


def http_error(exc: TrackingError) -> HTTPException:
    """Map a domain error onto the HTTP response the API promises for it."""
    if isinstance(exc, NotEligibleError):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": str(exc),
                "unmet_prerequisites": exc.unmet_prerequisites,
                "required_courses": exc.required_courses,
            },
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, UpstreamUnavailableError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, StoreTimeoutError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc) or "store timed out",
            headers={"Retry-After": str(max(int(SETTINGS.store_timeout_seconds), 1))},
        )
    logger.error("Unmapped tracking error %s", type(exc).__name__)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error"
    )
