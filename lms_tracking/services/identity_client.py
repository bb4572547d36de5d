"""Client for the external identity (user) service.

Only the report path needs learner names and emails; everything else
works with opaque learner ids.  The service is called with the tenant
headers of the request and answers with ``result.getUserDetails``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

import httpx

from lms_tracking.core.config import SETTINGS
from lms_tracking.core.errors import UpstreamUnavailableError
from lms_tracking.models.tracking import TenantScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LearnerIdentity:
    user_id: UUID
    name: str | None
    email: str | None


def _parse_user(raw: dict) -> LearnerIdentity:
    full_name = f"{raw.get('firstName') or ''} {raw.get('lastName') or ''}".strip()
    return LearnerIdentity(
        user_id=UUID(str(raw["userId"])),
        name=full_name or raw.get("username"),
        email=raw.get("email") or raw.get("username"),
    )


class IdentityClient:
    def __init__(
        self,
        base_url: str | None,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") if base_url else None
        self._timeout = timeout
        self._transport = transport

    async def fetch_learners(
        self, scope: TenantScope, user_ids: list[UUID]
    ) -> dict[UUID, LearnerIdentity]:
        if not user_ids:
            return {}
        if not self._base_url:
            raise UpstreamUnavailableError("identity service URL is not configured")

        body = {
            "filters": {"userId": [str(uid) for uid in user_ids]},
            "limit": len(user_ids),
        }
        headers = {
            "tenantid": scope.tenant_id,
            "organisationid": scope.organisation_id,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self._base_url}/user/v1/list", json=body, headers=headers
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            logger.error(
                "Identity service call failed: %s",
                exc,
                extra={"tenant_id": scope.tenant_id},
            )
            raise UpstreamUnavailableError("failed to fetch learner details") from exc

        users = (payload.get("result") or {}).get("getUserDetails") or []
        identities = {}
        for raw in users:
            try:
                identity = _parse_user(raw)
            except (KeyError, ValueError):
                logger.warning("Skipping malformed user record from identity service")
                continue
            identities[identity.user_id] = identity
        return identities


identity_client = IdentityClient(
    SETTINGS.identity_service_url, timeout=SETTINGS.store_timeout_seconds
)
