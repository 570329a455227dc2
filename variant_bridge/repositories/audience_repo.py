# repositories/audience_repo.py
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from variant_bridge.core.logging import get_logger

log = get_logger(__name__)


class AudienceLookup(BaseModel):
    """Normalized answer of the audience provider for one user."""

    audiences: Dict[str, Any] = Field(default_factory=dict)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    found: bool = False
    error: Optional[str] = None


class AudienceRepository:
    """
    Reads precomputed audience membership and attributes for a user from the
    audience provider's personalization API.

    An unconfigured provider, a 404, a timeout or any other failure all come
    back as found=False; nothing is raised to the caller.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        collection_name: str = "customers",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.collection_name = collection_name
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _record_url(self, user_id: str) -> str:
        # Escaped as a single path segment.
        record_id = quote(user_id, safe="")
        return f"{self.base_url}/v1/collections/{self.collection_name}/records/id/{record_id}"

    async def get_user_audiences(self, user_id: str) -> AudienceLookup:
        if not self.configured:
            log.warning("audience.lookup_skipped", user_id=user_id, reason="api key not configured")
            return AudienceLookup()

        try:
            response = await self._client.get(
                self._record_url(user_id),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            user_data = response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                log.info("audience.user_not_found", user_id=user_id)
                return AudienceLookup(found=False)
            log.error(
                "audience.lookup_failed",
                user_id=user_id,
                status=e.response.status_code,
            )
            return AudienceLookup(found=False, error=str(e))
        except (httpx.HTTPError, ValueError) as e:
            # Timeouts, connection errors and undecodable bodies.
            log.error("audience.lookup_failed", user_id=user_id, error=str(e))
            return AudienceLookup(found=False, error=str(e) or e.__class__.__name__)

        if not isinstance(user_data, dict):
            log.error("audience.unexpected_body", user_id=user_id)
            return AudienceLookup(found=False, error="unexpected response body")

        audiences = user_data.get("_audiences") or {}
        attributes = {
            "lifetime_value": user_data.get("lifetime_value"),
            "churn_risk": user_data.get("churn_risk"),
            "tier": user_data.get("tier"),
            "subscription_status": user_data.get("subscription_status"),
            **(user_data.get("custom_attributes") or {}),
        }

        log.info("audience.found", user_id=user_id, audience_count=len(audiences))
        return AudienceLookup(audiences=audiences, attributes=attributes, found=True)

    async def is_user_in_audience(self, user_id: str, audience_name: str) -> bool:
        lookup = await self.get_user_audiences(user_id)
        return lookup.audiences.get(audience_name) is True

    async def aclose(self) -> None:
        await self._client.aclose()
