# repositories/messaging_repo.py
from typing import Any, Dict, Optional

import httpx

from variant_bridge.core.errors import ConfigurationError, UpstreamError
from variant_bridge.core.logging import get_logger

log = get_logger(__name__)


class MessagingRepository:
    """
    Transport to the messaging platform's REST API: JSON POSTs with a
    bearer key. One request per call, no retries.
    """

    def __init__(
        self,
        api_key: Optional[str],
        rest_endpoint: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.rest_endpoint = rest_endpoint.rstrip("/") if rest_endpoint else None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.rest_endpoint)

    def require_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError(
                user_message="Braze API configuration missing. Check BRAZE_API_KEY and BRAZE_REST_ENDPOINT",
            )

    async def post(self, path: str, payload: Dict[str, Any], operation: str) -> Any:
        """
        POSTs payload to path and returns the decoded JSON body.

        Raises UpstreamError carrying the platform's status code (None when no
        response arrived).
        """
        self.require_configured()

        try:
            response = await self._client.post(
                f"{self.rest_endpoint}{path}",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(
                "messaging.request_failed",
                operation=operation,
                status=e.response.status_code,
                body=e.response.text,
            )
            raise UpstreamError(operation, upstream_status=e.response.status_code) from e
        except httpx.HTTPError as e:
            log.error("messaging.request_failed", operation=operation, error=str(e))
            raise UpstreamError(operation, detail=str(e) or None) from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    async def aclose(self) -> None:
        await self._client.aclose()
