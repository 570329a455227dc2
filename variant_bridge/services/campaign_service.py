# services/campaign_service.py
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from variant_bridge.core.errors import ConfigurationError
from variant_bridge.core.logging import get_logger
from variant_bridge.repositories.messaging_repo import MessagingRepository

log = get_logger(__name__)

# Sent with every attribute update and campaign trigger so the user can
# actually receive what the campaign sends.
SUBSCRIBED = {
    "email_subscribe": "subscribed",
    "push_subscribe": "subscribed",
}


class CampaignDispatcher:
    """
    Builds messaging-platform requests. Each operation is one POST; errors
    surface as ConfigurationError (nothing configured) or UpstreamError and
    it is up to the caller whether they matter.
    """

    def __init__(self, messaging_repo: MessagingRepository):
        self.messaging_repo = messaging_repo

    @property
    def configured(self) -> bool:
        return self.messaging_repo.configured

    async def track_event(
        self,
        user_id: str,
        event_name: str,
        event_properties: Optional[Dict[str, Any]] = None,
        user_attributes: Optional[Dict[str, Any]] = None,
    ) -> Any:
        payload = {
            "attributes": [{"external_id": user_id, **(user_attributes or {})}],
            "events": [
                {
                    "external_id": user_id,
                    "name": event_name,
                    "time": datetime.now(timezone.utc).isoformat(),
                    "properties": event_properties or {},
                }
            ],
        }
        return await self.messaging_repo.post("/users/track", payload, operation="track_event")

    async def update_user_attributes(self, user_id: str, attributes: Dict[str, Any]) -> Any:
        payload = {
            "attributes": [{"external_id": user_id, **SUBSCRIBED, **attributes}],
        }
        return await self.messaging_repo.post(
            "/users/track", payload, operation="update_user_attributes"
        )

    async def trigger_campaign(
        self,
        user_id: str,
        campaign_id: str,
        trigger_properties: Optional[Dict[str, Any]] = None,
        user_attributes: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not campaign_id:
            raise ConfigurationError(user_message="Braze API configuration or campaignId is missing.")

        payload = {
            "campaign_id": campaign_id,
            "recipients": [
                {
                    "external_user_id": user_id,
                    "trigger_properties": trigger_properties or {},
                    "attributes": {**SUBSCRIBED, **(user_attributes or {})},
                }
            ],
        }
        log.info("campaign.triggering", campaign_id=campaign_id, user_id=user_id)
        result = await self.messaging_repo.post(
            "/campaigns/trigger/send", payload, operation="trigger_campaign"
        )
        log.info("campaign.triggered", campaign_id=campaign_id, user_id=user_id)
        return result

    async def trigger_canvas(
        self,
        canvas_id: str,
        user_id: str,
        canvas_entry_properties: Optional[Dict[str, Any]] = None,
    ) -> Any:
        payload = {
            "canvas_id": canvas_id,
            "recipients": [
                {
                    "external_user_id": user_id,
                    "canvas_entry_properties": canvas_entry_properties or {},
                }
            ],
        }
        return await self.messaging_repo.post(
            "/canvas/trigger/send", payload, operation="trigger_canvas"
        )

    async def send_message(
        self,
        user_id: str,
        message_type: Optional[str],
        custom_attributes: Optional[Dict[str, Any]] = None,
    ) -> Any:
        is_treatment = message_type == "treatment"
        payload = {
            "external_user_ids": [user_id],
            "messages": {
                "push": {
                    "alert": "🎉 Special offer just for you!" if is_treatment else "Welcome to our app!",
                    "title": "Exclusive Deal" if is_treatment else "Welcome",
                    "extra": {"variant": message_type, **(custom_attributes or {})},
                }
            },
        }
        return await self.messaging_repo.post("/messages/send", payload, operation="send_message")

    def client_info(self) -> Dict[str, Any]:
        return {
            "configured": self.configured,
            "rest_endpoint": self.messaging_repo.rest_endpoint,
        }
