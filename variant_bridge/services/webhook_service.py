# services/webhook_service.py
from typing import Any, Dict, Optional, Tuple

from variant_bridge.core.logging import get_logger
from variant_bridge.models.schemas.assignment import AssignmentResult
from variant_bridge.models.schemas.webhook import (
    MessagePreview,
    PreviewType,
    RequestOrigin,
    WebhookResult,
)
from variant_bridge.services.assignment_service import AssignmentTracker
from variant_bridge.services.campaign_service import CampaignDispatcher
from variant_bridge.services.enrichment_service import AttributeEnricher

log = get_logger(__name__)

UNKNOWN_USER = "unknown-user"

GATE_ATTRIBUTE = "eppo_gate"

# Any of these in a body means the messaging platform sent it: either echoed
# trigger properties or fields its webhook template adds.
PLATFORM_FIELDS = ("trigger_properties", "eppo_variant", "eppo_flagkey", "subject")

ORIGIN_FIELD = "_origin"

USER_ID_FIELDS = ("user_id", "external_user_id", "userId", "subject")

PREVIEWS = {
    PreviewType.TREATMENT: MessagePreview(
        type=PreviewType.TREATMENT,
        subject="🎉 Special Offer - Treatment Version!",
        body="You've been selected for our premium treatment experience!",
        message_variation_id="treatment_variation",
    ),
    PreviewType.CONTROL: MessagePreview(
        type=PreviewType.CONTROL,
        subject="📰 Your Weekly Update",
        body="Here's your regular weekly update with the latest news.",
        message_variation_id="control_variation",
    ),
    PreviewType.DEFAULT: MessagePreview(
        type=PreviewType.DEFAULT,
        subject="👋 Hello from our integration!",
        body="This is a default message for users not in the experiment.",
        message_variation_id="default_variation",
    ),
}


def synthesize_preview(assignment: Optional[str]) -> MessagePreview:
    if assignment == "treatment":
        preview_type = PreviewType.TREATMENT
    elif assignment == "control":
        preview_type = PreviewType.CONTROL
    else:
        preview_type = PreviewType.DEFAULT
    return PREVIEWS[preview_type].model_copy()


def classify_origin(
    body: Dict[str, Any], declared: Optional[RequestOrigin] = None
) -> RequestOrigin:
    """
    Decides whether a request is a messaging-platform callback. Only internal
    requests may trigger a campaign; a callback that triggered one would loop.

    An origin declared by the HTTP layer wins. Otherwise any platform field
    makes the request a callback, and an "_origin" marker in the body can
    only mark it as one, never clear it.
    """
    if declared is not None:
        return declared

    if any(field in body for field in PLATFORM_FIELDS):
        return RequestOrigin.PLATFORM
    if body.get(ORIGIN_FIELD) == RequestOrigin.PLATFORM.value:
        return RequestOrigin.PLATFORM
    return RequestOrigin.INTERNAL


def extract_user(body: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    user_id = next((body[f] for f in USER_ID_FIELDS if body.get(f)), None)
    attributes = body.get("user_attributes") or body.get("attributes") or {}
    if not isinstance(attributes, dict):
        attributes = {}
    return (str(user_id) if user_id is not None else UNKNOWN_USER), attributes


def is_placeholder_campaign(campaign_id: str) -> bool:
    return "your_" in campaign_id


class WebhookOrchestrator:
    def __init__(
        self,
        tracker: AssignmentTracker,
        dispatcher: CampaignDispatcher,
        enricher: AttributeEnricher,
        flag_key: str,
        campaign_id: Optional[str] = None,
    ):
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.enricher = enricher
        self.flag_key = flag_key
        self.campaign_id = campaign_id

    async def set_gate(self, user_id: str) -> bool:
        """Marks the user as enrolled on the messaging platform. Best effort."""
        try:
            await self.dispatcher.update_user_attributes(user_id, {GATE_ATTRIBUTE: True})
        except Exception as e:
            log.error("webhook.gate_failed", user_id=user_id, error=str(e))
            return False
        log.info("webhook.gate_set", user_id=user_id)
        return True

    async def resolve_assignment(
        self, user_id: str, user_attributes: Optional[Dict[str, Any]] = None
    ) -> AssignmentResult:
        """Resolves the configured experiment, enriching attributes when none were sent."""
        attributes = dict(user_attributes or {})
        if not attributes:
            attributes = await self.enricher.enrich(user_id, attributes)
        return await self.tracker.resolve(self.flag_key, user_id, attributes)

    async def _dispatch(self, user_id: str, assignment: Optional[str]) -> bool:
        campaign_id = self.campaign_id
        if not campaign_id:
            log.info("webhook.dispatch_skipped", reason="no campaign id configured")
            return False
        if is_placeholder_campaign(campaign_id):
            log.warning(
                "webhook.dispatch_skipped",
                reason="placeholder campaign id; set BRAZE_WEBHOOK_CAMPAIGN_ID",
            )
            return False

        try:
            await self.dispatcher.trigger_campaign(
                user_id,
                campaign_id,
                trigger_properties={
                    "eppo_flag_key": self.flag_key,
                    "eppo_assignment": assignment,
                },
            )
        except Exception as e:
            log.error(
                "webhook.dispatch_failed",
                user_id=user_id,
                campaign_id=campaign_id,
                error=str(e),
            )
            return False
        return True

    async def process(
        self, body: Dict[str, Any], declared_origin: Optional[RequestOrigin] = None
    ) -> WebhookResult:
        origin = classify_origin(body, declared_origin)
        user_id, user_attributes = extract_user(body)
        if user_id == UNKNOWN_USER:
            log.warning("webhook.unknown_user", body=body)

        await self.set_gate(user_id)

        result = await self.resolve_assignment(user_id, user_attributes)
        assignment = result.assignment

        campaign_triggered = False
        if origin is RequestOrigin.INTERNAL:
            campaign_triggered = await self._dispatch(user_id, assignment)

        log.info(
            "webhook.processed",
            user_id=user_id,
            origin=origin.value,
            assignment=assignment,
            campaign_triggered=campaign_triggered,
        )
        return WebhookResult(
            user_id=user_id,
            assignment=assignment,
            flag_key=self.flag_key,
            assignment_details=result.assignment_details,
            message_preview=synthesize_preview(assignment),
            message_type=assignment or "default",
            origin=origin,
            campaign_triggered=campaign_triggered,
        )
