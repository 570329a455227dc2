import enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .assignment import AssignmentRecord, utc_now_iso
from .base import CamelModel


class PreviewType(str, enum.Enum):
    TREATMENT = "TREATMENT"
    CONTROL = "CONTROL"
    DEFAULT = "DEFAULT"


class RequestOrigin(str, enum.Enum):
    PLATFORM = "platform"  # webhook callback from the messaging platform
    INTERNAL = "internal"  # demo UI or direct API caller


class MessagePreview(BaseModel):
    """
    The message a user would receive. Returned as-is to the messaging
    platform, which expects flat snake_case keys.
    """

    type: PreviewType
    subject: str
    body: str
    message_variation_id: str


class WebhookResult(CamelModel):
    user_id: str
    assignment: Optional[str] = None
    flag_key: str
    assignment_details: Optional[AssignmentRecord] = None
    message_preview: MessagePreview
    message_type: str
    origin: RequestOrigin
    campaign_triggered: bool = False
    timestamp: str = Field(default_factory=utc_now_iso)
    demo_mode: bool = True
    note: str = "This is a demo - no actual messages were sent"


class SendMessageRequest(CamelModel):
    user_id: Optional[str] = None
    user_attributes: Dict[str, Any] = Field(default_factory=dict)


class EventToTrack(BaseModel):
    name: str
    properties: Dict[str, Any] = Field(default_factory=dict)


class SendMessageResponse(CamelModel):
    """Body of POST /send-message: what would have been sent, nothing is."""

    message_preview: MessagePreview
    event_to_track: EventToTrack
    webhook_response: WebhookResult
    note: str = "This is a demo response. No real messages were sent."
