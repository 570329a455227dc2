from typing import Any, Dict, Optional

from pydantic import Field

from .base import CamelModel


class TrackEventRequest(CamelModel):
    """Body of POST /track-event."""

    user_id: Optional[str] = None
    event_name: Optional[str] = None
    event_properties: Dict[str, Any] = Field(default_factory=dict)
    user_attributes: Dict[str, Any] = Field(default_factory=dict)


class TrackEventResponse(CamelModel):
    success: bool = True
    user_id: str
    event_name: str
    eppo_variant: Optional[str] = None
    event_properties: Dict[str, Any]
    braze_response: Optional[Any] = None
    timestamp: str
