from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .base import CamelModel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LookupDiagnostics(CamelModel):
    """Why a resolution came back without a recorded assignment event."""

    assignment_logger_fired: bool
    stored_assignments_count: int
    lookup_key: str
    note: str


class AssignmentRecord(CamelModel):
    """One assignment event as emitted by the flag provider, keyed by (subject, flag_key)."""

    subject: str
    # None when the provider event did not say which flag it was for.
    flag_key: Optional[str] = None
    variation: Optional[str] = None
    allocation: Optional[str] = None
    experiment: Optional[str] = None
    timestamp: str = Field(default_factory=utc_now_iso)
    raw: Dict[str, Any] = Field(default_factory=dict)
    # Only set on records synthesized when no event could be found.
    debug: Optional[LookupDiagnostics] = None


class PendingRequestContext(BaseModel):
    """Context of the resolution in flight, for events that do not echo it back."""

    flag_key: str
    user_id: str
    user_attributes: Dict[str, Any] = Field(default_factory=dict)


class AssignmentResult(CamelModel):
    assignment: Optional[str] = None
    flag_key: str
    user_id: str
    user_attributes: Dict[str, Any] = Field(default_factory=dict)
    initialized: bool = True
    assignment_details: Optional[AssignmentRecord] = None
    client_info: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    timestamp: str = Field(default_factory=utc_now_iso)


class GetAssignmentRequest(CamelModel):
    # Optional so a missing id answers 400 rather than a validation 422.
    user_id: Optional[str] = None
    user_attributes: Dict[str, Any] = Field(default_factory=dict)


class ServerInfo(CamelModel):
    flag_key: str
    eppo_initialized: bool
    client_info: Dict[str, Any]
    messaging_info: Dict[str, Any]
    environment: str


class AssignmentResponse(AssignmentResult):
    """Body of POST /get-assignment: the resolution plus server details."""

    server_info: ServerInfo
