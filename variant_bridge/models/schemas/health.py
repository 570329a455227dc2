from pydantic import Field

from .assignment import utc_now_iso
from .base import CamelModel


class HealthResponse(CamelModel):
    status: str = "healthy"
    timestamp: str = Field(default_factory=utc_now_iso)
    eppo_initialized: bool
