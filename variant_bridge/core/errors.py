"""
Error taxonomy shared by the services and the HTTP layer.

Every error carries a stable machine-readable code, a message that is safe
to return to callers, internal detail, and the HTTP status to answer with.
"""
from typing import Any, Optional


class BridgeError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        user_message: str = "An unexpected error occurred.",
        detail: Optional[str] = None,
        code: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
            }
        }


class ConfigurationError(BridgeError):
    """A required credential or endpoint is not configured."""

    status_code = 500
    code = "configuration_error"


class AuthError(BridgeError):
    """Webhook signature missing or wrong."""

    status_code = 401
    code = "auth_error"


class UpstreamError(BridgeError):
    """
    An outbound call to a collaborator failed.

    upstream_status is the HTTP status the collaborator answered with, or
    None when no response was received (timeout, connection refused).
    """

    status_code = 502
    code = "upstream_error"

    def __init__(
        self,
        operation: str,
        upstream_status: Optional[int] = None,
        detail: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        self.operation = operation
        self.upstream_status = upstream_status
        status_text = upstream_status if upstream_status is not None else "unknown"
        super().__init__(
            user_message=f"Request failed with status code {status_text}",
            detail=detail,
            operation=operation,
            upstream_status=upstream_status,
            **metadata,
        )

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["error"]["upstream_status"] = self.upstream_status
        return d
