# services/messaging_check.py
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from variant_bridge.core.errors import UpstreamError
from variant_bridge.core.logging import get_logger
from variant_bridge.repositories.messaging_repo import MessagingRepository

log = get_logger(__name__)

SETUP_HINTS = [
    "Get the REST API key from Settings > API Keys",
    "Find the REST endpoint under Settings > Manage Settings > API Keys",
    "Get the App ID from Settings > Manage Settings > App Settings",
]

REQUIRED_PERMISSIONS = ("users.track", "campaigns.trigger", "messages.send")

CREDENTIAL_HINTS: Dict[int, List[str]] = {
    401: [
        "API key is invalid or expired",
        'API key does not have the "users.track" permission',
        "Check that the API key is enabled",
        "Use the REST API key, not the SDK key",
    ],
    400: [
        "Check the REST endpoint URL",
        "Verify the endpoint format",
    ],
    405: [
        "The REST endpoint might be wrong",
        "Try a different endpoint format",
    ],
}


class EndpointCall(BaseModel):
    permission: str
    path: str
    payload: Dict[str, Any]
    # Statuses that prove the key may call the endpoint even though the
    # request itself was rejected (unknown user or campaign).
    accessible_statuses: FrozenSet[int] = frozenset()


class EndpointCheck(BaseModel):
    permission: str
    path: str
    ok: bool
    status: Optional[int] = None
    message: str
    hints: List[str] = Field(default_factory=list)


class PermissionReport(BaseModel):
    configured: bool
    rest_endpoint: Optional[str] = None
    api_key_set: bool = False
    app_id_set: bool = False
    checks: List[EndpointCheck] = Field(default_factory=list)
    hints: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.configured and bool(self.checks) and all(c.ok for c in self.checks)


CREDENTIAL_CALL = EndpointCall(
    permission="users.track",
    path="/users/track",
    payload={
        "attributes": [
            {
                "external_id": "test-connection-user",
                "first_name": "Test",
                "email": "test@example.com",
            }
        ]
    },
)

PERMISSION_CALLS = (
    EndpointCall(
        permission="messages.send",
        path="/messages/send",
        payload={
            "external_user_ids": ["test-nonexistent-user"],
            "messages": {"push": {"alert": "Test message", "title": "Test"}},
        },
        accessible_statuses=frozenset({400}),
    ),
    EndpointCall(
        permission="campaigns.trigger",
        path="/campaigns/trigger/send",
        payload={
            "campaign_id": "test-nonexistent-campaign",
            "recipients": [{"external_user_id": "test-user"}],
        },
        accessible_statuses=frozenset({400}),
    ),
)


async def _check_endpoint(
    repo: MessagingRepository, call: EndpointCall, failure_hints: Dict[int, List[str]]
) -> EndpointCheck:
    try:
        await repo.post(call.path, call.payload, operation=f"check_{call.permission}")
    except UpstreamError as e:
        status = e.upstream_status
        if status in call.accessible_statuses:
            return EndpointCheck(
                permission=call.permission,
                path=call.path,
                ok=True,
                status=status,
                message=f"Endpoint accessible (expected {status} for a test recipient)",
            )
        if status == 401:
            message = f"No permission for {call.permission}"
            hints = failure_hints.get(401) or [f'Add the "{call.permission}" permission to the API key']
        elif status is None:
            message = f"Network error: {e.detail}"
            hints = []
        else:
            message = f"Check failed with status {status}"
            hints = failure_hints.get(status, [])
        return EndpointCheck(
            permission=call.permission,
            path=call.path,
            ok=False,
            status=status,
            message=message,
            hints=hints,
        )

    return EndpointCheck(permission=call.permission, path=call.path, ok=True, message="Success")


async def check_permissions(repo: MessagingRepository, app_id: Optional[str] = None) -> PermissionReport:
    """
    Verifies the messaging credentials against the live API.

    The credential check (users.track) runs first; when it fails nothing else
    is attempted. The messages.send and campaigns.trigger checks use recipients
    that do not exist, so a 400 answer still proves the permission.
    """
    report = PermissionReport(
        configured=repo.configured,
        rest_endpoint=repo.rest_endpoint,
        api_key_set=bool(repo.api_key),
        app_id_set=bool(app_id),
    )
    if not repo.configured:
        log.info("messaging_check.not_configured")
        report.hints = list(SETUP_HINTS)
        return report

    credentials = await _check_endpoint(repo, CREDENTIAL_CALL, CREDENTIAL_HINTS)
    report.checks.append(credentials)
    if not credentials.ok:
        log.error("messaging_check.credentials_rejected", status=credentials.status)
        report.hints = [
            "Ensure the REST API key has these permissions: " + ", ".join(REQUIRED_PERMISSIONS)
        ]
        return report

    for call in PERMISSION_CALLS:
        check = await _check_endpoint(repo, call, {})
        log.info(
            "messaging_check.endpoint",
            permission=check.permission,
            ok=check.ok,
            status=check.status,
        )
        report.checks.append(check)

    return report
