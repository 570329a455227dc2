import json

import httpx
import pytest

from variant_bridge.check_messaging import main, render
from variant_bridge.services.messaging_check import check_permissions


def _by_path(statuses):
    """Handler answering each path with a fixed status (default 201)."""

    def handler(request):
        return httpx.Response(statuses.get(request.url.path, 201), json={"message": "from test"})

    return handler


class TestCheckPermissions:
    @pytest.mark.asyncio
    async def test_all_permissions_granted(self, make_messaging_repo):
        repo, transport = make_messaging_repo(_by_path({}))

        report = await check_permissions(repo, app_id="app-1")

        assert report.ok is True
        assert report.app_id_set is True
        assert [c.permission for c in report.checks] == [
            "users.track",
            "messages.send",
            "campaigns.trigger",
        ]
        assert transport.paths() == ["/users/track", "/messages/send", "/campaigns/trigger/send"]
        assert transport.requests[0].headers["Authorization"] == "Bearer braze-key"

    @pytest.mark.asyncio
    async def test_rejected_credentials_stop_the_check(self, make_messaging_repo):
        repo, transport = make_messaging_repo(_by_path({"/users/track": 401}))

        report = await check_permissions(repo)

        assert report.ok is False
        assert transport.paths() == ["/users/track"]
        (check,) = report.checks
        assert check.status == 401
        assert check.message == "No permission for users.track"
        assert "Use the REST API key, not the SDK key" in check.hints
        assert "users.track, campaigns.trigger, messages.send" in report.hints[0]

    @pytest.mark.asyncio
    async def test_bad_request_on_credentials_points_at_endpoint(self, make_messaging_repo):
        repo, _ = make_messaging_repo(_by_path({"/users/track": 400}))

        report = await check_permissions(repo)

        (check,) = report.checks
        assert check.ok is False
        assert check.status == 400
        assert check.hints == ["Check the REST endpoint URL", "Verify the endpoint format"]

    @pytest.mark.asyncio
    async def test_wrong_method_hint(self, make_messaging_repo):
        repo, _ = make_messaging_repo(_by_path({"/users/track": 405}))
        report = await check_permissions(repo)
        assert report.checks[0].hints[0] == "The REST endpoint might be wrong"

    @pytest.mark.asyncio
    async def test_bad_request_for_test_recipient_proves_access(self, make_messaging_repo):
        repo, _ = make_messaging_repo(
            _by_path({"/messages/send": 400, "/campaigns/trigger/send": 400})
        )

        report = await check_permissions(repo)

        assert report.ok is True
        assert all(c.ok for c in report.checks)
        assert report.checks[1].status == 400

    @pytest.mark.asyncio
    async def test_missing_send_permission(self, make_messaging_repo):
        repo, _ = make_messaging_repo(_by_path({"/messages/send": 401}))

        report = await check_permissions(repo)

        assert report.ok is False
        send, trigger = report.checks[1:]
        assert send.ok is False
        assert send.hints == ['Add the "messages.send" permission to the API key']
        assert trigger.ok is True

    @pytest.mark.asyncio
    async def test_network_error(self, make_messaging_repo):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        repo, _ = make_messaging_repo(refuse)

        report = await check_permissions(repo)

        (check,) = report.checks
        assert check.status is None
        assert check.message == "Network error: connection refused"

    @pytest.mark.asyncio
    async def test_unconfigured_makes_no_request(self, make_messaging_repo):
        repo, transport = make_messaging_repo(api_key=None)

        report = await check_permissions(repo)

        assert report.configured is False
        assert report.ok is False
        assert report.checks == []
        assert transport.requests == []
        assert len(report.hints) == 3


class TestCommandLine:
    @pytest.mark.asyncio
    async def test_render(self, make_messaging_repo):
        repo, _ = make_messaging_repo(_by_path({"/users/track": 401}))

        text = render(await check_permissions(repo))

        assert "- BRAZE_API_KEY: Set" in text
        assert "- BRAZE_REST_ENDPOINT: https://rest.braze.test" in text
        assert "- BRAZE_APP_ID: Missing" in text
        assert "FAIL users.track [401]: No permission for users.track" in text

    def test_unconfigured_environment_exits_nonzero(self, capsys):
        assert main([]) == 1
        assert "Missing required messaging configuration" in capsys.readouterr().out

    def test_json_output(self, capsys):
        assert main(["--json"]) == 1
        report = json.loads(capsys.readouterr().out)
        assert report["configured"] is False
        assert report["ok"] is False
