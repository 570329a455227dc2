import httpx
import pytest

from variant_bridge.core.errors import ConfigurationError, UpstreamError
from variant_bridge.services.campaign_service import CampaignDispatcher


@pytest.fixture
def dispatcher(messaging_repo):
    return CampaignDispatcher(messaging_repo)


class TestPayloads:
    @pytest.mark.asyncio
    async def test_track_event(self, dispatcher, braze_transport):
        result = await dispatcher.track_event(
            "u1", "purchase", event_properties={"amount": 10}, user_attributes={"eppo_variant": "control"}
        )

        assert result == {"message": "success"}
        assert braze_transport.paths() == ["/users/track"]
        body = braze_transport.bodies()[0]
        assert body["attributes"] == [{"external_id": "u1", "eppo_variant": "control"}]
        event = body["events"][0]
        assert event["external_id"] == "u1"
        assert event["name"] == "purchase"
        assert event["properties"] == {"amount": 10}
        assert event["time"]

    @pytest.mark.asyncio
    async def test_sends_bearer_key(self, dispatcher, braze_transport):
        await dispatcher.track_event("u1", "open")
        request = braze_transport.requests[0]
        assert request.headers["Authorization"] == "Bearer braze-key"
        assert request.headers["Content-Type"] == "application/json"
        assert str(request.url) == "https://rest.braze.test/users/track"

    @pytest.mark.asyncio
    async def test_update_user_attributes_subscribes_user(self, dispatcher, braze_transport):
        await dispatcher.update_user_attributes("u1", {"eppo_gate": True})

        assert braze_transport.bodies("/users/track") == [
            {
                "attributes": [
                    {
                        "external_id": "u1",
                        "email_subscribe": "subscribed",
                        "push_subscribe": "subscribed",
                        "eppo_gate": True,
                    }
                ]
            }
        ]

    @pytest.mark.asyncio
    async def test_trigger_campaign(self, dispatcher, braze_transport):
        await dispatcher.trigger_campaign(
            "u1",
            "campaign-123",
            trigger_properties={"eppo_flag_key": "exp", "eppo_assignment": "treatment"},
        )

        body = braze_transport.bodies("/campaigns/trigger/send")[0]
        assert body["campaign_id"] == "campaign-123"
        recipient = body["recipients"][0]
        assert recipient["external_user_id"] == "u1"
        assert recipient["trigger_properties"] == {
            "eppo_flag_key": "exp",
            "eppo_assignment": "treatment",
        }
        assert recipient["attributes"] == {
            "email_subscribe": "subscribed",
            "push_subscribe": "subscribed",
        }

    @pytest.mark.asyncio
    async def test_trigger_canvas(self, dispatcher, braze_transport):
        await dispatcher.trigger_canvas("canvas-9", "u1", {"source": "test"})

        body = braze_transport.bodies("/canvas/trigger/send")[0]
        assert body == {
            "canvas_id": "canvas-9",
            "recipients": [{"external_user_id": "u1", "canvas_entry_properties": {"source": "test"}}],
        }

    @pytest.mark.asyncio
    async def test_send_message_treatment_copy(self, dispatcher, braze_transport):
        await dispatcher.send_message("u1", "treatment", {"campaign": "spring"})

        push = braze_transport.bodies("/messages/send")[0]["messages"]["push"]
        assert push["alert"] == "🎉 Special offer just for you!"
        assert push["title"] == "Exclusive Deal"
        assert push["extra"] == {"variant": "treatment", "campaign": "spring"}

    @pytest.mark.asyncio
    async def test_send_message_default_copy(self, dispatcher, braze_transport):
        await dispatcher.send_message("u1", "control")

        body = braze_transport.bodies("/messages/send")[0]
        assert body["external_user_ids"] == ["u1"]
        assert body["messages"]["push"]["alert"] == "Welcome to our app!"
        assert body["messages"]["push"]["title"] == "Welcome"

    @pytest.mark.asyncio
    async def test_empty_response_body(self, make_messaging_repo):
        repo, _ = make_messaging_repo(lambda request: httpx.Response(204))
        assert await CampaignDispatcher(repo).track_event("u1", "open") == {}


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_configuration_sends_nothing(self, make_messaging_repo):
        repo, transport = make_messaging_repo(api_key=None)
        dispatcher = CampaignDispatcher(repo)

        assert dispatcher.configured is False
        with pytest.raises(ConfigurationError):
            await dispatcher.track_event("u1", "open")
        with pytest.raises(ConfigurationError):
            await dispatcher.trigger_campaign("u1", "campaign-123")
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_missing_campaign_id(self, dispatcher, braze_transport):
        with pytest.raises(ConfigurationError) as exc_info:
            await dispatcher.trigger_campaign("u1", "")
        assert exc_info.value.user_message == "Braze API configuration or campaignId is missing."
        assert braze_transport.requests == []

    @pytest.mark.asyncio
    async def test_error_status_is_carried(self, make_messaging_repo):
        repo, _ = make_messaging_repo(lambda request: httpx.Response(400, json={"message": "bad"}))

        with pytest.raises(UpstreamError) as exc_info:
            await CampaignDispatcher(repo).trigger_campaign("u1", "campaign-123")

        error = exc_info.value
        assert error.upstream_status == 400
        assert error.operation == "trigger_campaign"
        assert error.user_message == "Request failed with status code 400"

    @pytest.mark.asyncio
    async def test_transport_error_has_no_status(self, make_messaging_repo):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        repo, _ = make_messaging_repo(refuse)

        with pytest.raises(UpstreamError) as exc_info:
            await CampaignDispatcher(repo).update_user_attributes("u1", {"eppo_gate": True})

        assert exc_info.value.upstream_status is None
        assert exc_info.value.detail == "connection refused"


def test_client_info(dispatcher):
    assert dispatcher.client_info() == {
        "configured": True,
        "rest_endpoint": "https://rest.braze.test",
    }
