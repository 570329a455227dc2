"""
Test configuration.

No test talks to a real service: the flag provider is an in-memory fake that
fires the assignment sink the way the Eppo SDK does, and the two HTTP
collaborators run on httpx.MockTransport.
"""
import json
import os
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

# Must be set before variant_bridge modules read settings.
os.environ["APP_ENV"] = "test"
os.environ.setdefault("LOG_LEVEL", "WARNING")
for _var in (
    "EPPO_SDK_KEY",
    "BRAZE_API_KEY",
    "BRAZE_REST_ENDPOINT",
    "BRAZE_WEBHOOK_CAMPAIGN_ID",
    "HIGHTOUCH_API_KEY",
    "WEBHOOK_SECRET",
):
    os.environ.pop(_var, None)

from variant_bridge.core.settings import Settings, _reset_settings  # noqa: E402
from variant_bridge.repositories.audience_repo import AudienceRepository  # noqa: E402
from variant_bridge.repositories.messaging_repo import MessagingRepository  # noqa: E402

BRAZE_ENDPOINT = "https://rest.braze.test"
HIGHTOUCH_URL = "https://personalization.hightouch.test"


class FakeFlagProvider:
    """
    Returns preset variants and reports each evaluation to the sink.

    emit_flag_key / emit_subject control whether the emitted event carries
    those fields; fire=False simulates a provider that skips the sink.
    """

    def __init__(self, sink: Callable[[Dict[str, Any]], None], variants: Optional[Dict[str, str]] = None):
        self.sink = sink
        self.variants: Dict[str, str] = variants or {}
        self.emit_flag_key = True
        self.emit_subject = True
        self.fire = True
        self.fail = False
        self.calls: List[tuple] = []
        self.booleans: Dict[str, bool] = {}
        self.numbers: Dict[str, float] = {}

    def get_string_assignment(self, flag_key, subject_key, subject_attributes, default):
        self.calls.append((flag_key, subject_key, dict(subject_attributes)))
        if self.fail:
            raise RuntimeError("provider exploded")
        variation = self.variants.get(subject_key, default)
        if self.fire:
            event: Dict[str, Any] = {
                "allocation": "allocation-1",
                "experiment": f"{flag_key}-allocation-1",
                "variation": variation,
                "subjectAttributes": dict(subject_attributes),
            }
            if self.emit_flag_key:
                event["featureFlag"] = flag_key
            if self.emit_subject:
                event["subject"] = subject_key
            self.sink(event)
        return variation

    def get_boolean_assignment(self, flag_key, subject_key, subject_attributes, default):
        if self.fail:
            raise RuntimeError("provider exploded")
        return self.booleans.get(flag_key, default)

    def get_numeric_assignment(self, flag_key, subject_key, subject_attributes, default):
        if self.fail:
            raise RuntimeError("provider exploded")
        return self.numbers.get(flag_key, default)


class ProviderHarness:
    """A connect() replacement that remembers the provider it built."""

    def __init__(self, variants: Optional[Dict[str, str]] = None):
        self.variants = variants or {}
        self.provider: Optional[FakeFlagProvider] = None
        self.api_key: Optional[str] = None

    def __call__(self, api_key: str, sink: Callable[[Dict[str, Any]], None]) -> FakeFlagProvider:
        self.api_key = api_key
        self.provider = FakeFlagProvider(sink, self.variants)
        return self.provider


class RecordingTransport:
    """httpx.MockTransport backend that records requests and answers from a handler."""

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: List[httpx.Request] = []
        self.handler = handler or (lambda request: httpx.Response(201, json={"message": "success"}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def bodies(self, path: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            json.loads(r.content)
            for r in self.requests
            if path is None or r.url.path == path
        ]


@pytest.fixture(autouse=True)
def reset_settings_cache():
    _reset_settings()
    yield
    _reset_settings()


@pytest.fixture
def provider_harness():
    return ProviderHarness(variants={"user-t": "treatment", "user-c": "control"})


@pytest.fixture
def braze_transport():
    return RecordingTransport()


@pytest.fixture
def hightouch_transport():
    # Default: nobody is known to the audience provider.
    return RecordingTransport(lambda request: httpx.Response(404, json={"error": "not found"}))


@pytest.fixture
def messaging_repo(braze_transport):
    return MessagingRepository(
        api_key="braze-key",
        rest_endpoint=BRAZE_ENDPOINT,
        client=braze_transport.client(),
    )


@pytest.fixture
def audience_repo(hightouch_transport):
    return AudienceRepository(
        api_key="hightouch-key",
        base_url=HIGHTOUCH_URL,
        client=hightouch_transport.client(),
    )


@pytest.fixture
def test_settings():
    return Settings(
        APP_ENV="test",
        EPPO_SDK_KEY="eppo-test-key",
        BRAZE_API_KEY="braze-key",
        BRAZE_REST_ENDPOINT=BRAZE_ENDPOINT,
        BRAZE_WEBHOOK_CAMPAIGN_ID="campaign-123",
        HIGHTOUCH_API_KEY="hightouch-key",
        HIGHTOUCH_API_URL=HIGHTOUCH_URL,
        EXPERIMENT_FLAG_KEY="braze_message_experiment",
    )


@pytest.fixture
def make_audience_repo():
    def _make(handler=None, api_key="hightouch-key"):
        transport = RecordingTransport(handler)
        repo = AudienceRepository(api_key=api_key, base_url=HIGHTOUCH_URL, client=transport.client())
        return repo, transport

    return _make


@pytest.fixture
def make_messaging_repo():
    def _make(handler=None, api_key="braze-key", rest_endpoint=BRAZE_ENDPOINT):
        transport = RecordingTransport(handler)
        repo = MessagingRepository(
            api_key=api_key, rest_endpoint=rest_endpoint, client=transport.client()
        )
        return repo, transport

    return _make
