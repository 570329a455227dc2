from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from variant_bridge.core.flags import ProviderConnector, connect_eppo
from variant_bridge.core.settings import Settings
from variant_bridge.repositories.assignment_repo import AssignmentRepository
from variant_bridge.repositories.audience_repo import AudienceRepository
from variant_bridge.repositories.messaging_repo import MessagingRepository
from variant_bridge.services.assignment_service import AssignmentTracker
from variant_bridge.services.campaign_service import CampaignDispatcher
from variant_bridge.services.enrichment_service import AttributeEnricher
from variant_bridge.services.webhook_service import WebhookOrchestrator


@dataclass
class ServiceContainer:
    """The long-lived services, built once per process at startup."""

    settings: Settings
    tracker: AssignmentTracker
    dispatcher: CampaignDispatcher
    enricher: AttributeEnricher
    orchestrator: WebhookOrchestrator
    audience_repo: AudienceRepository
    messaging_repo: MessagingRepository

    async def aclose(self) -> None:
        await self.audience_repo.aclose()
        await self.messaging_repo.aclose()


def build_container(
    settings: Settings,
    connect: ProviderConnector = connect_eppo,
    audience_repo: Optional[AudienceRepository] = None,
    messaging_repo: Optional[MessagingRepository] = None,
) -> ServiceContainer:
    audience_repo = audience_repo or AudienceRepository(
        api_key=settings.HIGHTOUCH_API_KEY,
        base_url=settings.HIGHTOUCH_API_URL,
        collection_name=settings.HIGHTOUCH_COLLECTION_NAME,
        timeout=settings.HIGHTOUCH_TIMEOUT_SECONDS,
    )
    messaging_repo = messaging_repo or MessagingRepository(
        api_key=settings.BRAZE_API_KEY,
        rest_endpoint=settings.BRAZE_REST_ENDPOINT,
        timeout=settings.BRAZE_TIMEOUT_SECONDS,
    )

    tracker = AssignmentTracker(
        settings.EPPO_SDK_KEY,
        repository=AssignmentRepository(settings.ASSIGNMENT_CACHE_CAPACITY),
        connect=connect,
    )
    dispatcher = CampaignDispatcher(messaging_repo)
    enricher = AttributeEnricher(audience_repo)
    orchestrator = WebhookOrchestrator(
        tracker,
        dispatcher,
        enricher,
        flag_key=settings.EXPERIMENT_FLAG_KEY,
        campaign_id=settings.BRAZE_WEBHOOK_CAMPAIGN_ID,
    )

    return ServiceContainer(
        settings=settings,
        tracker=tracker,
        dispatcher=dispatcher,
        enricher=enricher,
        orchestrator=orchestrator,
        audience_repo=audience_repo,
        messaging_repo=messaging_repo,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_app_settings(request: Request) -> Settings:
    """The settings this app was built with, not the process environment."""
    return get_container(request).settings


def get_tracker(request: Request) -> AssignmentTracker:
    return get_container(request).tracker


def get_dispatcher(request: Request) -> CampaignDispatcher:
    return get_container(request).dispatcher


def get_orchestrator(request: Request) -> WebhookOrchestrator:
    return get_container(request).orchestrator
