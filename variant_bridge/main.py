import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Body, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette import status

from variant_bridge.core.auth import verify_webhook_secret
from variant_bridge.core.container import (
    ServiceContainer,
    build_container,
    get_container,
    get_dispatcher,
    get_orchestrator,
    get_tracker,
)
from variant_bridge.core.errors import BridgeError
from variant_bridge.core.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)
from variant_bridge.core.settings import Settings, get_settings
from variant_bridge.models.schemas.assignment import (
    AssignmentResponse,
    GetAssignmentRequest,
    ServerInfo,
)
from variant_bridge.models.schemas.event import TrackEventRequest, TrackEventResponse
from variant_bridge.models.schemas.health import HealthResponse
from variant_bridge.models.schemas.webhook import (
    EventToTrack,
    MessagePreview,
    RequestOrigin,
    SendMessageRequest,
    SendMessageResponse,
)
from variant_bridge.services.assignment_service import AssignmentTracker
from variant_bridge.services.campaign_service import CampaignDispatcher
from variant_bridge.services.webhook_service import WebhookOrchestrator

log = get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    container: Optional[ServiceContainer] = getattr(app.state, "container", None)
    if container is None:
        container = build_container(app.state.settings)
        app.state.container = container

    if not container.tracker.is_initialized:
        try:
            container.tracker.initialize()
        except Exception as e:
            # Keep serving: /health reports the failure and assignments come
            # back empty until the process is restarted with a valid key.
            log.critical("startup.flag_provider_unavailable", error=str(e))

    settings = container.settings
    log.info(
        "startup.ready",
        app=settings.APP_NAME,
        environment=settings.APP_ENV,
        messaging_configured=settings.messaging_configured,
        flag_key=settings.EXPERIMENT_FLAG_KEY,
        port=settings.PORT,
    )
    try:
        yield
    finally:
        await container.aclose()


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    settings = settings or (container.settings if container else get_settings())
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Experiment assignments for messaging campaigns and their webhooks",
        version="0.0.1",
        lifespan=lifespan,
    )
    app.state.settings = settings
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        clear_request_context()
        bind_request_context(request_id=request_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    _register_routes(app)
    return app


async def _handle_webhook(
    body: Dict[str, Any], signed: bool, orchestrator: WebhookOrchestrator
):
    log.info("webhook.received", body=body)
    declared = RequestOrigin.PLATFORM if signed else None
    try:
        result = await orchestrator.process(body, declared_origin=declared)
    except Exception as e:
        log.exception("webhook.processing_failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "status": "error",
                "message": "Failed to process webhook",
                "error": str(e),
                "timestamp": _now(),
            },
        )

    # The platform renders the flat preview object, nothing else.
    return result.message_preview


def _register_routes(app: FastAPI) -> None:
    @app.get(
        "/health",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Liveness and provider state",
    )
    def health(tracker: AssignmentTracker = Depends(get_tracker)):
        return HealthResponse(eppo_initialized=tracker.is_initialized)

    @app.post("/", response_model=MessagePreview, summary="Messaging platform webhook")
    async def post_root_webhook(
        body: Optional[Dict[str, Any]] = Body(default=None),
        signed: bool = Depends(verify_webhook_secret),
        orchestrator: WebhookOrchestrator = Depends(get_orchestrator),
    ):
        return await _handle_webhook(body or {}, signed, orchestrator)

    @app.post("/webhook", response_model=MessagePreview, summary="Messaging platform webhook")
    async def post_webhook(
        body: Optional[Dict[str, Any]] = Body(default=None),
        signed: bool = Depends(verify_webhook_secret),
        orchestrator: WebhookOrchestrator = Depends(get_orchestrator),
    ):
        return await _handle_webhook(body or {}, signed, orchestrator)

    @app.post("/get-assignment", response_model=AssignmentResponse, summary="Get user assignment")
    async def post_get_assignment(
        request_data: GetAssignmentRequest,
        container: ServiceContainer = Depends(get_container),
    ):
        """
        Resolves the experiment for a user, after marking them as enrolled on
        the messaging platform. Returns the full aggregate plus server details.
        """
        if not request_data.user_id:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "userId is required"},
            )

        orchestrator = container.orchestrator
        try:
            await orchestrator.set_gate(request_data.user_id)
            result = await orchestrator.resolve_assignment(
                request_data.user_id, request_data.user_attributes
            )
        except Exception as e:
            log.exception("assignment.request_failed", user_id=request_data.user_id)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Failed to get assignment", "details": str(e), "timestamp": _now()},
            )

        server_info = ServerInfo(
            flag_key=orchestrator.flag_key,
            eppo_initialized=container.tracker.is_initialized,
            client_info=container.tracker.client_info(),
            messaging_info=container.dispatcher.client_info(),
            environment=container.settings.APP_ENV,
        )
        return AssignmentResponse(**result.model_dump(), server_info=server_info)

    @app.post(
        "/send-message",
        response_model=SendMessageResponse,
        summary="Preview the message a user would get (demo mode)",
    )
    async def post_send_message(
        request_data: SendMessageRequest,
        orchestrator: WebhookOrchestrator = Depends(get_orchestrator),
    ):
        if not request_data.user_id:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "userId is required"},
            )

        try:
            result = await orchestrator.process(
                {"userId": request_data.user_id, "user_attributes": request_data.user_attributes},
                declared_origin=RequestOrigin.INTERNAL,
            )
        except Exception as e:
            log.exception("send_message.failed", user_id=request_data.user_id)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Failed to process demo message", "details": str(e)},
            )

        return SendMessageResponse(
            message_preview=result.message_preview,
            event_to_track=EventToTrack(
                name="message_sent_demo",
                properties={
                    "eppo_flag_key": result.flag_key,
                    "eppo_assignment": result.assignment,
                },
            ),
            webhook_response=result,
        )

    @app.post(
        "/track-event",
        response_model=TrackEventResponse,
        summary="Record a user event with its experiment context",
    )
    async def post_track_event(
        event_data: TrackEventRequest,
        orchestrator: WebhookOrchestrator = Depends(get_orchestrator),
        dispatcher: CampaignDispatcher = Depends(get_dispatcher),
    ):
        if not event_data.user_id or not event_data.event_name:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "userId and eventName are required"},
            )

        try:
            result = await orchestrator.resolve_assignment(
                event_data.user_id, event_data.user_attributes
            )
            timestamp = _now()
            enriched_properties = {
                **event_data.event_properties,
                "eppo_flag_key": orchestrator.flag_key,
                "eppo_assignment": result.assignment,
                "experiment_id": orchestrator.flag_key,
                "timestamp": timestamp,
            }
            braze_response = await dispatcher.track_event(
                event_data.user_id,
                event_data.event_name,
                event_properties=enriched_properties,
                user_attributes={
                    **event_data.user_attributes,
                    "eppo_variant": result.assignment,
                },
            )
        except Exception as e:
            log.error("track_event.failed", user_id=event_data.user_id, error=str(e))
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Failed to track event", "details": str(e)},
            )

        return TrackEventResponse(
            user_id=event_data.user_id,
            event_name=event_data.event_name,
            eppo_variant=result.assignment,
            event_properties=enriched_properties,
            braze_response=braze_response,
            timestamp=timestamp,
        )


app = create_app()


if __name__ == "__main__":
    uvicorn.run("variant_bridge.main:app", host="0.0.0.0", port=get_settings().PORT)
