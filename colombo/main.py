# colombo/main.py
# Application wiring: one event loop owns the tracker, discovery and playback state.

from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import Callable
import uuid

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
import httpx
import structlog

from colombo.core.config import settings
from colombo.core.errors import ColomboError
from colombo.api.routes import router as api_router, http_error_for
from colombo.logging import configure_logging
from colombo.middleware.logging import LoggingMiddleware
from colombo.services.audio import BufferedAudioPlayer
from colombo.services.auth import StaticTokenProvider, SupabaseTokenProvider, TokenProvider
from colombo.services.discovery_engine import LandmarkDiscoveryEngine
from colombo.services.events import EventBus
from colombo.services.geosearch import GeosearchClient
from colombo.services.guide import TourGuide
from colombo.services.landmark_source import OverpassLandmarkSource
from colombo.services.narration import NarrationService
from colombo.services.place_directory import PlaceDirectory
from colombo.services.playback import PlaybackController
from colombo.services.proximity_tracker import ProximityTracker

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    guide: TourGuide
    place_directory: PlaceDirectory


def _token_provider(client: httpx.AsyncClient) -> TokenProvider:
    if settings.SUPABASE_URL and settings.SUPABASE_ANON_KEY and settings.SUPABASE_REFRESH_TOKEN:
        return SupabaseTokenProvider(client=client)
    return StaticTokenProvider()


def build_services(client: httpx.AsyncClient) -> Services:
    """Builds the component graph around a shared HTTP client and event bus."""
    events = EventBus()
    tracker = ProximityTracker(events=events)
    discovery = LandmarkDiscoveryEngine(
        source=OverpassLandmarkSource(client=client),
        geosearch=GeosearchClient(client=client),
        events=events,
    )
    playback = PlaybackController(
        narration=NarrationService(_token_provider(client), client=client),
        audio_factory=partial(BufferedAudioPlayer, client=client),
        events=events,
    )
    guide = TourGuide(tracker, discovery, playback, events=events)
    return Services(guide=guide, place_directory=PlaceDirectory(client=client))


def create_app(build: Callable[[httpx.AsyncClient], Services] = build_services) -> FastAPI:

    # --- Application Lifecycle Management ---
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        logger.info("application_startup", version=settings.VERSION, env=settings.ENV)

        client = httpx.AsyncClient(headers={"User-Agent": settings.HTTP_USER_AGENT})
        services = build(client)
        app.state.guide = services.guide
        app.state.place_directory = services.place_directory

        yield

        logger.info("application_shutdown")
        try:
            await services.guide.aclose()
        finally:
            await client.aclose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=settings.BRIEF_DESCRIPTION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    app.add_middleware(LoggingMiddleware)
    app.include_router(api_router, prefix="/api")

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check(request: Request):
        guide: TourGuide = request.app.state.guide
        return {
            "status": "ok",
            "tracker": guide.location().status,
            "discovery": guide.landmarks().status,
            "playback": guide.session().state,
            "place_directory": request.app.state.place_directory.configured,
        }

    # --- Domain errors that escaped a route ---
    @app.exception_handler(ColomboError)
    async def colombo_exception_handler(request: Request, exc: ColomboError):
        http_error = http_error_for(exc)
        logger.warning("domain_error", code=exc.code, detail=exc.detail)
        return JSONResponse(status_code=http_error.status_code, content={"detail": http_error.detail})

    # --- Global Exception Handler (for unhandled errors) ---
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        error_id = str(uuid.uuid4())
        logger.error("unhandled_exception", error_id=error_id, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": {
                    "error": "INTERNAL_SERVER_ERROR",
                    "detail": "An unexpected error occurred. Please report this error ID.",
                    "error_id": error_id
                }
            }
        )

    return app


app = create_app()
