"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bodyscan_api.agents.llm import get_llm_info
from bodyscan_api.api.dependencies import get_scan_pipeline
from bodyscan_api.api.routes import scans
from bodyscan_api.core.config import get_settings
from bodyscan_api.core.exceptions import APIError
from bodyscan_api.core.scheduler import get_scheduler, start_scheduler, stop_scheduler
from bodyscan_api.db.mongo import MongoDB
from bodyscan_api.db.unit_of_work import UnitOfWork
from bodyscan_api.services.body_estimation import get_body_estimation_service
from bodyscan_api.services.photos import get_photo_fetcher

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.api_version}")
    logger.info(f"Connecting to MongoDB at {settings.mongo_uri[:20]}...")

    MongoDB.connect(settings.mongo_uri, settings.db_name)
    await UnitOfWork(MongoDB.get_database(settings.db_name)).ensure_indexes()
    logger.info("MongoDB connected, indexes ensured")

    start_scheduler(get_scan_pipeline(), settings)

    yield

    # Shutdown
    logger.info("Shutting down...")
    stop_scheduler()
    await get_photo_fetcher().close()
    await get_body_estimation_service().close()
    MongoDB.close()
    logger.info("MongoDB connection closed")


def error_body(exc: APIError) -> dict:
    """JSON body for API errors; pipeline errors also name their stage."""
    body = {"error": exc.message, "details": exc.details}
    stage = getattr(exc, "stage", None)
    if stage:
        body["stage"] = stage
    return body


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        description="Durable daily body-scan processing pipeline",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.get("/health")
    async def health_check():
        """
        Liveness plus dependency status.

        Reports "degraded" while MongoDB is unreachable; scans cannot be
        processed then, but the process itself is up.
        """
        mongo_ok = await MongoDB.ping()
        scheduler = get_scheduler()

        return {
            "status": "ok" if mongo_ok else "degraded",
            "service": settings.app_name,
            "version": settings.api_version,
            "mongodb": mongo_ok,
            "llm": get_llm_info(settings),
            "body_estimation": settings.body_estimation_provider,
            "resume_sweeper": scheduler is not None and scheduler.running,
        }

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(scans.router, prefix="/scans", tags=["Scans"])

    return app


app = create_app()
