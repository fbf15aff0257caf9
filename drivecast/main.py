"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from drivecast.core.config import settings
from drivecast.core.logging import setup_logging
from drivecast.core.metrics import get_metrics, get_metrics_content_type, set_app_info
from drivecast.core.middleware import (
    MetricsMiddleware,
    CorrelationIdMiddleware,
    TracingMiddleware,
    RequestLoggingMiddleware,
)
from drivecast.core.redis import close_redis
from drivecast.core.tracing import setup_tracing, shutdown_tracing
from drivecast.modules.drive.client import DriveError
from drivecast.modules.drive.router import drive_exception_handler, router as drive_router
from drivecast.modules.transcoding.router import router as upload_router
from drivecast.modules.transcoding.runner import get_job_runner

logger = logging.getLogger(__name__)

ENVIRONMENT = "development" if settings.DEBUG else "production"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up", extra={"version": settings.VERSION})
    yield
    # Give running transcode jobs a chance to finish before exit
    await get_job_runner().drain(timeout=settings.SHUTDOWN_GRACE_SECONDS)
    if settings.PROGRESS_BACKEND.lower() == "redis":
        await close_redis()
    shutdown_tracing()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Drivecast API

File manager and video host on top of Google Drive.

* **Drive** - list, create folders, rename, move, copy, delete, stream
* **Upload** - direct upload, or background transcode to 1080p/720p/480p/360p
* **Progress** - poll the state of a transcode job
    """,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "drive",
            "description": "Drive file manager - listing, folders, batch move/copy, streaming",
        },
        {
            "name": "upload",
            "description": "Uploads and transcode job progress",
        },
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=ENVIRONMENT,
    enable_console_export=settings.DEBUG,
)

set_app_info(version=settings.VERSION, environment=ENVIRONMENT)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(DriveError, drive_exception_handler)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


app.include_router(upload_router, prefix=settings.API_PREFIX)
app.include_router(drive_router, prefix=settings.API_PREFIX)
