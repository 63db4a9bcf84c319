# backend/app/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from .core.config import is_running_tests, settings
from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .core.logging_config import configure_logging
from .database import init_db
from .errors import register_error_handlers
from .middleware.timing import TimingMiddleware
from .routes.v1 import appointments as appointments_v1
from .routes.v1 import availability as availability_v1
from .routes.v1 import health as health_v1
from .routes.v1 import ledgers as ledgers_v1
from .routes.v1 import prometheus as prometheus_v1

configure_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{BRAND_NAME} API starting up...")
    logger.info(
        "startup_config",
        extra={
            "environment": settings.environment,
            "idempotency_backend": settings.idempotency_backend,
            "schedule_timezone": settings.schedule_timezone,
        },
    )
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    # Schema management belongs to migrations in production
    if not settings.is_production:
        init_db()

    yield

    logger.info(f"{BRAND_NAME} API shutting down...")


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)
register_error_handlers(app)
app.add_middleware(TimingMiddleware)

# V1 API router
api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(health_v1.router, prefix="/health")
api_v1.include_router(availability_v1.router, prefix="/availability")
api_v1.include_router(appointments_v1.router, prefix="/appointments")
api_v1.include_router(ledgers_v1.router, prefix="/ledgers")
api_v1.include_router(ledgers_v1.payments_router)
app.include_router(api_v1)

# Prometheus scrape endpoint lives outside the versioned API
app.include_router(prometheus_v1.router)

# Keep the original FastAPI app for tools/tests that need access to routes
fastapi_app = app

__all__ = ["app", "fastapi_app"]
