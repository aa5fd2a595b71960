"""hrflow — FastAPI application factory for the reference leave & attendance API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

import hrflow.common.audit  # noqa: F401  (registers audit_trail on Base.metadata)
from hrflow import __version__
from hrflow.attendance.router import router as attendance_router
from hrflow.common.constants import API_PREFIX
from hrflow.common.exceptions import register_exception_handlers
from hrflow.common.logging import setup_logging
from hrflow.common.rate_limit import limiter
from hrflow.config import settings
from hrflow.database import Base, engine
from hrflow.leave.router import router as leave_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    if settings.CREATE_SCHEMA_ON_STARTUP:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured")
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    if not settings.JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set before starting the API.")

    setup_logging()

    app = FastAPI(
        title="hrflow",
        description="Leave & attendance approval API",
        version=__version__,
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get(f"{API_PREFIX}/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(leave_router, prefix=f"{API_PREFIX}/leave", tags=["leave"])
    app.include_router(attendance_router, prefix=f"{API_PREFIX}/attendance", tags=["attendance"])

    return app
