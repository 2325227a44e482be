import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import get_settings, Settings
from .core.logging import init_logging, request_context_middleware
from .core import errors
from .routers import health, hawala, rates
from .services.container import build_services
from .services.notifications import NotificationChannel
from .services.rates.base import RateSource


def create_app(
    settings_override: Optional[Settings] = None,
    rate_sources: Optional[Sequence[RateSource]] = None,
    notification_channel: Optional[NotificationChannel] = None,
) -> FastAPI:
    """Application factory.

    settings_override: pass an already constructed Settings instance for tests
    to isolate environment (e.g., temp DB). Falls back to cached get_settings().
    rate_sources / notification_channel replace the configured upstreams.
    """
    settings = settings_override or get_settings()
    if settings_override is not None and settings.db_path is None:
        settings.init_post_load()
    # Initialize logging early
    init_logging(debug=settings.debug)

    try:
        services = build_services(
            settings, sources=rate_sources, channel=notification_channel
        )
    except Exception:
        # Failing to init storage is fatal; re-raise after logging
        logging.getLogger("saraf").exception("failed to initialise services on startup")
        raise

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        services.close()

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.services = services

    # Middleware (request id / structured logging)
    app.middleware("http")(request_context_middleware)

    # Error handlers
    app.add_exception_handler(StarletteHTTPException, errors.not_found_handler)
    app.add_exception_handler(RequestValidationError, errors.validation_error_handler)
    app.add_exception_handler(errors.ValidationError, errors.domain_validation_handler)
    app.add_exception_handler(errors.NotFound, errors.domain_not_found_handler)
    app.add_exception_handler(errors.InvalidTransition, errors.invalid_transition_handler)
    app.add_exception_handler(
        errors.ConcurrentModification, errors.concurrent_modification_handler
    )
    app.add_exception_handler(Exception, errors.server_error_handler)

    # Routers
    app.include_router(health.router)
    app.include_router(rates.router)
    app.include_router(hawala.router)

    @app.get("/")
    async def root():
        return {"message": settings.app_name, "version": settings.version}

    return app


def get_app() -> FastAPI:
    """Entry point for ``uvicorn saraf.main:get_app --factory``."""
    return create_app()
