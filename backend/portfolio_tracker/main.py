"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace

from portfolio_tracker.api.routes import api_router
from portfolio_tracker.config import get_settings
from portfolio_tracker.core.errors import BusinessRuleError, DuplicateCacheEntryError, NotFoundError
from portfolio_tracker.core.logging import setup_logging
from portfolio_tracker.core.telemetry import setup_telemetry
from portfolio_tracker.db.init import init_database
from portfolio_tracker.db.session import Database, get_database
from portfolio_tracker.providers.registry import ProviderRegistry, build_provider_registry

logger = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(DuplicateCacheEntryError)
    async def _duplicate(_: Request, exc: DuplicateCacheEntryError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc), "key": exc.key},
        )

    @app.exception_handler(BusinessRuleError)
    async def _business_rule(_: Request, exc: BusinessRuleError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@asynccontextmanager
async def _lifespan(app: FastAPI, database: Database, providers: ProviderRegistry):
    await init_database(database)
    yield
    await providers.aclose()
    await database.dispose()


def create_app(
    database: Database | None = None,
    providers: ProviderRegistry | None = None,
) -> FastAPI:
    """Build the application around a database and a provider registry."""

    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Portfolio tracker configuration", extra=settings.dict_for_logging())

    database_instance = database or get_database()
    provider_registry = providers or build_provider_registry(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lambda app: _lifespan(app, database_instance, provider_registry),
    )
    app.state.database = database_instance
    app.state.providers = provider_registry
    setup_telemetry(app, settings, engine=database_instance.engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["traceparent", "tracestate", "x-request-id"],
    )
    _register_exception_handlers(app)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        """Return service readiness metadata."""

        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "timezone": settings.timezone,
        }

    # Tag the active server span with the calling user
    @app.middleware("http")
    async def _attach_user(request: Request, call_next):  # type: ignore[no-untyped-def]
        user_id = request.headers.get("x-user-id")
        if user_id:
            trace.get_current_span().set_attribute("enduser.id", user_id)
        return await call_next(request)

    app.include_router(api_router)
    return app


__all__ = ["create_app"]
