"""PriceWatch Backend -- FastAPI Application Entry Point."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pricewatch import __version__
from pricewatch.api.v1.router import api_v1_router
from pricewatch.config import settings
from pricewatch.core.exceptions import (
    NotFoundError,
    PlanLimitError,
    PriceWatchException,
    UnsupportedSourceError,
)
from pricewatch.core.logging import configure_logging
from pricewatch.db.session import create_engine, create_session_factory, init_models
from pricewatch.schemas import ErrorDetail, ErrorResponse
from pricewatch.services.storage import InMemoryObservationStore, SqlAlchemyObservationStore
from pricewatch.services.tracking_service import TrackingService
from pricewatch.tracking.factory import AdapterFactory
from pricewatch.tracking.register_adapters import register_all_adapters
from pricewatch.tracking.sources import SourceCatalog

logger = structlog.get_logger(__name__)


def build_tracking_service() -> TrackingService:
    """Assemble the pipeline with every catalog source registered."""
    catalog = SourceCatalog()
    factory = AdapterFactory(user_agent=settings.HTTP_USER_AGENT or None)
    register_all_adapters(factory, catalog)

    return TrackingService(adapter_factory=factory, catalog=catalog)


def create_app(
    service: Optional[TrackingService] = None,
    start_scheduler: Optional[bool] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        service: Pre-built pipeline; built from settings when omitted
        start_scheduler: Whether to start ticking. Defaults to True
            outside the test environment.
    """
    if start_scheduler is None:
        start_scheduler = settings.ENVIRONMENT != "test"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown events."""
        configure_logging()
        logger.info(
            "api_starting",
            environment=settings.ENVIRONMENT,
            debug=settings.DEBUG,
            persist_observations=settings.PERSIST_OBSERVATIONS,
        )

        tracking_service = service or build_tracking_service()

        engine = None
        app.state.session_factory = None
        if settings.PERSIST_OBSERVATIONS and service is None:
            engine = create_engine()
            await init_models(engine)
            session_factory = create_session_factory(engine)
            app.state.session_factory = session_factory
            tracking_service.store = SqlAlchemyObservationStore(session_factory)
            tracking_service.alert_engine.store = tracking_service.store
            logger.info("database_tables_ready")
        elif isinstance(tracking_service.store, InMemoryObservationStore):
            logger.info("observation_store_in_memory")

        app.state.tracking_service = tracking_service

        if start_scheduler:
            tracking_service.start()
        else:
            logger.info("scheduler_disabled", environment=settings.ENVIRONMENT)

        yield

        logger.info("api_stopping")
        await tracking_service.shutdown()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="PriceWatch API",
        description="Competitor price intelligence pipeline",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_v1_router, prefix="/api/v1")

    def _error(status_code: int, code: str, exc: PriceWatchException) -> JSONResponse:
        body = ErrorResponse(error=ErrorDetail(code=code, message=exc.message))
        return JSONResponse(status_code=status_code, content=body.model_dump())

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, "not_found", exc)

    @app.exception_handler(UnsupportedSourceError)
    async def unsupported_source_handler(request: Request, exc: UnsupportedSourceError):
        return _error(400, "unsupported_source", exc)

    @app.exception_handler(PlanLimitError)
    async def plan_limit_handler(request: Request, exc: PlanLimitError):
        return _error(400, "plan_limit", exc)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "PriceWatch API",
            "version": __version__,
            "docs": "/docs" if settings.DEBUG else None,
            "health": "/api/v1/health",
        }

    return app


app = create_app()
