"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError

from promptstash.core.config import Settings, settings
from promptstash.core.middleware import RequestIdFilter, setup_middleware
from promptstash.core.exceptions import (
    StashPlatformError, AuthenticationError, AuthorizationError,
    ResourceNotFoundError, ResourceConflictError, TransactionTimeoutError,
)
from promptstash.db.adapters import StoreErrorKind, get_adapter_for_dialect
from promptstash.db.session import build_engine, make_session_factory
from promptstash.schemas.schemas import ErrorResponse

from promptstash.api.files import router as files_router

logger = logging.getLogger("promptstash")

ERROR_STATUS = [
    (ResourceNotFoundError, status.HTTP_404_NOT_FOUND),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (ResourceConflictError, status.HTTP_409_CONFLICT),
    (TransactionTimeoutError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def configure_logging(app_settings: Settings) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s"
    ))
    handler.addFilter(RequestIdFilter())
    logging.basicConfig(
        level=logging.DEBUG if app_settings.DEBUG else logging.INFO,
        handlers=[handler],
    )


async def stash_exception_handler(request: Request, exc: StashPlatformError):
    """Map domain errors to JSON responses.

    Conflicts and timeouts are transient: the transaction was rolled back
    and the client is told to retry.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    for exc_type, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code = code
            break

    retryable = getattr(exc, "retryable", False)
    headers = {"Retry-After": "1"} if retryable else None
    if status_code >= 500 or retryable:
        logger.warning(
            "%s on %s %s: %s",
            type(exc).__name__, request.method, request.url.path, exc.message,
        )
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=exc.message, retryable=retryable).model_dump(),
        headers=headers,
    )


async def store_exception_handler(request: Request, exc: DBAPIError):
    """Answer store lock-wait timeouts raised outside ``atomic()`` like ones inside it.

    Any other driver error is re-raised and ends as a 500.
    """
    adapter = get_adapter_for_dialect(request.app.state.engine.dialect.name)
    if adapter.classify(exc) is not StoreErrorKind.timeout:
        raise exc
    return await stash_exception_handler(
        request, TransactionTimeoutError("Database is busy, try again"),
    )


def create_app(app_settings: Settings = settings, engine: Optional[Engine] = None) -> FastAPI:
    """Build the application with its own engine and session factory."""
    configure_logging(app_settings)
    engine = engine or build_engine(app_settings.DATABASE_URL, app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info("Starting %s API on %s", app_settings.APP_NAME, engine.dialect.name)
        yield
        engine.dispose()
        logger.info("Shutting down %s API", app_settings.APP_NAME)

    app = FastAPI(
        title=f"{app_settings.APP_NAME} API",
        description="Versioned storage for text and config files",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = app_settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)

    # Middleware
    setup_middleware(app, app_settings)

    app.add_exception_handler(StashPlatformError, stash_exception_handler)
    app.add_exception_handler(DBAPIError, store_exception_handler)

    # Register routers
    app.include_router(files_router, prefix="/api")

    @app.get("/")
    async def root():
        return {
            "name": app_settings.APP_NAME,
            "version": "0.1.0",
            "docs": "/docs",
        }

    @app.get("/api/health")
    async def health():
        """Quick health check endpoint."""
        return {"status": "ok"}

    return app


app = create_app()
