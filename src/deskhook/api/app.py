"""FastAPI application for deskhook."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deskhook import __version__
from deskhook.config import Settings
from deskhook.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DeliveryPersistenceError,
    DeskhookError,
    NotFoundError,
    ValidationError,
)
from deskhook.logging import configure_logging, get_logger
from deskhook.service import WebhookService

from .router import router, set_service

logger = get_logger(__name__)


def build_lifespan(
    settings: Settings,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Lifespan that owns the WebhookService and the periodic sweeper."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(level=settings.log_level, format=settings.log_format)
        logger.info(
            "Starting deskhook API", log_level=settings.log_level, env=settings.env
        )

        service = WebhookService.create(settings)
        await service.initialize()
        set_service(service)

        if settings.sweep_enabled:
            await service.start_sweeper()
            logger.info("Retry sweeper enabled", interval=settings.sweep_interval_seconds)

        yield

        await service.close()
        set_service(None)

    return lifespan


def register_exception_handlers(app: FastAPI) -> None:
    """Map deskhook errors to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        """Handle authentication errors with 401 status."""
        logger.warning("Authentication failed", error=exc.message, path=str(request.url))
        return JSONResponse(
            status_code=401,
            content=exc.to_dict(),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(
        request: Request, exc: AuthorizationError
    ) -> JSONResponse:
        """Handle authorization errors with 403 status."""
        logger.warning("Authorization failed", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=403, content=exc.to_dict())

    @app.exception_handler(DeliveryPersistenceError)
    async def persistence_error_handler(
        request: Request, exc: DeliveryPersistenceError
    ) -> JSONResponse:
        """The endpoint may have received the event; the outcome was lost."""
        logger.error(
            "Delivery outcome not persisted",
            delivery_id=exc.delivery_id,
            attempt_number=exc.attempt.attempt_number,
            path=str(request.url),
        )
        return JSONResponse(status_code=500, content=exc.to_dict())

    @app.exception_handler(DeskhookError)
    async def deskhook_error_handler(request: Request, exc: DeskhookError) -> JSONResponse:
        """Handle all other deskhook errors with 500 status."""
        logger.error("deskhook error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from deskhook.api import create_app

        app = create_app()
        # Run with: uvicorn deskhook.api:app --reload
        ```
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="deskhook",
        description="Outbound webhooks for helpdesk events.",
        version=__version__,
        lifespan=build_lifespan(settings),
        docs_url="/docs",
        redoc_url="/redoc",
    )

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=["GET", "POST", "PATCH", "DELETE"],
            allow_headers=["Authorization", "Content-Type"],
        )

    register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
