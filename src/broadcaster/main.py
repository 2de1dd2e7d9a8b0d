"""
FastAPI application entry point.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from broadcaster import __version__
from broadcaster.calls.router import router as calls_router
from broadcaster.config import get_settings
from broadcaster.dependencies import get_state_machine
from broadcaster.shared.database import get_database_manager
from broadcaster.shared.exceptions import AppError, NotFoundError, StorageError, ValidationError
from broadcaster.shared.logging import get_logger, setup_logging
from broadcaster.shared.middleware import CorrelationIdMiddleware
from broadcaster.telephony.factory import get_telephony_client
from broadcaster.telephony.webhooks.router import router as webhooks_router

logger = get_logger(__name__)

# Domain error -> HTTP status; first match wins.
ERROR_STATUS: tuple[tuple[type[AppError], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (StorageError, 500),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Prepare storage on startup; stop timers and close clients on shutdown."""
    setup_logging()
    settings = get_settings()
    uses_sql = settings.store_backend == "sql"

    logger.info(
        "Broadcaster starting",
        extra={"env": settings.app_env, "store_backend": settings.store_backend},
    )
    if uses_sql:
        await get_database_manager().create_all()
        logger.info("Call record tables ready")

    yield

    # Delayed hangups still pending are dropped with the process.
    await get_state_machine().scheduler.shutdown()
    await get_telephony_client().close()
    if uses_sql:
        await get_database_manager().close()
    logger.info("Broadcaster stopped")


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    status_code = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 500)
    content: dict[str, object] = {"success": False, "message": exc.message}
    if status_code >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error": exc.message},
        )
        content["message"] = "Storage unavailable" if isinstance(exc, StorageError) else "Internal error"
        content["error"] = exc.message
    return JSONResponse(status_code=status_code, content=content)


async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "errors": errors,
            },
        },
    )


def create_app() -> FastAPI:
    """Build the broadcaster API."""
    settings = get_settings()

    app = FastAPI(
        title="Call Broadcast API",
        description="Outbound call broadcasting over Telnyx Call Control",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks_router)
    app.include_router(calls_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
