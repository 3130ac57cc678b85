"""
Main FastAPI application for the funding pipeline.
Configures the API server with routes, middleware, error handlers and documentation.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import structlog

from funding_pipeline.api.middleware import add_middleware
from funding_pipeline.api.routes import admin, funding
from funding_pipeline.api.dependencies import require_admin
from funding_pipeline.api.schemas.common import camelize, create_error_response
from funding_pipeline.container import ServiceContainer
from funding_pipeline.core.config import get_settings
from funding_pipeline.core.exceptions import (
    ConfigurationError,
    DatabaseError,
    ExternalServiceError,
    FundingPipelineException,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from funding_pipeline.core.logging import setup_logging


logger = structlog.get_logger(__name__)


def error_status_code(exc: FundingPipelineException) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, RateLimitError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(exc, (ConfigurationError, DatabaseError, ExternalServiceError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(message: str, error: str, details: Optional[dict] = None) -> dict:
    response = create_error_response(message=message, error=error, details=camelize(details or {}))
    return response.model_dump(mode="json")


def add_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(FundingPipelineException)
    async def pipeline_exception_handler(request: Request, exc: FundingPipelineException):
        status_code = error_status_code(exc)
        log = logger.warning if status_code < 500 else logger.error
        log(
            "Request failed with pipeline error",
            path=request.url.path,
            error=exc.code,
            message=exc.message,
            status_code=status_code
        )
        return JSONResponse(
            status_code=status_code,
            content=error_body(exc.message, exc.code, exc.details)
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("Invalid request", "VALIDATION_ERROR", {"errors": errors})
        )


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The container is built at startup when none is given; either way the
    lifespan starts it and closes it on shutdown.
    """
    settings = container.settings if container is not None else get_settings()

    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting funding pipeline API server")

        app_container = container or ServiceContainer(settings)
        app.state.container = app_container
        await app_container.start()

        if settings.run_workers_in_api:
            await app_container.workers.start_all()
            logger.info("Background workers started in API process")

        yield

        logger.info("Shutting down funding pipeline API server")
        await app_container.close()

    app = FastAPI(
        title=settings.app_name,
        description="""
        Deposit address assignment, on-chain funding confirmation and
        ERC-20 reward disbursement.

        ## Authentication

        Admin endpoints require, when an admin key is configured:
        ```
        Authorization: Bearer <ADMIN_API_KEY>
        ```

        ## Error Handling

        All endpoints return consistent error responses with an error code,
        a human-readable message and optional details.
        """,
        version=settings.app_version,
        lifespan=lifespan,
    )

    add_middleware(app, settings)
    add_exception_handlers(app)

    app.include_router(
        funding.router,
        prefix=settings.api_prefix,
        tags=["Deposits"]
    )

    app.include_router(
        admin.router,
        prefix=f"{settings.api_prefix}/admin",
        tags=["Admin"],
        dependencies=[Depends(require_admin)]
    )

    logger.info("FastAPI application created successfully")
    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "funding_pipeline.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
