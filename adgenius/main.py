"""
FastAPI application factory for the licensing backend.

Serve adgenius.main:app with any ASGI server.
"""

import logging

from fastapi import FastAPI, Request

from adgenius import __version__
from adgenius.api.routes import health, webhooks_jvzoo
from adgenius.api.routes import license as license_routes
from adgenius.platform.errors import AppError, ErrorHandlerMiddleware, app_error_response, get_correlation_id

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="AdGenius Licensing", version=__version__)

    app.add_middleware(ErrorHandlerMiddleware)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        correlation_id = get_correlation_id(request)
        logger.warning(
            "Application error",
            extra={
                "correlation_id": correlation_id,
                "error_code": exc.code,
                "status_code": exc.status_code,
                "path": request.url.path,
            },
        )
        return app_error_response(exc, correlation_id)

    app.include_router(health.router)
    app.include_router(license_routes.router)
    app.include_router(webhooks_jvzoo.router)
    return app


app = create_app()
