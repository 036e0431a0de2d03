"""
Plugin HTTP API for the platform.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..exceptions import ConnectorException
from ..platform.platform_client import PlatformClient
from .plugin import router

logger = logging.getLogger(__name__)

__all__ = ["create_app", "router"]


def create_app(platform_client: PlatformClient) -> FastAPI:
    """
    Application factory.

    Args:
        platform_client: Platform client shared with the device sessions.
    """
    app = FastAPI(
        title="SANTAK-RTU Plugin API",
        docs_url=None,
        redoc_url=None,
    )
    app.state.platform_client = platform_client

    register_exception_handlers(app)
    app.include_router(router)

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Render errors in the platform response envelope."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": exc.status_code, "message": str(exc.detail), "data": None},
        )

    @app.exception_handler(ConnectorException)
    async def connector_exception_handler(request: Request, exc: ConnectorException):
        logger.error(f"Request failed: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "code": status.HTTP_500_INTERNAL_SERVER_ERROR,
                "message": exc.message,
                "data": exc.to_dict(),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "code": status.HTTP_500_INTERNAL_SERVER_ERROR,
                "message": "An internal error occurred",
                "data": None,
            },
        )
