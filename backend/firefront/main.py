"""FastAPI application entrypoint and configuration.

This module provides the application factory that configures logging, sets
up CORS middleware, includes the region, project and tile routers, maps
the map builder's exceptions to HTTP responses and exposes a health check
endpoint for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn firefront.main:app --reload

    Or imported and used programmatically:
        >>> from firefront.main import create_app
        >>> app = create_app()
"""

import logging

import fastapi
from fastapi import responses
from fastapi.middleware import cors

from firefront.api import projects, regions, tiles
from firefront.core import config, errors

logger = logging.getLogger(__name__)


def status_for(exc: errors.FirefrontError) -> int:
    """Return the HTTP status code for a map builder exception."""
    if isinstance(exc, errors.RegionNotFoundError | errors.ProjectNotFoundError):
        return 404
    if isinstance(
        exc,
        errors.GeometryError | errors.CanvasDimensionError | errors.ProjectError,
    ):
        return 400
    return 500


async def _firefront_error_handler(
    request: fastapi.Request, exc: errors.FirefrontError
) -> responses.JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return responses.JSONResponse(
        status_code=status, content={"detail": str(exc)}
    )


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures root logging from settings, sets up CORS middleware,
    includes the API routers, registers the exception handler and adds a
    health check endpoint.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = fastapi.FastAPI(title="Firefront Map Builder", version="0.1.0")

    app.include_router(regions.router)
    app.include_router(projects.router)
    app.include_router(tiles.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(
        errors.FirefrontError,
        _firefront_error_handler,  # type: ignore[arg-type]
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
