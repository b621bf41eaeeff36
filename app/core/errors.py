"""
=============================================================================
FIREPING - ERROR HANDLING MODULE
=============================================================================
Exception handlers for the read-only incident/detection API.

- IncidentNotFoundError      -> 404 with the requested id
- Database unreachable       -> 503 (clients may retry)
- Anything else              -> 500, traceback logged server-side only

Usage:
    from app.core.errors import register_exception_handlers
    register_exception_handlers(app)
=============================================================================
"""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, OperationalError

from app.core.config import settings
from app.services.fire_queries import IncidentNotFoundError

logger = logging.getLogger(__name__)


def _debug_details(request: Request, exc: Exception) -> dict:
    if not settings.DEBUG:
        return {}
    return {
        "error_type": type(exc).__name__,
        "message": str(exc),
        "path": request.url.path,
    }


def register_exception_handlers(app: FastAPI) -> None:
    """Register the API exception handlers on ``app``."""

    @app.exception_handler(IncidentNotFoundError)
    async def incident_not_found_handler(request: Request, exc: IncidentNotFoundError):
        return JSONResponse(
            status_code=404,
            content={"detail": "Incident not found", "incident_id": str(exc.incident_id)},
        )

    @app.exception_handler(OperationalError)
    async def database_unavailable_handler(request: Request, exc: OperationalError):
        # connection loss or statement timeout
        logger.warning(
            "Database unavailable on %s %s: %s",
            request.method,
            request.url.path,
            exc.orig if isinstance(exc, DBAPIError) else exc,
        )
        content = {"detail": "Database temporarily unavailable"}
        content.update(_debug_details(request, exc))
        return JSONResponse(status_code=503, content=content)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception on %s %s:\n%s",
            request.method,
            request.url.path,
            traceback.format_exc(),
        )
        content = {"detail": "Internal Server Error"}
        if settings.DEBUG:
            content.update(_debug_details(request, exc))
        else:
            content["message"] = "An unexpected error occurred. Please try again later."
        return JSONResponse(status_code=500, content=content)
