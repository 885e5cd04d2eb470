"""Error Handlers: global exception handlers for errors raised outside the pipeline.

Invariants:
    - RestCoreError -> its own status, headers and {"error": {...}} body
    - Exception (catch-all) -> 500, never leaks internal details

Design Decisions:
    - The pipeline renders its own errors; these handlers only cover the
      transport adapter and anything FastAPI itself runs
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from restcore.core.errors import RestCoreError, ServerError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""
    _register_restcore_error_handler(app)
    _register_generic_error_handler(app)


def _register_restcore_error_handler(app: FastAPI) -> None:

    @app.exception_handler(RestCoreError)
    async def restcore_error_handler(request: Request, exc: RestCoreError):
        logger.warning(
            f"{exc.kind}: {exc.message}",
            extra={"error_kind": exc.kind, "path": request.url.path},
        )
        return JSONResponse(
            status_code=exc.http_status,
            content=exc.to_response(),
            headers={**exc.headers, "Cache-Control": "no-store"},
        )


def _register_generic_error_handler(app: FastAPI) -> None:

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Catch-all: never leaks internal details."""
        logger.error(
            f"Unhandled exception on {request.url.path}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ServerError().to_response(),
        )
