"""
Maps domain error kinds to HTTP responses.

Every handler answers ``{"detail": <message>, "error": <kind>}`` plus the
error's ``details`` when it carries any.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cabcore.domain.errors import (
    CabCoreError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ServiceUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[CabCoreError], int] = {
    ValidationError: 400,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    ServiceUnavailableError: 503,
}


def status_for(exc: CabCoreError) -> int:
    for kind in type(exc).__mro__:
        if kind in STATUS_CODES:
            return STATUS_CODES[kind]
    return 500


async def cabcore_error_handler(request: Request, exc: CabCoreError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = {"detail": exc.message, "error": type(exc).__name__}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CabCoreError, cabcore_error_handler)
