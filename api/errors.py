"""
Exception handlers mapping access errors to HTTP responses.

Body shape for every handled error::

    {"error": "<code>", "message": "...", "details": {...}}
"""

import logging
from typing import Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from core.errors import (
    AccessError,
    InvariantViolation,
    MutationInFlight,
    NotFound,
    PermissionDenied,
    StaleStateConflict,
    TransientStoreError,
    UploadError,
)
from core.metrics import increment_counter

logger = logging.getLogger(__name__)

STATUS_BY_CODE: Dict[str, int] = {
    PermissionDenied.code: status.HTTP_403_FORBIDDEN,
    InvariantViolation.code: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFound.code: status.HTTP_404_NOT_FOUND,
    TransientStoreError.code: status.HTTP_503_SERVICE_UNAVAILABLE,
    UploadError.code: status.HTTP_503_SERVICE_UNAVAILABLE,
    StaleStateConflict.code: status.HTTP_409_CONFLICT,
    MutationInFlight.code: status.HTTP_409_CONFLICT,
}


def status_for(error: AccessError) -> int:
    return STATUS_BY_CODE.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    code = status_for(exc)
    increment_counter("api.errors", labels={"code": exc.code})

    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")

    return JSONResponse(status_code=code, content=exc.to_dict())


def install_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on an application."""
    app.add_exception_handler(AccessError, access_error_handler)
