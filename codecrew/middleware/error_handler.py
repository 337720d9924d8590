"""JSON error responses for the HTTP surface."""

import logging
from typing import Any, Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..core.config import settings


logger = logging.getLogger(__name__)


def error_response(status_code: int, error: str, message: str, details: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": details},
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """
    Report every invalid field of a build request.

    Field paths are given in the request's own (camelCase) naming, dotted for
    nested fields.

    Returns:
        422 response whose details list field, message and error type
    """
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(f"Rejected request to {request.url.path}: {errors}")

    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation Error",
        "The request data failed validation",
        errors,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 for anything that escaped a route; details only in debug mode."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)

    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "An unexpected error occurred",
        str(exc) if settings.DEBUG else None,
    )
