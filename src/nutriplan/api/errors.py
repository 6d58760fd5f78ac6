"""Exception handlers translating errors into the JSON envelope."""

import logging
import traceback
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nutriplan.core.config import get_settings
from nutriplan.core.exceptions import NutriPlanBaseError, RateLimitExceededError
from nutriplan.models.common import error_body

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"


def _field_path(loc: tuple[Any, ...]) -> str:
    parts = [str(part) for part in loc if part not in {"body", "query", "path", "header"}]
    return ".".join(parts)


def validation_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    """Flatten pydantic errors into ``{field, message}`` items."""
    return [
        {
            "field": _field_path(tuple(error.get("loc", ()))),
            "message": str(error.get("msg", "Invalid value")).removeprefix("Value error, "),
        }
        for error in exc.errors()
    ]


async def nutriplan_error_handler(request: Request, exc: NutriPlanBaseError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    else:
        logger.debug("%s on %s: %s", type(exc).__name__, request.url.path, exc)

    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, errors=exc.details.get("errors") or None),
        headers=headers,
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = validation_errors(exc)
    logger.debug("Validation failed on %s: %d error(s)", request.url.path, len(errors))
    return JSONResponse(status_code=400, content=error_body("Validation failed", errors=errors))


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    debug = None
    if get_settings().is_development():
        debug = {
            "type": type(exc).__name__,
            "detail": str(exc),
            "stack": traceback.format_exception(exc),
        }
    return JSONResponse(
        status_code=500, content=error_body(INTERNAL_ERROR_MESSAGE, debug=debug)
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NutriPlanBaseError, nutriplan_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
