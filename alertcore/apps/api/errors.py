from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from alertcore.apps.api.response import error_response
from alertcore.core.errors import (
    AlertNotFoundError,
    ConfigurationError,
    InvalidTransitionError,
    StoreUnavailableError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Routes raise HTTPException(detail={"code", "message", ...}) or a plain string.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Covers fastapi.HTTPException too, which subclasses the Starlette one.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def configuration_exception_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    # Whole-call failures: the caller retries the batch once the deployment is fixed.
    if isinstance(exc, StoreUnavailableError):
        payload = error_response(request=request, code="STORE_UNAVAILABLE", message=str(exc))
        return JSONResponse(content=payload, status_code=503)
    logger.error("configuration_error path=%s error=%s", request.url.path, exc)
    payload = error_response(request=request, code="CONFIG_ERROR", message=str(exc))
    return JSONResponse(content=payload, status_code=500)


async def alert_not_found_handler(request: Request, exc: AlertNotFoundError) -> JSONResponse:
    payload = error_response(
        request=request,
        code="ALERT_NOT_FOUND",
        message="Alert not found",
        details={"alert_id": str(exc)},
    )
    return JSONResponse(content=payload, status_code=404)


async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    payload = error_response(
        request=request,
        code="INVALID_TRANSITION",
        message=str(exc),
        details={"from_status": exc.from_status, "to_status": exc.to_status},
    )
    return JSONResponse(content=payload, status_code=409)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
