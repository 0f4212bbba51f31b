from __future__ import annotations

from typing import Any

from alertcore.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response("Bad request", _error_example(code="BAD_REQUEST", message="Bad request")),
    401: _response(
        "Unauthorized",
        _error_example(code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    ),
    422: _response(
        "Validation error",
        _error_example(
            code="REQUEST_VALIDATION_ERROR",
            message="Validation error",
            details={"errors": [{"loc": ["header", "X-Tenant-Id"], "msg": "Field required"}]},
        ),
    ),
    500: _response(
        "Configuration or internal error",
        _error_example(code="CONFIG_ERROR", message="ingest token is not configured"),
    ),
    503: _response(
        "Store unavailable",
        _error_example(code="STORE_UNAVAILABLE", message="relational store unavailable"),
    ),
}

ALERT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    404: _response(
        "Alert not found",
        _error_example(code="ALERT_NOT_FOUND", message="Alert not found", details={"alert_id": "a1"}),
    ),
    409: _response(
        "Invalid transition",
        _error_example(
            code="INVALID_TRANSITION",
            message="invalid transition: resolved -> ack",
            details={"from_status": "resolved", "to_status": "ack"},
        ),
    ),
}
