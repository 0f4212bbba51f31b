from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from alertcore.apps.api.errors import (
    alert_not_found_handler,
    configuration_exception_handler,
    http_exception_handler,
    invalid_transition_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from alertcore.apps.api.response import API_VERSION
from alertcore.apps.api.routes.alerts import router as alerts_router
from alertcore.apps.api.routes.health import router as health_router
from alertcore.apps.api.routes.ops import router as ops_router
from alertcore.core.config import get_settings
from alertcore.core.errors import AlertNotFoundError, ConfigurationError, InvalidTransitionError
from alertcore.core.logging import configure_logging
from alertcore.services.telemetry import record_request


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="alertcore API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(ConfigurationError)
    async def _configuration_exception_handler(request: Request, exc: ConfigurationError):
        return await configuration_exception_handler(request, exc)

    @app.exception_handler(AlertNotFoundError)
    async def _alert_not_found_handler(request: Request, exc: AlertNotFoundError):
        return await alert_not_found_handler(request, exc)

    @app.exception_handler(InvalidTransitionError)
    async def _invalid_transition_handler(request: Request, exc: InvalidTransitionError):
        return await invalid_transition_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(alerts_router, prefix=f"/{API_VERSION}")
    app.include_router(ops_router, prefix=f"/{API_VERSION}")

    def custom_openapi() -> dict:
        # Inject bearer auth into the schema; health stays public.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="alertcore API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        if settings.auth_enabled:
            for path, operations in schema.get("paths", {}).items():
                if path == f"/{API_VERSION}/health":
                    continue
                for operation in operations.values():
                    operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]

    return app


app = create_app()
