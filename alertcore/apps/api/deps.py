from __future__ import annotations

import hmac
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.core.config import get_settings
from alertcore.core.errors import ConfigurationError
from alertcore.persistence.db import get_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class OperatorPrincipal(BaseModel):
    # Operator identity for tenant-scoped reads and manual transitions.
    tenant_id: str
    actor_id: str | None = None


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


async def require_token(authorization: str | None = Header(default=None)) -> None:
    settings = get_settings()
    if not settings.auth_enabled:
        return
    if not settings.ingest_auth_token:
        # Auth on with no secret configured would reject every caller; fail loudly instead.
        raise ConfigurationError("ingest token is not configured")
    token = _parse_bearer_token(authorization)
    if token is None or not hmac.compare_digest(token, settings.ingest_auth_token):
        raise _auth_error("Missing or invalid bearer token")


async def get_operator(
    _auth: None = Depends(require_token),
    tenant_id: str = Header(..., alias="X-Tenant-Id", min_length=1),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> OperatorPrincipal:
    return OperatorPrincipal(tenant_id=tenant_id, actor_id=actor_id)
