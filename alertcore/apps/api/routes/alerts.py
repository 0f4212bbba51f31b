from __future__ import annotations

from datetime import datetime
import json
import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.apps.api.deps import OperatorPrincipal, get_db, get_operator, require_token
from alertcore.apps.api.openapi import ALERT_ERROR_RESPONSES, DEFAULT_ERROR_RESPONSES
from alertcore.apps.api.response import SuccessEnvelope, success_response
from alertcore.core.config import get_settings
from alertcore.core.errors import AlertNotFoundError
from alertcore.persistence.repos.alerts import (
    get_alert,
    list_alert_events,
    list_alert_notifications,
    list_alerts,
)
from alertcore.services.alerting import ingest_events, transition_alert


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"], responses=DEFAULT_ERROR_RESPONSES)


class IngestResultItem(BaseModel):
    dedupe_key: str
    action: str
    alert_id: str | None = None
    error: str | None = None


class IngestResponse(BaseModel):
    processed: int
    results: list[IngestResultItem]


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    rule_id: str | None
    dedupe_key: str
    status: str
    severity: str
    title: str
    payload: dict[str, Any]
    suppressed: bool
    suppressed_by_maintenance_id: str | None
    opened_at: datetime
    last_seen_at: datetime
    acknowledged_at: datetime | None
    acknowledged_by: str | None
    resolved_at: datetime | None
    resolved_by: str | None
    ack_due_at: datetime | None
    resolve_due_at: datetime | None
    ack_breached_at: datetime | None
    resolve_breached_at: datetime | None


class AlertListResponse(BaseModel):
    items: list[AlertResponse]


class AlertEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_type: str
    from_status: str | None
    to_status: str | None
    actor_id: str | None
    message: str | None
    payload: dict[str, Any]
    occurred_at: datetime


class AlertEventListResponse(BaseModel):
    items: list[AlertEventResponse]


class AlertNotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    policy_id: str | None
    step_id: str | None
    channel_id: str | None
    status: str
    attempts: int
    last_error: str | None
    next_attempt_at: datetime | None
    sent_at: datetime | None
    request: dict[str, Any]
    response: dict[str, Any]


class AlertNotificationListResponse(BaseModel):
    items: list[AlertNotificationResponse]


class TransitionRequest(BaseModel):
    message: str | None = None


def _bad_request(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": "BAD_REQUEST", "message": message},
    )


async def _read_events(request: Request) -> list[Any]:
    # Pollers post either one event object or a list of them.
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except (UnicodeDecodeError, ValueError) as exc:
        raise _bad_request("Request body must be valid JSON") from exc
    if isinstance(body, dict):
        return [body]
    if isinstance(body, list):
        return body
    raise _bad_request("Request body must be an event object or a list of events")


@router.post(
    "/ingest",
    response_model=SuccessEnvelope[IngestResponse],
    dependencies=[Depends(require_token)],
)
async def ingest(request: Request) -> dict:
    events = await _read_events(request)
    limit = get_settings().ingest_max_batch_size
    if len(events) > limit:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={"code": "PAYLOAD_TOO_LARGE", "message": "Too many events", "limit": limit},
        )
    result = await ingest_events(events)
    logger.info("ingest_batch_processed processed=%s", result["processed"])
    return success_response(request=request, data=IngestResponse.model_validate(result))


@router.get("", response_model=SuccessEnvelope[AlertListResponse])
async def alerts_list(
    request: Request,
    status_filter: Literal["open", "ack", "resolved"] | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    operator: OperatorPrincipal = Depends(get_operator),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await list_alerts(db, tenant_id=operator.tenant_id, status=status_filter, limit=limit)
    payload = AlertListResponse(items=[AlertResponse.model_validate(row) for row in rows])
    return success_response(request=request, data=payload)


async def _require_alert(db: AsyncSession, *, tenant_id: str, alert_id: str):
    alert = await get_alert(db, tenant_id=tenant_id, alert_id=alert_id)
    if alert is None:
        raise AlertNotFoundError(alert_id)
    return alert


@router.get("/{alert_id}", response_model=SuccessEnvelope[AlertResponse], responses=ALERT_ERROR_RESPONSES)
async def alert_detail(
    alert_id: str,
    request: Request,
    operator: OperatorPrincipal = Depends(get_operator),
    db: AsyncSession = Depends(get_db),
) -> dict:
    alert = await _require_alert(db, tenant_id=operator.tenant_id, alert_id=alert_id)
    return success_response(request=request, data=AlertResponse.model_validate(alert))


@router.get(
    "/{alert_id}/events",
    response_model=SuccessEnvelope[AlertEventListResponse],
    responses=ALERT_ERROR_RESPONSES,
)
async def alert_events(
    alert_id: str,
    request: Request,
    operator: OperatorPrincipal = Depends(get_operator),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_alert(db, tenant_id=operator.tenant_id, alert_id=alert_id)
    rows = await list_alert_events(db, tenant_id=operator.tenant_id, alert_id=alert_id)
    payload = AlertEventListResponse(items=[AlertEventResponse.model_validate(row) for row in rows])
    return success_response(request=request, data=payload)


@router.get(
    "/{alert_id}/notifications",
    response_model=SuccessEnvelope[AlertNotificationListResponse],
    responses=ALERT_ERROR_RESPONSES,
)
async def alert_notifications(
    alert_id: str,
    request: Request,
    operator: OperatorPrincipal = Depends(get_operator),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _require_alert(db, tenant_id=operator.tenant_id, alert_id=alert_id)
    rows = await list_alert_notifications(db, tenant_id=operator.tenant_id, alert_id=alert_id)
    payload = AlertNotificationListResponse(items=[AlertNotificationResponse.model_validate(row) for row in rows])
    return success_response(request=request, data=payload)


async def _transition(
    *,
    request: Request,
    db: AsyncSession,
    operator: OperatorPrincipal,
    alert_id: str,
    to_status: str,
    body: TransitionRequest | None,
) -> dict:
    alert = await transition_alert(
        session=db,
        tenant_id=operator.tenant_id,
        alert_id=alert_id,
        to_status=to_status,
        actor_id=operator.actor_id,
        message=body.message if body else None,
    )
    return success_response(request=request, data=AlertResponse.model_validate(alert))


@router.post("/{alert_id}/ack", response_model=SuccessEnvelope[AlertResponse], responses=ALERT_ERROR_RESPONSES)
async def alert_ack(
    alert_id: str,
    request: Request,
    body: TransitionRequest | None = None,
    operator: OperatorPrincipal = Depends(get_operator),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await _transition(
        request=request, db=db, operator=operator, alert_id=alert_id, to_status="ack", body=body
    )


@router.post(
    "/{alert_id}/resolve",
    response_model=SuccessEnvelope[AlertResponse],
    responses=ALERT_ERROR_RESPONSES,
)
async def alert_resolve(
    alert_id: str,
    request: Request,
    body: TransitionRequest | None = None,
    operator: OperatorPrincipal = Depends(get_operator),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await _transition(
        request=request, db=db, operator=operator, alert_id=alert_id, to_status="resolved", body=body
    )
