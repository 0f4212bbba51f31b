from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.domain.models import (
    ACTIVE_ALERT_STATUSES,
    AlertEvent,
    AlertInstance,
    AlertNotification,
)


async def find_active_alert(
    session: AsyncSession,
    *,
    tenant_id: str,
    dedupe_key: str,
    for_update: bool = False,
) -> AlertInstance | None:
    query = (
        select(AlertInstance)
        .where(
            AlertInstance.tenant_id == tenant_id,
            AlertInstance.dedupe_key == dedupe_key,
            AlertInstance.status.in_(ACTIVE_ALERT_STATUSES),
        )
        .limit(1)
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_alert(
    session: AsyncSession,
    *,
    tenant_id: str,
    alert_id: str,
    for_update: bool = False,
) -> AlertInstance | None:
    query = select(AlertInstance).where(AlertInstance.id == alert_id, AlertInstance.tenant_id == tenant_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


def append_alert_event(
    session: AsyncSession,
    *,
    alert: AlertInstance,
    event_type: str,
    from_status: str | None,
    to_status: str | None,
    message: str | None,
    payload: dict[str, Any] | None,
    occurred_at: datetime,
    actor_id: str | None = None,
) -> AlertEvent:
    # Audit rows ride in the caller's transaction so a transition never commits without one.
    row = AlertEvent(
        tenant_id=alert.tenant_id,
        alert_id=alert.id,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        message=message,
        payload=payload or {},
        occurred_at=occurred_at,
    )
    session.add(row)
    return row


async def list_alerts(
    session: AsyncSession,
    *,
    tenant_id: str,
    status: str | None = None,
    limit: int = 100,
) -> list[AlertInstance]:
    query = select(AlertInstance).where(AlertInstance.tenant_id == tenant_id)
    if status:
        query = query.where(AlertInstance.status == status)
    result = await session.execute(
        query.order_by(AlertInstance.last_seen_at.desc(), AlertInstance.id.asc()).limit(limit)
    )
    return list(result.scalars().all())


async def list_alert_events(session: AsyncSession, *, tenant_id: str, alert_id: str) -> list[AlertEvent]:
    result = await session.execute(
        select(AlertEvent)
        .where(AlertEvent.tenant_id == tenant_id, AlertEvent.alert_id == alert_id)
        .order_by(AlertEvent.occurred_at.asc(), AlertEvent.id.asc())
    )
    return list(result.scalars().all())


async def list_alert_notifications(
    session: AsyncSession, *, tenant_id: str, alert_id: str
) -> list[AlertNotification]:
    result = await session.execute(
        select(AlertNotification)
        .where(AlertNotification.tenant_id == tenant_id, AlertNotification.alert_id == alert_id)
        .order_by(AlertNotification.next_attempt_at.asc(), AlertNotification.id.asc())
    )
    return list(result.scalars().all())


async def cancel_pending_notifications(
    session: AsyncSession, *, alert_id: str, reason: str
) -> int:
    result = await session.execute(
        update(AlertNotification)
        .where(AlertNotification.alert_id == alert_id, AlertNotification.status == "pending")
        .values(status="cancelled", response={"reason": reason})
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)
