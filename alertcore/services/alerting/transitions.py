from __future__ import annotations

from datetime import datetime, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.core.errors import AlertNotFoundError, InvalidTransitionError
from alertcore.domain.models import AlertInstance
from alertcore.persistence.repos.alerts import append_alert_event, cancel_pending_notifications, get_alert
from alertcore.persistence.repos.rules import get_rule
from alertcore.services.alerting.notifier import Publisher, publish_alert_update
from alertcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

MANUAL_STATUSES = ("open", "ack", "resolved")

_AUDIT_TYPES = {"ack": "MANUAL_ACK", "resolved": "MANUAL_RESOLVE"}
# Resolved alerts stay resolved; a new problem event opens a fresh instance.
_INVALID = {("resolved", "ack"), ("resolved", "resolved"), ("ack", "open")}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def transition_alert(
    *,
    session: AsyncSession,
    tenant_id: str,
    alert_id: str,
    to_status: str,
    actor_id: str | None,
    message: str | None = None,
    now: datetime | None = None,
    publisher: Publisher | None = None,
) -> AlertInstance:
    """Apply an operator status change to one alert.

    Acknowledge and resolve timestamps are stamped once and keep the first
    actor. Raises AlertNotFoundError for unknown or cross-tenant ids and
    InvalidTransitionError for changes the lifecycle does not allow.
    """
    if to_status not in MANUAL_STATUSES:
        raise ValueError(f"unsupported status: {to_status}")
    at = now or _utc_now()
    alert = await get_alert(session, tenant_id=tenant_id, alert_id=alert_id, for_update=True)
    if alert is None:
        raise AlertNotFoundError(alert_id)
    from_status = alert.status
    if (from_status, to_status) in _INVALID:
        raise InvalidTransitionError(from_status, to_status)

    alert.status = to_status
    alert.updated_at = at
    if to_status == "ack" and alert.acknowledged_at is None:
        alert.acknowledged_at = at
        alert.acknowledged_by = actor_id
    if to_status == "resolved" and alert.resolved_at is None:
        alert.resolved_at = at
        alert.resolved_by = actor_id
    append_alert_event(
        session,
        alert=alert,
        event_type=_AUDIT_TYPES.get(to_status, "MANUAL_UPDATE"),
        from_status=from_status,
        to_status=to_status,
        message=message,
        payload={},
        occurred_at=at,
        actor_id=actor_id,
    )
    cancelled = 0
    if to_status == "resolved":
        cancelled = await cancel_pending_notifications(session, alert_id=alert.id, reason="alert_resolved")
    await session.commit()
    increment_counter(f"manual_{to_status}_total")
    logger.info(
        "alert_transition alert_id=%s from=%s to=%s actor_id=%s cancelled=%s",
        alert.id,
        from_status,
        to_status,
        actor_id,
        cancelled,
    )

    rule = await get_rule(session, tenant_id=tenant_id, rule_id=alert.rule_id) if alert.rule_id else None
    await publish_alert_update(
        tenant_id=tenant_id,
        alert_id=alert.id,
        status=alert.status,
        severity=alert.severity,
        title=alert.title,
        rule=rule,
        dashboard_id=(alert.payload or {}).get("dashboard_id"),
        publisher=publisher,
    )
    return alert
