from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.core.config import get_settings
from alertcore.domain.models import AlertInstance, AlertNotification, AlertRule
from alertcore.persistence.repos.escalation import last_sent_at, list_due_pending, list_enabled_steps
from alertcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_DEFAULT_THROTTLE_SECONDS = 60


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps; everything stored here is UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


async def materialize_escalation(
    *,
    session: AsyncSession,
    rule: AlertRule,
    alert_id: str,
    now: datetime | None = None,
) -> list[AlertNotification]:
    # Only writes the schedule; delivery workers own every network call.
    if not rule.escalation_policy_id:
        return []
    opened_at = now or _utc_now()
    steps = await list_enabled_steps(session, tenant_id=rule.tenant_id, policy_id=rule.escalation_policy_id)
    if not steps:
        logger.info("escalation_policy_empty policy_id=%s alert_id=%s", rule.escalation_policy_id, alert_id)
        return []
    rows = [
        AlertNotification(
            tenant_id=rule.tenant_id,
            alert_id=alert_id,
            policy_id=rule.escalation_policy_id,
            step_id=step.id,
            channel_id=step.channel_id,
            status="pending",
            attempts=0,
            next_attempt_at=opened_at + timedelta(seconds=max(0, int(step.delay_seconds))),
            request={
                "target": step.target or {},
                "throttle_seconds": int(step.throttle_seconds),
                "skip_on_ack": bool(step.skip_on_ack),
            },
            response={},
        )
        for step in steps
    ]
    session.add_all(rows)
    await session.commit()
    increment_counter("escalation_notifications_materialized_total", len(rows))
    return rows


async def list_due_notifications(
    *, session: AsyncSession, now: datetime | None = None, limit: int = 50
) -> list[AlertNotification]:
    settings = get_settings()
    return await list_due_pending(
        session,
        now=now or _utc_now(),
        max_attempts=max(1, int(settings.escalation_max_attempts)),
        limit=max(1, int(limit)),
    )


def retry_backoff_seconds(attempts: int) -> int:
    # 60s, 120s, 240s, ... capped.
    settings = get_settings()
    base = max(1, int(settings.escalation_backoff_s))
    cap = max(base, int(settings.escalation_backoff_max_s))
    return min(cap, base * (2 ** max(0, int(attempts))))


async def should_skip_notification(
    *,
    session: AsyncSession,
    notification: AlertNotification,
    alert: AlertInstance | None,
    now: datetime | None = None,
) -> str | None:
    # Returns the cancel reason, or None when the worker may attempt delivery.
    if alert is None:
        return "alert_not_found"
    if alert.status == "resolved":
        return "alert_resolved"
    if alert.suppressed:
        return "alert_suppressed"
    request = notification.request or {}
    if alert.status == "ack" and request.get("skip_on_ack") is True:
        return "alert_acked"
    previous = await last_sent_at(session, alert_id=notification.alert_id, step_id=notification.step_id)
    if previous is not None:
        throttle = int(request.get("throttle_seconds", _DEFAULT_THROTTLE_SECONDS))
        elapsed = ((now or _utc_now()) - _as_utc(previous)).total_seconds()
        if elapsed < throttle:
            return "throttled"
    return None


async def cancel_notification(
    *, session: AsyncSession, notification: AlertNotification, reason: str
) -> AlertNotification:
    notification.status = "cancelled"
    notification.response = {"reason": reason}
    await session.commit()
    increment_counter("escalation_notifications_cancelled_total")
    return notification


async def record_delivery_outcome(
    *,
    session: AsyncSession,
    notification: AlertNotification,
    ok: bool,
    error: str | None = None,
    response: dict | None = None,
    now: datetime | None = None,
) -> AlertNotification:
    settings = get_settings()
    at = now or _utc_now()
    attempts = int(notification.attempts or 0)
    if ok:
        notification.status = "sent"
        notification.sent_at = at
        notification.attempts = attempts + 1
        notification.response = response or {}
        notification.last_error = None
        increment_counter("escalation_notifications_sent_total")
    else:
        notification.attempts = attempts + 1
        notification.last_error = (error or "delivery failed")[:500]
        notification.next_attempt_at = at + timedelta(seconds=retry_backoff_seconds(attempts))
        if notification.attempts >= max(1, int(settings.escalation_max_attempts)):
            notification.status = "failed"
            increment_counter("escalation_notifications_failed_total")
        else:
            notification.status = "pending"
        logger.info(
            "notification_delivery_failed notification_id=%s attempts=%s status=%s",
            notification.id,
            notification.attempts,
            notification.status,
        )
    await session.commit()
    return notification
