from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.core.errors import DatabaseError
from alertcore.domain.models import AlertInstance, AlertRule
from alertcore.persistence.repos.alerts import (
    append_alert_event,
    cancel_pending_notifications,
    find_active_alert,
)
from alertcore.services.alerting.escalation import materialize_escalation
from alertcore.services.alerting.notifier import Publisher, publish_alert_update
from alertcore.services.alerting.sla import sla_due_dates


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Evaluation:
    # Everything the state machine needs about one normalized event.
    tenant_id: str
    rule: AlertRule
    dedupe_key: str
    severity: str
    title: str
    is_recovery: bool
    maintenance_id: str | None
    payload: dict[str, Any]
    now: datetime
    dashboard_id: str | None = None

    @property
    def suppressed(self) -> bool:
        return self.maintenance_id is not None


@dataclass(frozen=True, slots=True)
class LifecycleOutcome:
    action: str
    alert_id: str | None = None


def _suppression_message(maintenance_id: str | None) -> str | None:
    return f"Suppressed by maintenance {maintenance_id}" if maintenance_id else None


async def _notify(evaluation: Evaluation, alert: AlertInstance, publisher: Publisher | None) -> None:
    await publish_alert_update(
        tenant_id=evaluation.tenant_id,
        alert_id=alert.id,
        status=alert.status,
        severity=alert.severity,
        title=alert.title,
        rule=evaluation.rule,
        dashboard_id=evaluation.dashboard_id,
        publisher=publisher,
    )


async def _auto_resolve(
    *,
    session: AsyncSession,
    evaluation: Evaluation,
    existing: AlertInstance,
    publisher: Publisher | None,
) -> LifecycleOutcome:
    from_status = existing.status
    existing.status = "resolved"
    existing.resolved_at = evaluation.now
    existing.updated_at = evaluation.now
    existing.payload = evaluation.payload
    append_alert_event(
        session,
        alert=existing,
        event_type="AUTO_RESOLVE",
        from_status=from_status,
        to_status="resolved",
        message="Auto-resolved by OK event",
        payload=evaluation.payload,
        occurred_at=evaluation.now,
    )
    await session.commit()
    logger.info("alert_auto_resolved alert_id=%s dedupe_key=%s", existing.id, evaluation.dedupe_key)
    await _notify(evaluation, existing, publisher)

    alert_id = existing.id
    try:
        await cancel_pending_notifications(session, alert_id=alert_id, reason="alert_resolved")
        await session.commit()
    except SQLAlchemyError as exc:
        # Delivery workers re-check alert status before sending, so this is recoverable.
        await session.rollback()
        logger.warning("notification_cancel_failed alert_id=%s", alert_id, exc_info=exc)
    return LifecycleOutcome(action="auto_resolved", alert_id=alert_id)


async def _refresh(
    *,
    session: AsyncSession,
    evaluation: Evaluation,
    existing: AlertInstance,
    publisher: Publisher | None,
) -> LifecycleOutcome:
    existing.last_seen_at = evaluation.now
    existing.updated_at = evaluation.now
    existing.payload = evaluation.payload
    # Identity stays with the dedupe key; severity and title may drift.
    if evaluation.severity != existing.severity:
        existing.severity = evaluation.severity
    if evaluation.title != existing.title:
        existing.title = evaluation.title
    if evaluation.suppressed:
        if not existing.suppressed or existing.suppressed_by_maintenance_id != evaluation.maintenance_id:
            existing.suppressed = True
            existing.suppressed_by_maintenance_id = evaluation.maintenance_id
    elif existing.suppressed:
        existing.suppressed = False
        existing.suppressed_by_maintenance_id = None

    append_alert_event(
        session,
        alert=existing,
        event_type="REFRESH_SUPPRESSED" if evaluation.suppressed else "REFRESH",
        from_status=existing.status,
        to_status=existing.status,
        message=_suppression_message(evaluation.maintenance_id),
        payload=evaluation.payload,
        occurred_at=evaluation.now,
    )
    await session.commit()
    await _notify(evaluation, existing, publisher)
    return LifecycleOutcome(
        action="refreshed_suppressed" if evaluation.suppressed else "refreshed",
        alert_id=existing.id,
    )


async def _open(
    *,
    session: AsyncSession,
    evaluation: Evaluation,
    publisher: Publisher | None,
) -> LifecycleOutcome:
    rule = evaluation.rule
    ack_due_at, resolve_due_at = await sla_due_dates(session=session, rule=rule, opened_at=evaluation.now)
    alert = AlertInstance(
        tenant_id=evaluation.tenant_id,
        rule_id=rule.id,
        dedupe_key=evaluation.dedupe_key,
        status="open",
        severity=evaluation.severity,
        title=evaluation.title,
        payload=evaluation.payload,
        suppressed=evaluation.suppressed,
        suppressed_by_maintenance_id=evaluation.maintenance_id,
        opened_at=evaluation.now,
        last_seen_at=evaluation.now,
        updated_at=evaluation.now,
        ack_due_at=ack_due_at,
        resolve_due_at=resolve_due_at,
    )
    session.add(alert)
    # Flush first so a concurrent open surfaces as IntegrityError before the audit row exists.
    await session.flush()
    append_alert_event(
        session,
        alert=alert,
        event_type="OPEN_SUPPRESSED" if evaluation.suppressed else "OPEN",
        from_status=None,
        to_status="open",
        message=_suppression_message(evaluation.maintenance_id) or "New alert opened",
        payload=evaluation.payload,
        occurred_at=evaluation.now,
    )
    await session.commit()
    logger.info(
        "alert_opened alert_id=%s dedupe_key=%s suppressed=%s",
        alert.id,
        evaluation.dedupe_key,
        evaluation.suppressed,
    )
    await _notify(evaluation, alert, publisher)

    alert_id = alert.id
    if not evaluation.suppressed and rule.escalation_policy_id:
        try:
            await materialize_escalation(session=session, rule=rule, alert_id=alert_id, now=evaluation.now)
        except SQLAlchemyError as exc:
            # The alert is committed; a missing schedule must not turn the event into an error.
            await session.rollback()
            logger.error(
                "escalation_materialize_failed alert_id=%s policy_id=%s",
                alert_id,
                rule.escalation_policy_id,
                exc_info=exc,
            )
    return LifecycleOutcome(
        action="opened_suppressed" if evaluation.suppressed else "opened",
        alert_id=alert_id,
    )


async def apply_lifecycle(
    *,
    session: AsyncSession,
    evaluation: Evaluation,
    publisher: Publisher | None = None,
) -> LifecycleOutcome:
    """Run the open / refresh / auto-resolve state machine for one event.

    Exactly one case applies, checked in order: recovery, refresh of an
    existing open/ack alert, open of a new alert. The state row and its audit
    row commit together. An open that loses the race against a concurrent open
    for the same key (partial unique index violation) is retried as a refresh.
    """
    existing = await find_active_alert(
        session,
        tenant_id=evaluation.tenant_id,
        dedupe_key=evaluation.dedupe_key,
        for_update=True,
    )

    if evaluation.is_recovery:
        if existing is None:
            logger.debug("recovery_without_open_alert dedupe_key=%s", evaluation.dedupe_key)
            return LifecycleOutcome(action="ok_no_open_alert")
        if not evaluation.rule.auto_resolve:
            logger.debug("auto_resolve_disabled alert_id=%s rule_id=%s", existing.id, evaluation.rule.id)
            return LifecycleOutcome(action="ok_auto_resolve_disabled", alert_id=existing.id)
        return await _auto_resolve(session=session, evaluation=evaluation, existing=existing, publisher=publisher)

    if existing is not None:
        return await _refresh(session=session, evaluation=evaluation, existing=existing, publisher=publisher)

    try:
        return await _open(session=session, evaluation=evaluation, publisher=publisher)
    except IntegrityError:
        await session.rollback()
        logger.info("alert_open_conflict dedupe_key=%s tenant_id=%s", evaluation.dedupe_key, evaluation.tenant_id)

    existing = await find_active_alert(
        session,
        tenant_id=evaluation.tenant_id,
        dedupe_key=evaluation.dedupe_key,
        for_update=True,
    )
    if existing is None:
        raise DatabaseError("alert insert conflicted but no open alert was found")
    return await _refresh(session=session, evaluation=evaluation, existing=existing, publisher=publisher)
