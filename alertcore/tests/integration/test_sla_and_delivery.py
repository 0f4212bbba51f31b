from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from alertcore.core.config import get_settings
from alertcore.core.errors import AlertNotFoundError, InvalidTransitionError
from alertcore.domain.models import AlertEvent, AlertInstance, AlertNotification
from alertcore.persistence.db import SessionLocal
from alertcore.services.alerting import (
    cancel_notification,
    list_due_notifications,
    record_delivery_outcome,
    should_skip_notification,
    sweep_sla_breaches,
    transition_alert,
)
from alertcore.services.alerting.pipeline import ingest_events
from alertcore.tests.utils.factories import (
    TENANT_ID,
    StepClock,
    around,
    as_utc,
    create_escalation_policy,
    create_maintenance,
    create_rule,
    create_sla_policy,
    utc,
)


T0 = utc(2026, 3, 1, 12, 0, 0)


def _problem(trigger: str = "T1") -> dict:
    return {"source": "zabbix", "triggerid": trigger, "status": "PROBLEM", "value": "1"}


async def _open_alert(trigger: str = "T1", now=T0) -> str:
    result = await ingest_events([_problem(trigger)], clock=StepClock(now))
    return result["results"][0]["alert_id"]


async def _get_alert(alert_id: str) -> AlertInstance:
    async with SessionLocal() as session:
        return await session.get(AlertInstance, alert_id)


@pytest.mark.asyncio
async def test_sla_due_dates_are_fixed_at_open() -> None:
    sla_id = await create_sla_policy(ack_s=600, resolve_s=7200)
    await create_rule(sla_policy_id=sla_id)
    alert = await _get_alert(await _open_alert())
    assert as_utc(alert.ack_due_at) == T0 + timedelta(seconds=600)
    assert as_utc(alert.resolve_due_at) == T0 + timedelta(seconds=7200)


@pytest.mark.asyncio
async def test_sweep_stamps_first_breach_only() -> None:
    sla_id = await create_sla_policy(ack_s=600, resolve_s=7200)
    await create_rule(sla_policy_id=sla_id)
    alert_id = await _open_alert()

    async with SessionLocal() as session:
        assert await sweep_sla_breaches(session=session, now=T0 + timedelta(seconds=300)) == 0
        assert await sweep_sla_breaches(session=session, now=T0 + timedelta(seconds=900)) == 1
        assert await sweep_sla_breaches(session=session, now=T0 + timedelta(seconds=1200)) == 0

    alert = await _get_alert(alert_id)
    assert as_utc(alert.ack_breached_at) == T0 + timedelta(seconds=900)
    assert alert.resolve_breached_at is None

    async with SessionLocal() as session:
        await transition_alert(session=session, tenant_id=TENANT_ID, alert_id=alert_id, to_status="ack", actor_id="u1")
        assert await sweep_sla_breaches(session=session, now=T0 + timedelta(hours=3)) == 1
    alert = await _get_alert(alert_id)
    assert as_utc(alert.resolve_breached_at) == T0 + timedelta(hours=3)


@pytest.mark.asyncio
async def test_sweep_skips_suppressed_and_other_tenants() -> None:
    sla_id = await create_sla_policy(ack_s=60, resolve_s=120)
    await create_rule(sla_policy_id=sla_id)
    await create_maintenance(**around(T0), scopes=[("trigger", "T1")])
    suppressed_id = await _open_alert("T1")
    await _open_alert("T2")

    async with SessionLocal() as session:
        stamped = await sweep_sla_breaches(session=session, now=T0 + timedelta(hours=1), tenant_id="t-other")
        assert stamped == 0
        stamped = await sweep_sla_breaches(session=session, now=T0 + timedelta(hours=1), tenant_id=TENANT_ID)
        assert stamped == 2
    suppressed = await _get_alert(suppressed_id)
    assert suppressed.ack_breached_at is None
    assert suppressed.resolve_breached_at is None


@pytest.mark.asyncio
async def test_manual_transitions_stamp_actor_once_and_write_audit(published) -> None:
    await create_rule()
    alert_id = await _open_alert()
    async with SessionLocal() as session:
        acked = await transition_alert(
            session=session,
            tenant_id=TENANT_ID,
            alert_id=alert_id,
            to_status="ack",
            actor_id="alice",
            message="looking",
        )
        assert acked.status == "ack"
        acked_at = acked.acknowledged_at
        await transition_alert(session=session, tenant_id=TENANT_ID, alert_id=alert_id, to_status="ack", actor_id="bob")
        resolved = await transition_alert(
            session=session, tenant_id=TENANT_ID, alert_id=alert_id, to_status="resolved", actor_id="bob"
        )
    assert resolved.status == "resolved"
    assert resolved.acknowledged_by == "alice"
    assert resolved.acknowledged_at == acked_at
    assert resolved.resolved_by == "bob"

    async with SessionLocal() as session:
        rows = (
            await session.execute(
                select(AlertEvent.event_type, AlertEvent.actor_id, AlertEvent.message)
                .where(AlertEvent.alert_id == alert_id)
                .order_by(AlertEvent.occurred_at.asc())
            )
        ).all()
    assert [tuple(row) for row in rows] == [
        ("OPEN", None, "New alert opened"),
        ("MANUAL_ACK", "alice", "looking"),
        ("MANUAL_ACK", "bob", None),
        ("MANUAL_RESOLVE", "bob", None),
    ]
    assert len(published) == 4


@pytest.mark.asyncio
async def test_invalid_and_unknown_transitions() -> None:
    await create_rule()
    alert_id = await _open_alert()
    async with SessionLocal() as session:
        with pytest.raises(AlertNotFoundError):
            await transition_alert(session=session, tenant_id=TENANT_ID, alert_id="missing", to_status="ack", actor_id=None)
        with pytest.raises(AlertNotFoundError):
            await transition_alert(session=session, tenant_id="t-other", alert_id=alert_id, to_status="ack", actor_id=None)
        await transition_alert(session=session, tenant_id=TENANT_ID, alert_id=alert_id, to_status="ack", actor_id=None)
        with pytest.raises(InvalidTransitionError):
            await transition_alert(session=session, tenant_id=TENANT_ID, alert_id=alert_id, to_status="open", actor_id=None)
        await transition_alert(
            session=session, tenant_id=TENANT_ID, alert_id=alert_id, to_status="resolved", actor_id=None
        )
        for target in ("ack", "resolved"):
            with pytest.raises(InvalidTransitionError) as excinfo:
                await transition_alert(
                    session=session, tenant_id=TENANT_ID, alert_id=alert_id, to_status=target, actor_id=None
                )
            assert excinfo.value.from_status == "resolved"


@pytest.mark.asyncio
async def test_manual_resolve_cancels_pending_notifications() -> None:
    policy_id = await create_escalation_policy(delays=(0, 300))
    await create_rule(escalation_policy_id=policy_id)
    alert_id = await _open_alert()
    async with SessionLocal() as session:
        await transition_alert(
            session=session, tenant_id=TENANT_ID, alert_id=alert_id, to_status="resolved", actor_id="u1"
        )
        rows = (
            await session.execute(select(AlertNotification).where(AlertNotification.alert_id == alert_id))
        ).scalars().all()
    assert {row.status for row in rows} == {"cancelled"}
    assert {row.response["reason"] for row in rows} == {"alert_resolved"}


@pytest.mark.asyncio
async def test_due_notifications_and_delivery_outcomes() -> None:
    policy_id = await create_escalation_policy(delays=(0, 300, 900))
    await create_rule(escalation_policy_id=policy_id)
    await _open_alert()
    max_attempts = get_settings().escalation_max_attempts

    async with SessionLocal() as session:
        due = await list_due_notifications(session=session, now=T0 + timedelta(seconds=301))
        assert len(due) == 2
        first, second = due

        await record_delivery_outcome(session=session, notification=first, ok=True, response={"code": 200}, now=T0)
        assert first.status == "sent"
        assert first.attempts == 1

        await record_delivery_outcome(session=session, notification=second, ok=False, error="HTTP 500", now=T0)
        assert second.status == "pending"
        assert second.last_error == "HTTP 500"
        assert as_utc(second.next_attempt_at) == T0 + timedelta(seconds=60)

        for _ in range(max_attempts - 1):
            await record_delivery_outcome(session=session, notification=second, ok=False, error="HTTP 500", now=T0)
        assert second.status == "failed"
        assert second.attempts == max_attempts

        remaining = await list_due_notifications(session=session, now=T0 + timedelta(hours=2))
        assert [row.status for row in remaining] == ["pending"]


@pytest.mark.asyncio
async def test_skip_reasons_for_delivery_workers() -> None:
    policy_id = await create_escalation_policy(delays=(0,), skip_on_ack=True)
    await create_rule(escalation_policy_id=policy_id)
    alert_id = await _open_alert()

    async with SessionLocal() as session:
        [notification] = await list_due_notifications(session=session, now=T0)
        alert = await session.get(AlertInstance, alert_id)
        assert await should_skip_notification(session=session, notification=notification, alert=alert, now=T0) is None
        assert (
            await should_skip_notification(session=session, notification=notification, alert=None, now=T0)
            == "alert_not_found"
        )

        await transition_alert(session=session, tenant_id=TENANT_ID, alert_id=alert_id, to_status="ack", actor_id="u1")
        alert = await session.get(AlertInstance, alert_id)
        reason = await should_skip_notification(session=session, notification=notification, alert=alert, now=T0)
        assert reason == "alert_acked"

        await cancel_notification(session=session, notification=notification, reason=reason)
        assert notification.status == "cancelled"
        assert await list_due_notifications(session=session, now=T0 + timedelta(hours=1)) == []


@pytest.mark.asyncio
async def test_throttle_uses_last_sent_for_same_step() -> None:
    policy_id = await create_escalation_policy(delays=(0,))
    await create_rule(escalation_policy_id=policy_id)
    alert_id = await _open_alert()

    async with SessionLocal() as session:
        [sent] = await list_due_notifications(session=session, now=T0)
        await record_delivery_outcome(session=session, notification=sent, ok=True, now=T0)
        # A second notification for the same alert and step, as a re-materialized schedule would create.
        repeat = AlertNotification(
            tenant_id=TENANT_ID,
            alert_id=alert_id,
            policy_id=sent.policy_id,
            step_id=sent.step_id,
            channel_id=sent.channel_id,
            status="pending",
            attempts=0,
            next_attempt_at=T0,
            request=dict(sent.request),
            response={},
        )
        session.add(repeat)
        await session.commit()
        alert = await session.get(AlertInstance, alert_id)
        throttled = await should_skip_notification(
            session=session, notification=repeat, alert=alert, now=T0 + timedelta(seconds=30)
        )
        allowed = await should_skip_notification(
            session=session, notification=repeat, alert=alert, now=T0 + timedelta(seconds=61)
        )
    assert throttled == "throttled"
    assert allowed is None
