from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from alertcore.domain.models import AlertEvent, AlertInstance, AlertNotification
from alertcore.persistence.db import SessionLocal
from alertcore.services.alerting.pipeline import ingest_events
from alertcore.services.alerting.transitions import transition_alert
from alertcore.services.telemetry import counters_snapshot
from alertcore.tests.utils.factories import (
    TENANT_ID,
    StepClock,
    as_utc,
    create_escalation_policy,
    create_rule,
    utc,
)


T0 = utc(2026, 3, 1, 12, 0, 0)


def _problem(trigger: str = "T1", **extra) -> dict:
    return {"source": "zabbix", "triggerid": trigger, "status": "PROBLEM", "value": "1", "severity": "4", **extra}


def _ok(trigger: str = "T1") -> dict:
    return {"source": "zabbix", "triggerid": trigger, "status": "OK", "value": "0"}


async def _alerts(dedupe_key: str | None = None) -> list[AlertInstance]:
    async with SessionLocal() as session:
        query = select(AlertInstance).where(AlertInstance.tenant_id == TENANT_ID)
        if dedupe_key is not None:
            query = query.where(AlertInstance.dedupe_key == dedupe_key)
        result = await session.execute(query.order_by(AlertInstance.opened_at.asc()))
        return list(result.scalars().all())


async def _audit(alert_id: str) -> list[AlertEvent]:
    async with SessionLocal() as session:
        result = await session.execute(
            select(AlertEvent).where(AlertEvent.alert_id == alert_id).order_by(AlertEvent.occurred_at.asc())
        )
        return list(result.scalars().all())


async def _notifications(alert_id: str) -> list[AlertNotification]:
    async with SessionLocal() as session:
        result = await session.execute(
            select(AlertNotification)
            .where(AlertNotification.alert_id == alert_id)
            .order_by(AlertNotification.next_attempt_at.asc())
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_problem_refresh_recovery_and_reopen(published) -> None:
    policy_id = await create_escalation_policy(delays=(0, 300, 900))
    await create_rule(escalation_policy_id=policy_id)
    clock = StepClock(T0, step_s=0)

    first = await ingest_events([_problem()], clock=clock)
    assert first["processed"] == 1
    opened = first["results"][0]
    assert opened["action"] == "opened"
    assert opened["dedupe_key"] == "zabbix:T1"

    notifications = await _notifications(opened["alert_id"])
    assert [as_utc(row.next_attempt_at) for row in notifications] == [
        T0,
        T0 + timedelta(seconds=300),
        T0 + timedelta(seconds=900),
    ]
    assert {row.status for row in notifications} == {"pending"}

    clock.jump(60)
    refreshed = (await ingest_events([_problem()], clock=clock))["results"][0]
    assert refreshed == {"dedupe_key": "zabbix:T1", "action": "refreshed", "alert_id": opened["alert_id"]}
    [alert] = await _alerts("zabbix:T1")
    assert alert.status == "open"
    assert as_utc(alert.last_seen_at) == T0 + timedelta(seconds=60)
    # Refresh never schedules another round of notifications.
    assert len(await _notifications(alert.id)) == 3

    clock.jump(60)
    resolved = (await ingest_events([_ok()], clock=clock))["results"][0]
    assert resolved["action"] == "auto_resolved"
    assert resolved["alert_id"] == opened["alert_id"]
    [alert] = await _alerts("zabbix:T1")
    assert alert.status == "resolved"
    assert as_utc(alert.resolved_at) == T0 + timedelta(seconds=120)
    assert alert.payload["status"] == "OK"
    assert {row.status for row in await _notifications(alert.id)} == {"cancelled"}

    audit = await _audit(alert.id)
    assert [row.event_type for row in audit] == ["OPEN", "REFRESH", "AUTO_RESOLVE"]
    assert audit[0].message == "New alert opened"
    assert (audit[2].from_status, audit[2].to_status) == ("open", "resolved")

    clock.jump(60)
    reopened = (await ingest_events([_problem()], clock=clock))["results"][0]
    assert reopened["action"] == "opened"
    assert reopened["alert_id"] != opened["alert_id"]
    assert [row.status for row in await _alerts("zabbix:T1")] == ["resolved", "open"]

    # open, refresh, resolve, reopen each broadcast one update.
    assert len(published) == 4


@pytest.mark.asyncio
async def test_recovery_without_open_alert_is_a_no_op() -> None:
    await create_rule()
    result = await ingest_events([_ok()])
    assert result["results"] == [{"dedupe_key": "zabbix:T1", "action": "ok_no_open_alert"}]
    assert await _alerts() == []


@pytest.mark.asyncio
async def test_repeated_recovery_resolves_once() -> None:
    await create_rule()
    clock = StepClock(T0)
    await ingest_events([_problem()], clock=clock)
    actions = [item["action"] for item in (await ingest_events([_ok(), _ok()], clock=clock))["results"]]
    assert actions == ["auto_resolved", "ok_no_open_alert"]
    [alert] = await _alerts()
    assert [row.event_type for row in await _audit(alert.id)] == ["OPEN", "AUTO_RESOLVE"]


@pytest.mark.asyncio
async def test_auto_resolve_disabled_leaves_alert_open() -> None:
    await create_rule(auto_resolve=False)
    opened = (await ingest_events([_problem()]))["results"][0]
    result = (await ingest_events([_ok()]))["results"][0]
    assert result == {
        "dedupe_key": "zabbix:T1",
        "action": "ok_auto_resolve_disabled",
        "alert_id": opened["alert_id"],
    }
    [alert] = await _alerts()
    assert alert.status == "open"
    assert [row.event_type for row in await _audit(alert.id)] == ["OPEN"]


@pytest.mark.asyncio
async def test_same_key_events_in_one_batch_apply_in_input_order() -> None:
    await create_rule()
    result = await ingest_events([_problem(), _problem(), _ok(), _problem()], clock=StepClock(T0))
    assert [item["action"] for item in result["results"]] == ["opened", "refreshed", "auto_resolved", "opened"]
    alerts = await _alerts("zabbix:T1")
    assert [alert.status for alert in alerts] == ["resolved", "open"]


@pytest.mark.asyncio
async def test_distinct_keys_open_independent_alerts() -> None:
    await create_rule()
    result = await ingest_events([_problem("T1"), _problem("T2"), _ok("T1")], clock=StepClock(T0))
    assert [(item["dedupe_key"], item["action"]) for item in result["results"]] == [
        ("zabbix:T1", "opened"),
        ("zabbix:T2", "opened"),
        ("zabbix:T1", "auto_resolved"),
    ]
    statuses = {alert.dedupe_key: alert.status for alert in await _alerts()}
    assert statuses == {"zabbix:T1": "resolved", "zabbix:T2": "open"}


@pytest.mark.asyncio
async def test_severity_and_title_follow_latest_event() -> None:
    await create_rule(severity="warning")
    clock = StepClock(T0)
    await ingest_events([_problem(severity=None, trigger_name="Disk 80%")], clock=clock)
    [alert] = await _alerts()
    assert (alert.severity, alert.title) == ("warning", "Disk 80%")

    await ingest_events([_problem(severity="5", trigger_name="Disk 95%")], clock=clock)
    [alert] = await _alerts()
    assert (alert.severity, alert.title) == ("disaster", "Disk 95%")


@pytest.mark.asyncio
async def test_acknowledged_alert_stays_acknowledged_on_refresh() -> None:
    await create_rule()
    opened = (await ingest_events([_problem()]))["results"][0]
    async with SessionLocal() as session:
        await transition_alert(
            session=session,
            tenant_id=TENANT_ID,
            alert_id=opened["alert_id"],
            to_status="ack",
            actor_id="oncall@example.com",
        )

    refreshed = (await ingest_events([_problem()]))["results"][0]
    assert refreshed["action"] == "refreshed"
    assert refreshed["alert_id"] == opened["alert_id"]
    [alert] = await _alerts()
    assert alert.status == "ack"
    assert alert.acknowledged_by == "oncall@example.com"

    resolved = (await ingest_events([_ok()]))["results"][0]
    assert resolved["action"] == "auto_resolved"
    audit = await _audit(alert.id)
    assert (audit[-1].from_status, audit[-1].to_status) == ("ack", "resolved")


@pytest.mark.asyncio
async def test_escalation_skipped_when_rule_has_no_policy() -> None:
    await create_rule()
    opened = (await ingest_events([_problem()]))["results"][0]
    assert opened["action"] == "opened"
    assert await _notifications(opened["alert_id"]) == []
    assert counters_snapshot()["ingest_opened_total"] == 1


@pytest.mark.asyncio
async def test_parenthetical_status_uses_rule_severity_and_resolves_once() -> None:
    await create_rule()
    clock = StepClock(T0)
    opened = (
        await ingest_events(
            [{"source": "zabbix", "triggerid": "T1", "status": "PROBLEM (4)", "trigger_name": "CPU high"}],
            clock=clock,
        )
    )["results"][0]
    assert (opened["dedupe_key"], opened["action"]) == ("zabbix:T1", "opened")
    [alert] = await _alerts()
    assert (alert.status, alert.severity, alert.title) == ("open", "high", "CPU high")

    resolved = (
        await ingest_events([{"source": "zabbix", "triggerid": "T1", "status": "OK (3)"}], clock=clock)
    )["results"][0]
    assert resolved == {"dedupe_key": "zabbix:T1", "action": "auto_resolved", "alert_id": opened["alert_id"]}
    [alert] = await _alerts()
    assert alert.id == opened["alert_id"]
    assert alert.status == "resolved"
    audit = await _audit(alert.id)
    assert [row.event_type for row in audit] == ["OPEN", "AUTO_RESOLVE"]
    assert sum(1 for row in audit if row.event_type == "AUTO_RESOLVE") == 1
