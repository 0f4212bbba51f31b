from __future__ import annotations

import asyncio
import sys

from alertcore.domain.models import (
    AlertRule,
    EscalationPolicy,
    EscalationStep,
    NotificationChannel,
    SlaPolicy,
)
from alertcore.persistence.db import SessionLocal


DEMO_TENANT_ID = "t1"
DEMO_RULE_ID = "rule-zabbix-default"
DEMO_POLICY_ID = "policy-oncall"
DEMO_CHANNEL_ID = "channel-slack-ops"
DEMO_SLA_ID = "sla-standard"


def build_demo_rows() -> list:
    # One zabbix rule escalating to a single channel at 0s, 5m and 15m.
    channel = NotificationChannel(
        id=DEMO_CHANNEL_ID,
        tenant_id=DEMO_TENANT_ID,
        name="ops-slack",
        channel="slack",
        config={"webhook": "https://hooks.slack.example/ops"},
    )
    policy = EscalationPolicy(id=DEMO_POLICY_ID, tenant_id=DEMO_TENANT_ID, name="on-call")
    steps = [
        EscalationStep(
            tenant_id=DEMO_TENANT_ID,
            policy_id=DEMO_POLICY_ID,
            step_order=index,
            delay_seconds=delay,
            channel_id=DEMO_CHANNEL_ID,
            target={"mention": "@oncall"},
            skip_on_ack=index > 0,
        )
        for index, delay in enumerate((0, 300, 900))
    ]
    sla = SlaPolicy(id=DEMO_SLA_ID, tenant_id=DEMO_TENANT_ID, name="standard")
    rule = AlertRule(
        id=DEMO_RULE_ID,
        tenant_id=DEMO_TENANT_ID,
        name="zabbix default",
        source="zabbix",
        matchers={},
        dedupe_key_template="{{source}}:{{triggerid}}",
        severity="high",
        escalation_policy_id=DEMO_POLICY_ID,
        sla_policy_id=DEMO_SLA_ID,
    )
    return [channel, policy, *steps, sla, rule]


async def seed_demo() -> int:
    async with SessionLocal() as session:
        if await session.get(AlertRule, DEMO_RULE_ID) is not None:
            print("Demo rules already seeded; skipping.")
            return 0
        rows = build_demo_rows()
        session.add_all(rows)
        await session.commit()
        print(f"Seeded demo tenant {DEMO_TENANT_ID} with {len(rows)} rows.")
        return 0


def main() -> int:
    # Surface clear failures and exit non-zero so CI/dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
