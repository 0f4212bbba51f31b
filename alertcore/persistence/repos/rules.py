from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.domain.models import AlertRule, SlaPolicy


async def list_enabled_rules_for_source(session: AsyncSession, source: str) -> list[AlertRule]:
    # Stored order is the first-match tie-break, so keep it total and stable.
    result = await session.execute(
        select(AlertRule)
        .where(AlertRule.source == source, AlertRule.is_enabled.is_(True))
        .order_by(AlertRule.sort_order.asc(), AlertRule.created_at.asc(), AlertRule.id.asc())
    )
    return list(result.scalars().all())


async def get_sla_policy(session: AsyncSession, tenant_id: str, policy_id: str) -> SlaPolicy | None:
    row = await session.get(SlaPolicy, policy_id)
    if row is None or row.tenant_id != tenant_id:
        return None
    return row


async def get_rule(session: AsyncSession, *, tenant_id: str, rule_id: str) -> AlertRule | None:
    row = await session.get(AlertRule, rule_id)
    if row is None or row.tenant_id != tenant_id:
        return None
    return row
