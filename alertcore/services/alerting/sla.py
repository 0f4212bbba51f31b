from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.domain.models import AlertInstance, AlertRule
from alertcore.persistence.repos.rules import get_sla_policy
from alertcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def sla_due_dates(
    *, session: AsyncSession, rule: AlertRule, opened_at: datetime
) -> tuple[datetime | None, datetime | None]:
    # Due timestamps are fixed at open time; later policy edits do not move them.
    if not rule.sla_policy_id:
        return None, None
    policy = await get_sla_policy(session, rule.tenant_id, rule.sla_policy_id)
    if policy is None:
        return None, None
    return (
        opened_at + timedelta(seconds=int(policy.ack_target_seconds)),
        opened_at + timedelta(seconds=int(policy.resolve_target_seconds)),
    )


async def sweep_sla_breaches(
    *, session: AsyncSession, now: datetime | None = None, tenant_id: str | None = None
) -> int:
    """Stamp first-breach timestamps on alerts past their SLA targets.

    Suppressed alerts never breach. Ack targets apply to open alerts only,
    resolve targets to open and acknowledged alerts. Returns rows stamped.
    """
    at = now or _utc_now()
    ack_stmt = (
        update(AlertInstance)
        .where(
            AlertInstance.status == "open",
            AlertInstance.suppressed.is_(False),
            AlertInstance.ack_due_at.is_not(None),
            AlertInstance.ack_breached_at.is_(None),
            AlertInstance.ack_due_at < at,
        )
        .values(ack_breached_at=at, updated_at=at)
        .execution_options(synchronize_session=False)
    )
    resolve_stmt = (
        update(AlertInstance)
        .where(
            AlertInstance.status.in_(("open", "ack")),
            AlertInstance.suppressed.is_(False),
            AlertInstance.resolve_due_at.is_not(None),
            AlertInstance.resolve_breached_at.is_(None),
            AlertInstance.resolve_due_at < at,
        )
        .values(resolve_breached_at=at, updated_at=at)
        .execution_options(synchronize_session=False)
    )
    if tenant_id is not None:
        ack_stmt = ack_stmt.where(AlertInstance.tenant_id == tenant_id)
        resolve_stmt = resolve_stmt.where(AlertInstance.tenant_id == tenant_id)
    ack_count = int((await session.execute(ack_stmt)).rowcount or 0)
    resolve_count = int((await session.execute(resolve_stmt)).rowcount or 0)
    await session.commit()
    total = ack_count + resolve_count
    if total:
        increment_counter("sla_breaches_total", total)
        logger.info("sla_breaches_stamped ack=%s resolve=%s tenant_id=%s", ack_count, resolve_count, tenant_id)
    return total
