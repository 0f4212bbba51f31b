from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.domain.models import AlertNotification, EscalationPolicy, EscalationStep


async def list_enabled_steps(session: AsyncSession, *, tenant_id: str, policy_id: str) -> list[EscalationStep]:
    result = await session.execute(
        select(EscalationStep)
        .join(EscalationPolicy, EscalationPolicy.id == EscalationStep.policy_id)
        .where(
            EscalationStep.policy_id == policy_id,
            EscalationStep.tenant_id == tenant_id,
            EscalationStep.enabled.is_(True),
            EscalationPolicy.is_active.is_(True),
        )
        .order_by(EscalationStep.step_order.asc())
    )
    return list(result.scalars().all())


async def list_due_pending(
    session: AsyncSession, *, now: datetime, max_attempts: int, limit: int
) -> list[AlertNotification]:
    result = await session.execute(
        select(AlertNotification)
        .where(
            AlertNotification.status == "pending",
            AlertNotification.next_attempt_at <= now,
            AlertNotification.attempts < max_attempts,
        )
        .order_by(AlertNotification.next_attempt_at.asc(), AlertNotification.id.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def last_sent_at(session: AsyncSession, *, alert_id: str, step_id: str | None) -> datetime | None:
    if step_id is None:
        return None
    return await session.scalar(
        select(func.max(AlertNotification.sent_at)).where(
            AlertNotification.alert_id == alert_id,
            AlertNotification.step_id == step_id,
            AlertNotification.status == "sent",
        )
    )
