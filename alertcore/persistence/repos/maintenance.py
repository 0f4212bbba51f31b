from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.domain.models import MaintenanceScope, MaintenanceWindow


async def find_active_window_id(
    session: AsyncSession,
    *,
    tenant_id: str,
    now: datetime,
    scope_values: dict[str, list[str]],
) -> str | None:
    # A window applies when it is live and any of its scopes covers the event.
    scope_clauses = [MaintenanceScope.scope_type == "tenant_all"]
    for scope_type, values in scope_values.items():
        if values:
            scope_clauses.append(
                and_(MaintenanceScope.scope_type == scope_type, MaintenanceScope.scope_value.in_(values))
            )
    scope_match = exists().where(
        MaintenanceScope.maintenance_id == MaintenanceWindow.id,
        MaintenanceScope.tenant_id == tenant_id,
        or_(*scope_clauses),
    )
    result = await session.execute(
        select(MaintenanceWindow.id)
        .where(
            MaintenanceWindow.tenant_id == tenant_id,
            MaintenanceWindow.is_active.is_(True),
            MaintenanceWindow.starts_at <= now,
            MaintenanceWindow.ends_at > now,
            scope_match,
        )
        .order_by(MaintenanceWindow.starts_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
