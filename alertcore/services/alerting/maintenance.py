from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.domain.events import IngestEvent
from alertcore.domain.models import AlertRule
from alertcore.persistence.repos.maintenance import find_active_window_id


def build_scope(event: IngestEvent, rule: AlertRule) -> dict[str, list[str]]:
    # Only identifiers present on the event (or the rule's dashboard) take part in matching.
    scope: dict[str, list[str]] = {}
    if event.connection_id:
        scope["connection"] = [event.connection_id]
    dashboard_id = event.dashboard_id or rule.dashboard_id
    if dashboard_id:
        scope["dashboard"] = [dashboard_id]
    if event.triggerid:
        scope["trigger"] = [event.triggerid]
    if event.hostid:
        scope["host"] = [event.hostid]
    if event.hostgroupid:
        scope["hostgroup"] = [event.hostgroupid]
    if event.tags:
        scope["tag"] = sorted(f"{key}:{value}" for key, value in event.tags.items())
    return scope


async def find_suppressing_window(
    session: AsyncSession,
    *,
    tenant_id: str,
    now: datetime,
    scope: dict[str, list[str]],
) -> str | None:
    return await find_active_window_id(session, tenant_id=tenant_id, now=now, scope_values=scope)
