from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import json
import logging
from typing import Any, Awaitable, Callable

from redis.asyncio import Redis

from alertcore.core.config import get_settings
from alertcore.domain.models import AlertRule
from alertcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

ALERT_UPDATE_EVENT = "ALERT_UPDATE"

Publisher = Callable[[str, str], Awaitable[Any]]

_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def get_realtime_redis() -> Redis | None:
    # Reuse one loop-bound client; a new loop (tests, worker restarts) gets a fresh one.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        stale, _redis_pool = _redis_pool, None
        try:
            await stale.aclose()
        except Exception as exc:  # noqa: BLE001 - the old loop may already be gone
            logger.debug("realtime_redis_close_failed", exc_info=exc)
    async with _redis_lock:
        if _redis_pool is None:
            try:
                _redis_pool = Redis.from_url(get_settings().redis_url, encoding="utf-8", decode_responses=True)
                _redis_loop = current_loop
            except Exception as exc:  # noqa: BLE001 - realtime feed is optional
                logger.warning("realtime_redis_unavailable", exc_info=exc)
                return None
    return _redis_pool


async def _redis_publish(channel: str, message: str) -> Any:
    redis = await get_realtime_redis()
    if redis is None:
        return None
    return await redis.publish(channel, message)


def routing_channel(*, tenant_id: str, dashboard_id: str | None) -> str:
    prefix = get_settings().realtime_channel_prefix
    if dashboard_id:
        return f"{prefix}:dashboard:{dashboard_id}"
    return f"{prefix}:tenant:{tenant_id}"


def build_update_message(
    *,
    alert_id: str,
    status: str,
    severity: str,
    title: str,
    rule_id: str | None,
    dashboard_id: str | None,
    ts: datetime | None = None,
) -> dict[str, Any]:
    return {
        "type": ALERT_UPDATE_EVENT,
        "alert_id": alert_id,
        "status": status,
        "severity": severity,
        "title": title,
        "rule_id": rule_id,
        "dashboard_id": dashboard_id,
        "ts": (ts or datetime.now(timezone.utc)).isoformat(),
    }


async def publish_alert_update(
    *,
    tenant_id: str,
    alert_id: str,
    status: str,
    severity: str,
    title: str,
    rule: AlertRule | None,
    dashboard_id: str | None = None,
    publisher: Publisher | None = None,
) -> bool:
    # Fire-and-forget: a lost update only delays the UI until its next query.
    if not get_settings().realtime_enabled:
        return False
    routing_dashboard = (rule.dashboard_id if rule is not None else None) or dashboard_id
    channel = routing_channel(tenant_id=tenant_id, dashboard_id=routing_dashboard)
    message = build_update_message(
        alert_id=alert_id,
        status=status,
        severity=severity,
        title=title,
        rule_id=rule.id if rule is not None else None,
        dashboard_id=routing_dashboard,
    )
    send = publisher or _redis_publish
    try:
        await send(channel, json.dumps(message))
    except Exception as exc:  # noqa: BLE001 - never fail event processing on broadcast errors
        increment_counter("realtime_publish_failed_total")
        logger.warning("alert_update_publish_failed alert_id=%s channel=%s", alert_id, channel, exc_info=exc)
        return False
    increment_counter("realtime_published_total")
    return True
