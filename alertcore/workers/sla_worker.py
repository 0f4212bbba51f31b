from __future__ import annotations

import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from alertcore.core.config import get_settings
from alertcore.core.logging import configure_logging
from alertcore.persistence.db import SessionLocal
from alertcore.services.alerting.sla import sweep_sla_breaches

logger = logging.getLogger(__name__)


async def sla_sweep(ctx) -> int:
    # Stamp first breaches across all tenants; later sweeps skip stamped rows.
    if not get_settings().sla_sweep_enabled:
        return 0
    async with SessionLocal() as session:
        stamped = await sweep_sla_breaches(session=session)
    logger.debug("sla_sweep_completed stamped=%s", stamped)
    return stamped


def _cron_schedule(interval_s: int) -> dict[str, Any]:
    # arq cron matches wall-clock fields, so express the interval as seconds or minutes.
    interval_s = max(1, int(interval_s))
    if interval_s < 60:
        return {"second": set(range(0, 60, interval_s))}
    minutes = max(1, min(59, interval_s // 60))
    return {"minute": set(range(0, 60, minutes)), "second": {0}}


async def _startup(ctx) -> None:
    configure_logging()
    logger.info("sla_worker_started interval_s=%s", get_settings().sla_sweep_interval_s)


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.sla_worker_queue_name
    functions = [sla_sweep]
    cron_jobs = [
        cron(sla_sweep, run_at_startup=True, unique=True, **_cron_schedule(settings.sla_sweep_interval_s))
    ]
    on_startup = _startup
