from __future__ import annotations

import argparse
import asyncio

from alertcore.core.logging import configure_logging
from alertcore.persistence.db import SessionLocal
from alertcore.services.alerting.sla import sweep_sla_breaches


async def _run_sweep(tenant_id: str | None) -> None:
    async with SessionLocal() as session:
        stamped = await sweep_sla_breaches(session=session, tenant_id=tenant_id)
    print(f"sla_breaches_stamped={stamped}")


def main() -> None:
    # One-shot sweep for cron hosts that do not run the arq worker.
    parser = argparse.ArgumentParser(description="Stamp SLA breaches on open and acknowledged alerts")
    parser.add_argument("--tenant-id", default=None)
    args = parser.parse_args()

    configure_logging()
    asyncio.run(_run_sweep(args.tenant_id))


if __name__ == "__main__":
    main()
