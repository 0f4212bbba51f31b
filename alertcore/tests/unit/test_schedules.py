from __future__ import annotations

from alertcore.services.alerting.escalation import retry_backoff_seconds
from alertcore.workers.sla_worker import _cron_schedule


def test_retry_backoff_doubles_and_caps() -> None:
    assert retry_backoff_seconds(0) == 60
    assert retry_backoff_seconds(1) == 120
    assert retry_backoff_seconds(3) == 480
    assert retry_backoff_seconds(20) == 3600


def test_sla_cron_schedule_seconds_and_minutes() -> None:
    assert _cron_schedule(15) == {"second": {0, 15, 30, 45}}
    assert _cron_schedule(60) == {"minute": set(range(60)), "second": {0}}
    assert _cron_schedule(300) == {"minute": {0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}, "second": {0}}
