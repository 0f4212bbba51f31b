from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from alertcore.core.config import get_settings
from alertcore.core.errors import AlertCoreError, ConfigurationError, StoreUnavailableError
from alertcore.domain.events import IngestEvent, IngestResult
from alertcore.domain.models import AlertRule
from alertcore.persistence import db
from alertcore.services.alerting.dedupe import render_dedupe_key
from alertcore.services.alerting.lifecycle import Evaluation, apply_lifecycle
from alertcore.services.alerting.maintenance import build_scope, find_suppressing_window
from alertcore.services.alerting.matching import RuleCache, match_rule
from alertcore.services.alerting.normalize import is_recovery_event, map_severity, resolve_title
from alertcore.services.alerting.notifier import Publisher
from alertcore.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

NO_RULE_KEY = "no-rule"
NO_MATCH_KEY = "no-match"
UNKNOWN_KEY = "unknown"
_MAX_ERROR_CHARS = 500


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class _Prepared:
    index: int
    event: IngestEvent | None = None
    rule: AlertRule | None = None
    dedupe_key: str = UNKNOWN_KEY
    # Terminal results (validation errors, skips) are known before any lifecycle work.
    result: IngestResult | None = None


@dataclass(slots=True)
class _Group:
    items: list[_Prepared] = field(default_factory=list)


def _error(dedupe_key: str, message: str) -> IngestResult:
    return {"dedupe_key": dedupe_key, "action": "error", "error": message[:_MAX_ERROR_CHARS]}


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for item in exc.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "event"
        parts.append(f"{loc}: {item.get('msg', 'invalid')}")
    return "; ".join(parts) or "invalid event"


def _parse(index: int, raw: Any) -> _Prepared:
    if not isinstance(raw, dict):
        return _Prepared(index=index, result=_error(UNKNOWN_KEY, "event must be a JSON object"))
    try:
        return _Prepared(index=index, event=IngestEvent.model_validate(raw))
    except ValidationError as exc:
        return _Prepared(index=index, result=_error(UNKNOWN_KEY, _validation_message(exc)))


async def _ensure_store() -> None:
    try:
        await db.ping()
    except (SQLAlchemyError, OSError) as exc:
        logger.error("ingest_store_unavailable", exc_info=exc)
        raise StoreUnavailableError("relational store unavailable") from exc


async def _match_all(items: list[_Prepared]) -> None:
    # Rules are fetched once per source for the whole call, then matched in input order.
    cache = RuleCache()
    async with db.SessionLocal() as session:
        for item in items:
            if item.result is not None or item.event is None:
                continue
            event = item.event
            try:
                if not await cache.rules_for(session, event.source):
                    logger.debug("ingest_skipped_no_rule source=%s", event.source)
                    item.result = {"dedupe_key": NO_RULE_KEY, "action": "skipped_no_rule"}
                    continue
                rule = match_rule(await cache.candidates(session, event), event)
            except SQLAlchemyError as exc:
                # Detach cached rules first so the rollback does not expire them.
                session.expunge_all()
                await session.rollback()
                logger.warning("ingest_rule_lookup_failed source=%s", event.source, exc_info=exc)
                item.result = _error(UNKNOWN_KEY, str(exc))
                continue
            if rule is None:
                logger.debug("ingest_skipped_no_match source=%s", event.source)
                item.result = {"dedupe_key": NO_MATCH_KEY, "action": "skipped_no_match"}
                continue
            item.rule = rule
            item.dedupe_key = render_dedupe_key(rule.dedupe_key_template, event, rule)


def _group(items: list[_Prepared]) -> list[_Group]:
    # Same (tenant, key) events run one after another; distinct keys run concurrently.
    groups: dict[tuple[str, str], _Group] = {}
    for item in items:
        if item.result is not None or item.rule is None:
            continue
        key = (item.rule.tenant_id, item.dedupe_key)
        groups.setdefault(key, _Group()).items.append(item)
    return list(groups.values())


async def _process(
    item: _Prepared,
    *,
    publisher: Publisher | None,
    clock: Callable[[], datetime],
) -> IngestResult:
    event = item.event
    rule = item.rule
    assert event is not None and rule is not None
    async with db.SessionLocal() as session:
        try:
            now = clock()
            maintenance_id = await find_suppressing_window(
                session,
                tenant_id=rule.tenant_id,
                now=now,
                scope=build_scope(event, rule),
            )
            outcome = await apply_lifecycle(
                session=session,
                evaluation=Evaluation(
                    tenant_id=rule.tenant_id,
                    rule=rule,
                    dedupe_key=item.dedupe_key,
                    severity=map_severity(event.severity or rule.severity),
                    title=resolve_title(event, item.dedupe_key),
                    is_recovery=is_recovery_event(event, rule.recovery_predicate),
                    maintenance_id=maintenance_id,
                    payload=event.payload(),
                    now=now,
                    dashboard_id=event.dashboard_id,
                ),
                publisher=publisher,
            )
        except ConfigurationError:
            # Deployment faults abort the whole call rather than a single event.
            await session.rollback()
            raise
        except (SQLAlchemyError, AlertCoreError) as exc:
            await session.rollback()
            logger.warning(
                "ingest_event_failed dedupe_key=%s rule_id=%s",
                item.dedupe_key,
                rule.id,
                exc_info=exc,
            )
            return _error(item.dedupe_key, str(exc))
    result: IngestResult = {"dedupe_key": item.dedupe_key, "action": outcome.action}
    if outcome.alert_id:
        result["alert_id"] = outcome.alert_id
    return result


async def ingest_events(
    raw_events: list[Any],
    *,
    publisher: Publisher | None = None,
    clock: Callable[[], datetime] = _utc_now,
) -> dict[str, Any]:
    """Run a batch of monitoring events through match, dedupe and lifecycle.

    Every input yields exactly one result, reported in input order. Events
    sharing a (tenant, dedupe key) pair are processed sequentially in input
    order; distinct pairs run concurrently up to ``ingest_max_concurrency``.
    Per-event failures become ``error`` results. An unreachable store aborts
    the whole call with StoreUnavailableError before any event is touched.
    """
    settings = get_settings()
    if len(raw_events) > settings.ingest_max_batch_size:
        raise ValueError(f"batch exceeds {settings.ingest_max_batch_size} events")
    started = time.monotonic()
    await _ensure_store()

    items = [_parse(index, raw) for index, raw in enumerate(raw_events)]
    await _match_all(items)
    results: list[IngestResult | None] = [item.result for item in items]

    semaphore = asyncio.Semaphore(max(1, settings.ingest_max_concurrency))

    async def _run_group(group: _Group) -> None:
        async with semaphore:
            for item in group.items:
                try:
                    results[item.index] = await _process(item, publisher=publisher, clock=clock)
                except ConfigurationError:
                    raise
                except Exception as exc:  # noqa: BLE001 - every input must produce a result
                    logger.exception("ingest_event_crashed dedupe_key=%s", item.dedupe_key)
                    results[item.index] = _error(item.dedupe_key, str(exc) or type(exc).__name__)

    groups = _group(items)
    if groups:
        tasks = [asyncio.create_task(_run_group(group)) for group in groups]
        remaining = max(0.0, settings.ingest_batch_timeout_s - (time.monotonic() - started))
        done, pending = await asyncio.wait(tasks, timeout=remaining)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("ingest_batch_timeout pending_groups=%s", len(pending))
        # Retrieve every failure so none is left unobserved, then surface the first.
        failures = [task.exception() for task in tasks if task in done and task.exception() is not None]
        if failures:
            raise failures[0]

    final: list[IngestResult] = []
    for item, result in zip(items, results):
        if result is None:
            result = _error(item.dedupe_key, "timeout")
        increment_counter(f"ingest_{result['action']}_total")
        final.append(result)
    return {"processed": len(final), "results": final}
