from __future__ import annotations

import logging
import re
from typing import Callable

from alertcore.domain.events import IngestEvent


logger = logging.getLogger(__name__)

SEVERITY_LEVELS = ("info", "warning", "average", "high", "disaster")
DEFAULT_SEVERITY = "high"
DEFAULT_RECOVERY_PREDICATE = "status_or_value"

_SEVERITY_MAP = {
    "0": "info",
    "1": "info",
    "2": "warning",
    "3": "average",
    "4": "high",
    "5": "disaster",
    **{level: level for level in SEVERITY_LEVELS},
}
_STATUS_SUFFIX = re.compile(r"\s*\(.*\)$")
_RECOVERY_STATUSES = {"OK", "RESOLVED"}


def map_severity(raw: str | None) -> str:
    # Unknown severities escalate to "high"; under-alerting is the worse failure.
    return _SEVERITY_MAP.get((raw or "").strip().lower(), DEFAULT_SEVERITY)


def clean_status(raw: str | None) -> str:
    # "OK (3)" -> "OK"
    if not raw:
        return ""
    return _STATUS_SUFFIX.sub("", raw).strip().upper()


def _status_is_recovery(event: IngestEvent) -> bool:
    return clean_status(event.status) in _RECOVERY_STATUSES


def _value_is_recovery(event: IngestEvent) -> bool:
    return event.value == "0"


RecoveryPredicate = Callable[[IngestEvent], bool]

RECOVERY_PREDICATES: dict[str, RecoveryPredicate] = {
    "status_or_value": lambda event: _status_is_recovery(event) or _value_is_recovery(event),
    "status": _status_is_recovery,
    "value": _value_is_recovery,
}


def is_recovery_event(event: IngestEvent, predicate: str | None = None) -> bool:
    name = predicate or DEFAULT_RECOVERY_PREDICATE
    check = RECOVERY_PREDICATES.get(name)
    if check is None:
        logger.warning("unknown_recovery_predicate predicate=%s fallback=%s", name, DEFAULT_RECOVERY_PREDICATE)
        check = RECOVERY_PREDICATES[DEFAULT_RECOVERY_PREDICATE]
    return check(event)


def resolve_title(event: IngestEvent, dedupe_key: str) -> str:
    return event.title or event.trigger_name or event.description or dedupe_key
