from __future__ import annotations

import pytest

from alertcore.domain.events import IngestEvent
from alertcore.services.alerting.normalize import (
    clean_status,
    is_recovery_event,
    map_severity,
    resolve_title,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("0", "info"),
        ("1", "info"),
        ("2", "warning"),
        ("3", "average"),
        ("4", "high"),
        ("5", "disaster"),
        ("Warning", "warning"),
        (" disaster ", "disaster"),
        ("critical", "high"),
        ("", "high"),
        (None, "high"),
    ],
)
def test_map_severity(raw, expected) -> None:
    assert map_severity(raw) == expected


def test_clean_status_strips_parenthetical_suffix() -> None:
    assert clean_status("OK (3)") == "OK"
    assert clean_status("resolved") == "RESOLVED"
    assert clean_status("PROBLEM") == "PROBLEM"
    assert clean_status(None) == ""


def test_default_predicate_accepts_status_or_value() -> None:
    assert is_recovery_event(IngestEvent(source="zabbix", status="OK (2)"))
    assert is_recovery_event(IngestEvent(source="zabbix", status="Resolved"))
    assert is_recovery_event(IngestEvent(source="zabbix", status="PROBLEM", value=0))
    assert not is_recovery_event(IngestEvent(source="zabbix", status="PROBLEM", value=1))
    assert not is_recovery_event(IngestEvent(source="zabbix"))


def test_named_predicates_narrow_recovery() -> None:
    by_value = IngestEvent(source="zabbix", status="PROBLEM", value="0")
    by_status = IngestEvent(source="zabbix", status="OK", value="1")
    assert not is_recovery_event(by_value, "status")
    assert is_recovery_event(by_status, "status")
    assert is_recovery_event(by_value, "value")
    assert not is_recovery_event(by_status, "value")


def test_unknown_predicate_falls_back_to_default() -> None:
    assert is_recovery_event(IngestEvent(source="zabbix", value="0"), "no-such-predicate")


def test_resolve_title_prefers_title_then_trigger_then_description() -> None:
    assert resolve_title(IngestEvent(source="s", title="A", trigger_name="B"), "k") == "A"
    assert resolve_title(IngestEvent(source="s", trigger_name="B", description="C"), "k") == "B"
    assert resolve_title(IngestEvent(source="s", description="C"), "k") == "C"
    assert resolve_title(IngestEvent(source="s"), "zabbix:T1") == "zabbix:T1"
