from __future__ import annotations

from alertcore.domain.events import IngestEvent
from alertcore.domain.models import AlertRule
from alertcore.services.alerting.maintenance import build_scope


def _rule(dashboard_id: str | None = None) -> AlertRule:
    return AlertRule(id="r1", tenant_id="t1", name="r1", source="zabbix", dashboard_id=dashboard_id)


def test_scope_includes_only_present_identifiers() -> None:
    event = IngestEvent.model_validate({"source": "zabbix", "triggerid": "T1", "hostid": 7})
    assert build_scope(event, _rule()) == {"trigger": ["T1"], "host": ["7"]}


def test_scope_tags_are_key_value_pairs() -> None:
    event = IngestEvent.model_validate({"source": "zabbix", "tags": {"env": "prod", "app": "db"}})
    assert build_scope(event, _rule())["tag"] == ["app:db", "env:prod"]


def test_dashboard_falls_back_to_rule() -> None:
    assert build_scope(IngestEvent(source="zabbix"), _rule("dash-1")) == {"dashboard": ["dash-1"]}
    event = IngestEvent(source="zabbix", dashboard_id="dash-2", connection_id="conn-1", hostgroupid="g1")
    assert build_scope(event, _rule("dash-1")) == {
        "connection": ["conn-1"],
        "dashboard": ["dash-2"],
        "hostgroup": ["g1"],
    }
