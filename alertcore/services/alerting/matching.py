from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from alertcore.domain.events import IngestEvent
from alertcore.domain.models import AlertRule
from alertcore.persistence.repos.rules import list_enabled_rules_for_source


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def _matcher_satisfied(expected: Any, actual: Any) -> bool:
    # Lists mean "any of"; an absent field never matches a list.
    if isinstance(expected, (list, tuple, set)):
        if actual is None:
            return False
        return _as_text(actual) in {_as_text(item) for item in expected}
    return _as_text(expected) == _as_text(actual)


def rule_matches(rule: AlertRule, event: IngestEvent) -> bool:
    if not rule.is_enabled:
        return False
    if rule.source != event.source:
        return False
    if rule.connection_id and event.connection_id and rule.connection_id != event.connection_id:
        return False
    for key, expected in (rule.matchers or {}).items():
        if not _matcher_satisfied(expected, event.field(key)):
            return False
    return True


def match_rule(rules: Iterable[AlertRule], event: IngestEvent) -> AlertRule | None:
    # First rule in stored order wins.
    for rule in rules:
        if rule_matches(rule, event):
            return rule
    return None


class RuleCache:
    """Enabled rules indexed by source for the lifetime of one ingest call."""

    def __init__(self) -> None:
        self._by_source: dict[str, list[AlertRule]] = {}

    async def rules_for(self, session: AsyncSession, source: str) -> list[AlertRule]:
        cached = self._by_source.get(source)
        if cached is None:
            cached = await list_enabled_rules_for_source(session, source)
            self._by_source[source] = cached
        return cached

    async def candidates(self, session: AsyncSession, event: IngestEvent) -> list[AlertRule]:
        # Narrow by connection id without disturbing stored order.
        rules = await self.rules_for(session, event.source)
        if not event.connection_id:
            return rules
        return [rule for rule in rules if not rule.connection_id or rule.connection_id == event.connection_id]
