from __future__ import annotations

import re

from alertcore.domain.events import IngestEvent
from alertcore.domain.models import AlertRule


_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def render_dedupe_key(template: str, event: IngestEvent, rule: AlertRule) -> str:
    # Templates are operator-authored; substitute literally without escaping.
    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name == "source":
            return event.source or rule.source
        if name == "rule_id":
            return str(rule.id)
        value = event.field(name)
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, template)
