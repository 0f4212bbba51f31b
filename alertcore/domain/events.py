from __future__ import annotations

from typing import Any, Literal, TypedDict

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


IngestAction = Literal[
    "opened",
    "opened_suppressed",
    "refreshed",
    "refreshed_suppressed",
    "auto_resolved",
    "ok_no_open_alert",
    "ok_auto_resolve_disabled",
    "skipped_no_rule",
    "skipped_no_match",
    "error",
]


class IngestResult(TypedDict, total=False):
    dedupe_key: str
    action: IngestAction
    alert_id: str
    error: str


def _coerce_scalar(value: Any) -> Any:
    # Pollers send numeric ids and values as JSON numbers; compare everything as strings.
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return value


class IngestEvent(BaseModel):
    # Known fields are typed; anything else lands in the string-keyed extension bag.
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    source: str = Field(..., min_length=1)
    severity: str | None = None
    status: str | None = None
    value: str | None = None
    title: str | None = None
    trigger_name: str | None = None
    description: str | None = None
    host: str | None = None
    connection_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("connection_id", "zabbix_connection_id"),
    )
    dashboard_id: str | None = None
    triggerid: str | None = None
    hostid: str | None = None
    hostgroupid: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_extension_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known = set(cls.model_fields) | {"zabbix_connection_id"}
        extras = {key: value for key, value in data.items() if key not in known}
        if not extras:
            return data
        raw_attributes = data.get("attributes")
        if raw_attributes is not None and not isinstance(raw_attributes, dict):
            raise ValueError("attributes must be an object")
        attributes = dict(raw_attributes or {})
        for key, value in extras.items():
            attributes.setdefault(str(key), value)
        cleaned = {key: value for key, value in data.items() if key in known}
        cleaned["attributes"] = attributes
        return cleaned

    @field_validator(
        "severity",
        "status",
        "value",
        "title",
        "trigger_name",
        "description",
        "host",
        "connection_id",
        "dashboard_id",
        "triggerid",
        "hostid",
        "hostgroupid",
        mode="before",
    )
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return _coerce_scalar(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _stringify_tags(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(key): str(_coerce_scalar(item)) for key, item in value.items()}
        return value

    def field(self, name: str) -> Any:
        # Resolve a matcher/template field from known fields first, then the extension bag.
        if name in ("attributes", "tags"):
            return None
        if name == "zabbix_connection_id":
            return self.connection_id
        if name in type(self).model_fields:
            return getattr(self, name)
        return self.attributes.get(name)

    def payload(self) -> dict[str, Any]:
        # Snapshot stored on the alert; source is tracked on the rule already.
        data = self.model_dump(exclude={"source", "attributes"}, exclude_none=True)
        if not data.get("tags"):
            data.pop("tags", None)
        data.update(self.attributes)
        return data
