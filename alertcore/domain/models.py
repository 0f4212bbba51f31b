from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Store JSON as JSONB on Postgres while keeping SQLite usable for local tests.
JsonType = JSON().with_variant(JSONB(), "postgresql")

ACTIVE_ALERT_STATUSES = ("open", "ack")


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    # Fetch server defaults on flush; async sessions cannot lazy-load them later.
    __mapper_args__ = {"eager_defaults": True}


class NotificationChannel(Base):
    __tablename__ = "notification_channels"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_notification_channels_tenant_name"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    # Channel kind understood by delivery workers (slack, webhook, telegram, ...).
    channel: Mapped[str] = mapped_column(String)
    config: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class EscalationPolicy(Base):
    __tablename__ = "escalation_policies"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_escalation_policies_tenant_name"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class EscalationStep(Base):
    __tablename__ = "escalation_steps"
    __table_args__ = (
        UniqueConstraint("policy_id", "step_order", name="uq_escalation_steps_policy_order"),
        Index("ix_escalation_steps_policy_order", "policy_id", "step_order"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    policy_id: Mapped[str] = mapped_column(String, ForeignKey("escalation_policies.id", ondelete="CASCADE"))
    step_order: Mapped[int] = mapped_column(Integer)
    delay_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    channel_id: Mapped[str] = mapped_column(String, ForeignKey("notification_channels.id"))
    target: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    throttle_seconds: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    # Let a step stand down once an operator has acknowledged the alert.
    skip_on_ack: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SlaPolicy(Base):
    __tablename__ = "alert_sla_policies"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_alert_sla_policies_tenant_name"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    ack_target_seconds: Mapped[int] = mapped_column(Integer, default=900, nullable=False)
    resolve_target_seconds: Mapped[int] = mapped_column(Integer, default=3600, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MaintenanceWindow(Base):
    __tablename__ = "maintenance_windows"
    __table_args__ = (
        CheckConstraint("ends_at > starts_at", name="ck_maintenance_windows_range"),
        Index("ix_maintenance_windows_tenant_time", "tenant_id", "starts_at", "ends_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MaintenanceScope(Base):
    __tablename__ = "maintenance_scopes"
    __table_args__ = (Index("ix_maintenance_scopes_window_type", "maintenance_id", "scope_type"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    maintenance_id: Mapped[str] = mapped_column(
        String, ForeignKey("maintenance_windows.id", ondelete="CASCADE")
    )
    # One of: tenant_all, connection, dashboard, trigger, host, hostgroup, tag.
    scope_type: Mapped[str] = mapped_column(String)
    scope_value: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AlertRule(Base):
    __tablename__ = "alert_rules"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_alert_rules_tenant_name"),
        Index("ix_alert_rules_source_enabled", "source", "is_enabled"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    source: Mapped[str] = mapped_column(String, default="zabbix")
    # field -> value or list of accepted values.
    matchers: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    dedupe_key_template: Mapped[str] = mapped_column(String, default="{{source}}:{{triggerid}}")
    severity: Mapped[str] = mapped_column(String, default="high")
    auto_resolve: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    resolve_on_missing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Name of the recovery predicate applied to incoming events.
    recovery_predicate: Mapped[str] = mapped_column(String, default="status_or_value", nullable=False)
    # Stored order for the first-match tie-break.
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    escalation_policy_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("escalation_policies.id", ondelete="SET NULL"), nullable=True
    )
    sla_policy_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("alert_sla_policies.id", ondelete="SET NULL"), nullable=True
    )
    connection_id: Mapped[str | None] = mapped_column(String, nullable=True)
    dashboard_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AlertInstance(Base):
    __tablename__ = "alert_instances"
    __table_args__ = (
        # Core dedupe guarantee: one open/ack alert per tenant and key.
        Index(
            "uq_alert_instances_active_dedupe",
            "tenant_id",
            "dedupe_key",
            unique=True,
            postgresql_where=text("status IN ('open', 'ack')"),
            sqlite_where=text("status IN ('open', 'ack')"),
        ),
        Index("ix_alert_instances_tenant_status", "tenant_id", "status"),
        Index("ix_alert_instances_tenant_dedupe", "tenant_id", "dedupe_key"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String)
    rule_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("alert_rules.id", ondelete="SET NULL"), nullable=True
    )
    dedupe_key: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="open")
    severity: Mapped[str] = mapped_column(String, default="high")
    title: Mapped[str] = mapped_column(Text)
    payload: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    suppressed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    suppressed_by_maintenance_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("maintenance_windows.id", ondelete="SET NULL"), nullable=True
    )
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    ack_due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolve_due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ack_breached_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolve_breached_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AlertEvent(Base):
    __tablename__ = "alert_events"
    __table_args__ = (Index("ix_alert_events_alert_time", "alert_id", "occurred_at"),)

    # Append-only audit trail; rows are never updated or deleted by the engine.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    alert_id: Mapped[str] = mapped_column(String, ForeignKey("alert_instances.id", ondelete="CASCADE"))
    event_type: Mapped[str] = mapped_column(String)
    from_status: Mapped[str | None] = mapped_column(String, nullable=True)
    to_status: Mapped[str | None] = mapped_column(String, nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AlertNotification(Base):
    __tablename__ = "alert_notifications"
    __table_args__ = (
        Index("ix_alert_notifications_pending", "status", "next_attempt_at"),
        Index("ix_alert_notifications_alert_step", "alert_id", "step_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    alert_id: Mapped[str] = mapped_column(String, ForeignKey("alert_instances.id", ondelete="CASCADE"))
    policy_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("escalation_policies.id", ondelete="SET NULL"), nullable=True
    )
    step_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("escalation_steps.id", ondelete="SET NULL"), nullable=True
    )
    channel_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("notification_channels.id", ondelete="SET NULL"), nullable=True
    )
    # pending -> sent | failed | cancelled
    status: Mapped[str] = mapped_column(String, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    request: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    response: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
