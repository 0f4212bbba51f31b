"""create alert rules, instances, audit events, maintenance, escalation and SLA tables

Revision ID: 0001_alerting_core
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_alerting_core"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, *, nullable: bool = True, default: bool = False) -> sa.Column:
    if default:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _jsonb(name: str) -> sa.Column:
    return sa.Column(name, postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb"))


def upgrade() -> None:
    op.create_table(
        "notification_channels",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        _jsonb("config"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _ts("created_at", default=True),
        sa.UniqueConstraint("tenant_id", "name", name="uq_notification_channels_tenant_name"),
    )
    op.create_index("ix_notification_channels_tenant_id", "notification_channels", ["tenant_id"])

    op.create_table(
        "escalation_policies",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _ts("created_at", default=True),
        sa.UniqueConstraint("tenant_id", "name", name="uq_escalation_policies_tenant_name"),
    )
    op.create_index("ix_escalation_policies_tenant_id", "escalation_policies", ["tenant_id"])

    op.create_table(
        "escalation_steps",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "policy_id",
            sa.String(),
            sa.ForeignKey("escalation_policies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("delay_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("channel_id", sa.String(), sa.ForeignKey("notification_channels.id"), nullable=False),
        _jsonb("target"),
        sa.Column("throttle_seconds", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("skip_on_ack", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _ts("created_at", default=True),
        sa.UniqueConstraint("policy_id", "step_order", name="uq_escalation_steps_policy_order"),
    )
    op.create_index("ix_escalation_steps_tenant_id", "escalation_steps", ["tenant_id"])
    op.create_index("ix_escalation_steps_policy_order", "escalation_steps", ["policy_id", "step_order"])

    op.create_table(
        "alert_sla_policies",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("ack_target_seconds", sa.Integer(), nullable=False, server_default="900"),
        sa.Column("resolve_target_seconds", sa.Integer(), nullable=False, server_default="3600"),
        _ts("created_at", default=True),
        sa.UniqueConstraint("tenant_id", "name", name="uq_alert_sla_policies_tenant_name"),
    )
    op.create_index("ix_alert_sla_policies_tenant_id", "alert_sla_policies", ["tenant_id"])

    op.create_table(
        "maintenance_windows",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("starts_at", nullable=False),
        _ts("ends_at", nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _ts("created_at", default=True),
        sa.CheckConstraint("ends_at > starts_at", name="ck_maintenance_windows_range"),
    )
    op.create_index(
        "ix_maintenance_windows_tenant_time", "maintenance_windows", ["tenant_id", "starts_at", "ends_at"]
    )

    op.create_table(
        "maintenance_scopes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "maintenance_id",
            sa.String(),
            sa.ForeignKey("maintenance_windows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scope_type", sa.String(), nullable=False),
        sa.Column("scope_value", sa.String(), nullable=True),
        _ts("created_at", default=True),
    )
    op.create_index("ix_maintenance_scopes_tenant_id", "maintenance_scopes", ["tenant_id"])
    op.create_index("ix_maintenance_scopes_window_type", "maintenance_scopes", ["maintenance_id", "scope_type"])

    op.create_table(
        "alert_rules",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("source", sa.String(), nullable=False, server_default="zabbix"),
        _jsonb("matchers"),
        sa.Column(
            "dedupe_key_template", sa.String(), nullable=False, server_default="{{source}}:{{triggerid}}"
        ),
        sa.Column("severity", sa.String(), nullable=False, server_default="high"),
        sa.Column("auto_resolve", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("resolve_on_missing", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("recovery_predicate", sa.String(), nullable=False, server_default="status_or_value"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "escalation_policy_id",
            sa.String(),
            sa.ForeignKey("escalation_policies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "sla_policy_id",
            sa.String(),
            sa.ForeignKey("alert_sla_policies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("connection_id", sa.String(), nullable=True),
        sa.Column("dashboard_id", sa.String(), nullable=True),
        _ts("created_at", default=True),
        _ts("updated_at", default=True),
        sa.UniqueConstraint("tenant_id", "name", name="uq_alert_rules_tenant_name"),
    )
    op.create_index("ix_alert_rules_tenant_id", "alert_rules", ["tenant_id"])
    op.create_index("ix_alert_rules_source_enabled", "alert_rules", ["source", "is_enabled"])

    op.create_table(
        "alert_instances",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("rule_id", sa.String(), sa.ForeignKey("alert_rules.id", ondelete="SET NULL"), nullable=True),
        sa.Column("dedupe_key", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        sa.Column("severity", sa.String(), nullable=False, server_default="high"),
        sa.Column("title", sa.Text(), nullable=False),
        _jsonb("payload"),
        sa.Column("suppressed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "suppressed_by_maintenance_id",
            sa.String(),
            sa.ForeignKey("maintenance_windows.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _ts("opened_at", default=True),
        _ts("last_seen_at", default=True),
        _ts("acknowledged_at"),
        sa.Column("acknowledged_by", sa.String(), nullable=True),
        _ts("resolved_at"),
        sa.Column("resolved_by", sa.String(), nullable=True),
        _ts("ack_due_at"),
        _ts("resolve_due_at"),
        _ts("ack_breached_at"),
        _ts("resolve_breached_at"),
        _ts("created_at", default=True),
        _ts("updated_at", default=True),
    )
    # At most one open/ack instance per tenant and dedupe key; resolved rows are history.
    op.create_index(
        "uq_alert_instances_active_dedupe",
        "alert_instances",
        ["tenant_id", "dedupe_key"],
        unique=True,
        postgresql_where=sa.text("status IN ('open', 'ack')"),
    )
    op.create_index("ix_alert_instances_tenant_status", "alert_instances", ["tenant_id", "status"])
    op.create_index("ix_alert_instances_tenant_dedupe", "alert_instances", ["tenant_id", "dedupe_key"])

    op.create_table(
        "alert_events",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "alert_id",
            sa.String(),
            sa.ForeignKey("alert_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        _jsonb("payload"),
        _ts("occurred_at", default=True),
    )
    op.create_index("ix_alert_events_tenant_id", "alert_events", ["tenant_id"])
    op.create_index("ix_alert_events_alert_time", "alert_events", ["alert_id", "occurred_at"])

    op.create_table(
        "alert_notifications",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "alert_id",
            sa.String(),
            sa.ForeignKey("alert_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "policy_id",
            sa.String(),
            sa.ForeignKey("escalation_policies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "step_id",
            sa.String(),
            sa.ForeignKey("escalation_steps.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "channel_id",
            sa.String(),
            sa.ForeignKey("notification_channels.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _ts("next_attempt_at"),
        _ts("sent_at"),
        _jsonb("request"),
        _jsonb("response"),
        _ts("created_at", default=True),
    )
    op.create_index("ix_alert_notifications_tenant_id", "alert_notifications", ["tenant_id"])
    op.create_index("ix_alert_notifications_pending", "alert_notifications", ["status", "next_attempt_at"])
    op.create_index("ix_alert_notifications_alert_step", "alert_notifications", ["alert_id", "step_id"])


def downgrade() -> None:
    op.drop_table("alert_notifications")
    op.drop_table("alert_events")
    op.drop_index("uq_alert_instances_active_dedupe", table_name="alert_instances")
    op.drop_table("alert_instances")
    op.drop_table("alert_rules")
    op.drop_table("maintenance_scopes")
    op.drop_table("maintenance_windows")
    op.drop_table("alert_sla_policies")
    op.drop_table("escalation_steps")
    op.drop_table("escalation_policies")
    op.drop_table("notification_channels")
