from alertcore.services.alerting.escalation import (
    cancel_notification,
    list_due_notifications,
    materialize_escalation,
    record_delivery_outcome,
    should_skip_notification,
)
from alertcore.services.alerting.lifecycle import Evaluation, LifecycleOutcome, apply_lifecycle
from alertcore.services.alerting.pipeline import ingest_events
from alertcore.services.alerting.sla import sla_due_dates, sweep_sla_breaches
from alertcore.services.alerting.transitions import transition_alert

__all__ = [
    "Evaluation",
    "LifecycleOutcome",
    "apply_lifecycle",
    "cancel_notification",
    "ingest_events",
    "list_due_notifications",
    "materialize_escalation",
    "record_delivery_outcome",
    "should_skip_notification",
    "sla_due_dates",
    "sweep_sla_breaches",
    "transition_alert",
]
