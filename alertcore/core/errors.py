from __future__ import annotations


class AlertCoreError(Exception):
    """Base error for alertcore."""


class ConfigurationError(AlertCoreError):
    """Deployment misconfiguration that makes a whole ingest call impossible."""


class StoreUnavailableError(ConfigurationError):
    """Relational store unreachable or missing credentials."""


class DatabaseError(AlertCoreError):
    """Database layer failure."""


class AlertNotFoundError(AlertCoreError):
    """Alert does not exist or belongs to another tenant."""


class InvalidTransitionError(AlertCoreError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(f"invalid transition: {from_status} -> {to_status}")
        self.from_status = from_status
        self.to_status = to_status
