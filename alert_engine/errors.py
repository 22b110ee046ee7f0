"""
Error taxonomy for the alert engine.

Only NotFoundError and PersistenceError cross the public evaluate() boundary.
InsufficientWindow is carried inside a Result and logged, never raised to callers.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from alert_engine.domain.models import Alert


class AlertEngineError(Exception):
    """Base class for all alert engine errors."""


class NotFoundError(AlertEngineError):
    """Patient, enrollment or alert referenced by a request cannot be resolved."""


class PersistenceError(AlertEngineError):
    """A data store read or write failed, conflicted or timed out. Safe to retry."""

    def __init__(self, message: str, alerts: "list[Alert] | None" = None) -> None:
        super().__init__(message)
        self.alerts: list[Alert] = list(alerts or [])


class InvalidTransitionError(AlertEngineError):
    """Requested alert status change is not allowed from the current status."""


class InsufficientWindow(AlertEngineError):
    """A windowed rule does not have enough history to be evaluated."""

    def __init__(self, rule_id: str, required: int, available: int) -> None:
        super().__init__(
            f"rule {rule_id} needs {required} observations in window, found {available}"
        )
        self.rule_id = rule_id
        self.required = required
        self.available = available
