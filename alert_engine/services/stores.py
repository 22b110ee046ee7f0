"""
Data store seams for the alert engine.

Key patterns:
- Protocol-based dependency injection (no global client)
- Generic Result type for expected, per-item failures
- Every store call bounded by a timeout and surfaced as PersistenceError
"""

import asyncio
from collections.abc import Awaitable
from datetime import datetime
from typing import Generic, Protocol, TypeVar

import structlog

from alert_engine.domain.models import (
    Alert,
    AlertRule,
    ConditionPreset,
    Enrollment,
    MetricDefinition,
    Observation,
    Patient,
)
from alert_engine.errors import AlertEngineError, PersistenceError

logger = structlog.get_logger(__name__)

ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)
T = TypeVar("T")


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    Used where a failure is an ordinary outcome for one item (a rule skipped for
    lack of history, one observation in a batch) and must not abort the rest.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class PatientDirectory(Protocol):
    """Read access to patients, enrollments, condition presets and metric definitions."""

    async def get_patient(self, patient_id: str) -> Patient | None: ...

    async def list_enrollments(self, patient_id: str) -> list[Enrollment]: ...

    async def get_condition_presets(self, preset_ids: list[str]) -> list[ConditionPreset]: ...

    async def get_metric_definition(self, metric_key: str) -> MetricDefinition | None: ...


class RuleReader(Protocol):
    """Read access to configured alert rules."""

    async def list_rules_for_organization(self, organization_id: str) -> list[AlertRule]: ...

    async def list_rules_for_presets(self, preset_ids: list[str]) -> list[AlertRule]: ...


class ObservationReader(Protocol):
    """Read access to recorded observations."""

    async def list_observations(
        self,
        patient_id: str,
        metric_key: str,
        since: datetime,
        until: datetime,
        limit: int,
    ) -> list[Observation]:
        """Return observations with since <= recorded_at <= until, oldest first."""
        ...


class AlertStore(Protocol):
    """Read/write access to alerts. The only store the engine writes to."""

    async def find_open(self, patient_id: str, rule_id: str) -> Alert | None: ...

    async def get(self, alert_id: str) -> Alert | None: ...

    async def create(self, alert: Alert) -> Alert: ...

    async def update(self, alert: Alert) -> Alert: ...

    async def list_open(self, patient_id: str | None = None) -> list[Alert]: ...


async def guarded(operation: str, call: Awaitable[T], timeout_seconds: float) -> T:
    """Await a store call with a timeout, mapping failures to PersistenceError."""
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except TimeoutError as e:
        logger.warning("store_operation_timeout", operation=operation, timeout=timeout_seconds)
        raise PersistenceError(f"{operation} timed out after {timeout_seconds}s") from e
    except AlertEngineError:
        raise
    except Exception as e:
        # Driver and backend errors of any class stay behind the store seam
        logger.error("store_operation_failed", operation=operation, error=str(e), exc_info=True)
        raise PersistenceError(f"{operation} failed: {e}") from e
