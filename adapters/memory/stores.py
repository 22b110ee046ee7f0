"""
In-memory implementations of the alert engine store protocols.

These stand in for the production database in tests, demos and batch
replays. They keep copies of what they are given, so callers can never
mutate stored state by accident, and they enforce the same uniqueness rule
the database does: at most one open alert per (patient, rule).

Failure injection (`fail_next_writes`, `latency_seconds`) simulates a flaky
or slow backend.
"""

import asyncio
from collections import defaultdict
from datetime import datetime

import structlog

from alert_engine.domain.models import (
    Alert,
    AlertRule,
    ConditionPreset,
    ConditionPresetScope,
    Enrollment,
    MetricDefinition,
    Observation,
    OrganizationScope,
    Patient,
)
from alert_engine.errors import PersistenceError

logger = structlog.get_logger(__name__)


class InMemoryPatientDirectory:
    def __init__(self) -> None:
        self.patients: dict[str, Patient] = {}
        self.enrollments: dict[str, list[Enrollment]] = defaultdict(list)
        self.presets: dict[str, ConditionPreset] = {}
        self.metrics: dict[str, MetricDefinition] = {}

    def add_patient(self, patient: Patient) -> None:
        self.patients[patient.id] = patient

    def add_enrollment(self, enrollment: Enrollment) -> None:
        self.enrollments[enrollment.patient_id].append(enrollment)

    def add_preset(self, preset: ConditionPreset) -> None:
        self.presets[preset.id] = preset

    def add_metric(self, metric: MetricDefinition) -> None:
        self.metrics[metric.key] = metric

    async def get_patient(self, patient_id: str) -> Patient | None:
        return self.patients.get(patient_id)

    async def list_enrollments(self, patient_id: str) -> list[Enrollment]:
        return list(self.enrollments.get(patient_id, []))

    async def get_condition_presets(self, preset_ids: list[str]) -> list[ConditionPreset]:
        return [self.presets[i] for i in preset_ids if i in self.presets]

    async def get_metric_definition(self, metric_key: str) -> MetricDefinition | None:
        return self.metrics.get(metric_key)


class InMemoryRuleReader:
    def __init__(self, rules: list[AlertRule] | None = None) -> None:
        self.rules: dict[str, AlertRule] = {}
        for rule in rules or []:
            self.add(rule)

    def add(self, rule: AlertRule) -> None:
        self.rules[rule.id] = rule

    async def list_rules_for_organization(self, organization_id: str) -> list[AlertRule]:
        return [
            r
            for r in self.rules.values()
            if isinstance(r.scope, OrganizationScope) and r.scope.organization_id == organization_id
        ]

    async def list_rules_for_presets(self, preset_ids: list[str]) -> list[AlertRule]:
        wanted = set(preset_ids)
        return [
            r
            for r in self.rules.values()
            if isinstance(r.scope, ConditionPresetScope) and r.scope.condition_preset_id in wanted
        ]


class InMemoryObservationStore:
    def __init__(self) -> None:
        self._observations: dict[tuple[str, str], list[Observation]] = defaultdict(list)
        self.queries = 0

    def record(self, observation: Observation) -> Observation:
        series = self._observations[(observation.patient_id, observation.metric_key)]
        series.append(observation)
        series.sort(key=lambda o: o.recorded_at)
        return observation

    async def list_observations(
        self,
        patient_id: str,
        metric_key: str,
        since: datetime,
        until: datetime,
        limit: int,
    ) -> list[Observation]:
        self.queries += 1
        series = self._observations.get((patient_id, metric_key), [])
        in_range = [o for o in series if since <= o.recorded_at <= until]
        # Keep the most recent `limit` readings, still oldest first
        return in_range[-limit:] if limit else []


class InMemoryAlertStore:
    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._alerts: dict[str, Alert] = {}
        self.latency_seconds = latency_seconds
        self.fail_next_writes = 0
        self.writes = 0
        self.logger = logger.bind(component="in_memory_alert_store")

    async def find_open(self, patient_id: str, rule_id: str) -> Alert | None:
        await self._pause()
        for alert in self._alerts.values():
            if alert.patient_id == patient_id and alert.rule_id == rule_id and alert.is_open:
                return alert.model_copy(deep=True)
        return None

    async def get(self, alert_id: str) -> Alert | None:
        await self._pause()
        alert = self._alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert else None

    async def create(self, alert: Alert) -> Alert:
        await self._pause()
        self._check_write()
        if alert.id in self._alerts:
            raise PersistenceError(f"alert {alert.id} already exists")
        if alert.is_open and self._open_conflict(alert):
            raise PersistenceError(
                f"open alert already exists for patient {alert.patient_id} rule {alert.rule_id}"
            )
        self._alerts[alert.id] = alert.model_copy(deep=True)
        self.writes += 1
        return alert.model_copy(deep=True)

    async def update(self, alert: Alert) -> Alert:
        await self._pause()
        self._check_write()
        if alert.id not in self._alerts:
            raise PersistenceError(f"alert {alert.id} does not exist")
        if alert.is_open and self._open_conflict(alert):
            raise PersistenceError(
                f"open alert already exists for patient {alert.patient_id} rule {alert.rule_id}"
            )
        self._alerts[alert.id] = alert.model_copy(deep=True)
        self.writes += 1
        return alert.model_copy(deep=True)

    async def list_open(self, patient_id: str | None = None) -> list[Alert]:
        await self._pause()
        return [
            a.model_copy(deep=True)
            for a in self._alerts.values()
            if a.is_open and (patient_id is None or a.patient_id == patient_id)
        ]

    def all(self) -> list[Alert]:
        return [a.model_copy(deep=True) for a in self._alerts.values()]

    def _open_conflict(self, alert: Alert) -> bool:
        return any(
            other.id != alert.id
            and other.is_open
            and other.patient_id == alert.patient_id
            and other.rule_id == alert.rule_id
            for other in self._alerts.values()
        )

    def _check_write(self) -> None:
        if self.fail_next_writes > 0:
            self.fail_next_writes -= 1
            self.logger.warning("simulated_write_failure")
            raise PersistenceError("simulated write failure")

    async def _pause(self) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
