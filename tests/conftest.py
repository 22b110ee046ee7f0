"""Shared fixtures: an in-memory clinic with one enrolled chronic-pain patient."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from adapters.memory.stores import (
    InMemoryAlertStore,
    InMemoryObservationStore,
    InMemoryPatientDirectory,
    InMemoryRuleReader,
)
from alert_engine.config import AppConfig
from alert_engine.domain.models import (
    AlertRule,
    ConditionPreset,
    ConditionPresetScope,
    Enrollment,
    MetricDefinition,
    NumericValue,
    Observation,
    OrganizationScope,
    Patient,
    Severity,
    TextValue,
    ValueRange,
)
from alert_engine.services.evaluation import AlertEvaluationService, build_evaluation_service

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
ORG = "org-riverside"
PATIENT = "patient-1"
PAIN = "pain_level_nrs"


@pytest.fixture
def now() -> datetime:
    return T0


@pytest.fixture
def directory() -> InMemoryPatientDirectory:
    directory = InMemoryPatientDirectory()
    directory.add_patient(Patient(id=PATIENT, organization_id=ORG))
    directory.add_preset(ConditionPreset(id="preset-chronic-pain", name="Chronic Pain"))
    directory.add_preset(ConditionPreset(id="preset-arthritis", name="Arthritis"))
    directory.add_enrollment(
        Enrollment(
            id="enrollment-1",
            patient_id=PATIENT,
            organization_id=ORG,
            condition_preset_id="preset-chronic-pain",
            started_at=T0 - timedelta(days=60),
        )
    )
    directory.add_metric(
        MetricDefinition(
            key=PAIN,
            display_name="Pain Level (NRS)",
            normal_range=ValueRange(min=0, max=10),
        )
    )
    return directory


@pytest.fixture
def rules() -> InMemoryRuleReader:
    return InMemoryRuleReader()


@pytest.fixture
def observation_store() -> InMemoryObservationStore:
    return InMemoryObservationStore()


@pytest.fixture
def alert_store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def service(
    directory: InMemoryPatientDirectory,
    rules: InMemoryRuleReader,
    observation_store: InMemoryObservationStore,
    alert_store: InMemoryAlertStore,
    config: AppConfig,
) -> AlertEvaluationService:
    return build_evaluation_service(
        directory, rules, observation_store, alert_store, config=config, clock=lambda: T0
    )


@pytest.fixture
def observe(observation_store: InMemoryObservationStore) -> Callable[..., Observation]:
    """Record an observation the way ingestion would, then hand it back."""
    counter = iter(range(1, 10_000))

    def _observe(
        value: Any,
        at: datetime = T0,
        metric_key: str = PAIN,
        patient_id: str = PATIENT,
        enrollment_id: str | None = None,
    ) -> Observation:
        parsed = TextValue(value=value) if isinstance(value, str) else NumericValue(value=value)
        observation = Observation(
            id=f"obs-{next(counter)}",
            patient_id=patient_id,
            organization_id=ORG,
            enrollment_id=enrollment_id,
            metric_key=metric_key,
            value=parsed,
            recorded_at=at,
        )
        return observation_store.record(observation)

    return _observe


def make_rule(
    rule_id: str,
    threshold: Any = 7,
    operator: str = "gt",
    severity: Severity = Severity.HIGH,
    metric_key: str = PAIN,
    preset_id: str | None = None,
    **kwargs: Any,
) -> AlertRule:
    scope = (
        ConditionPresetScope(condition_preset_id=preset_id)
        if preset_id
        else OrganizationScope(organization_id=ORG)
    )
    return AlertRule(
        id=rule_id,
        name=kwargs.pop("name", f"Rule {rule_id}"),
        scope=scope,
        metric_key=metric_key,
        operator=operator,
        threshold=threshold,
        severity=severity,
        **kwargs,
    )


@pytest.fixture
def rule_factory() -> Callable[..., AlertRule]:
    return make_rule
