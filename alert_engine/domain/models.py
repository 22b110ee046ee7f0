"""
Domain models for clinical observation alerting.

These models represent the core business concepts and are framework-agnostic.
Observations and rules are read-only facts owned by the data store; alerts are
the only records the engine creates or mutates.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator


class Severity(str, Enum):
    """Alert severity tiers, ascending clinical urgency."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def escalated(self, steps: int = 1) -> "Severity":
        """Move up the ladder, never past CRITICAL."""
        return _SEVERITY_ORDER[min(self.rank + max(steps, 0), len(_SEVERITY_ORDER) - 1)]

    @classmethod
    def highest(cls, *tiers: "Severity") -> "Severity":
        return max(tiers, key=lambda tier: tier.rank)


_SEVERITY_ORDER: list[Severity] = [
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
]


class AlertStatus(str, Enum):
    TRIGGERED = "triggered"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"

    @property
    def is_open(self) -> bool:
        return self is not AlertStatus.RESOLVED


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"


class Operator(str, Enum):
    """Comparison operators an alert rule can apply."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"
    IN = "in"
    # Delta between the earliest reading in the window and the current one
    INCREASE = "increase"
    DECREASE = "decrease"

    @property
    def is_numeric(self) -> bool:
        return self in {Operator.GT, Operator.GTE, Operator.LT, Operator.LTE}

    @property
    def is_delta(self) -> bool:
        return self in {Operator.INCREASE, Operator.DECREASE}


class ValueRange(BaseModel):
    """Expected value range for a metric, used to normalize excess."""

    model_config = ConfigDict(frozen=True)

    min: float
    max: float

    @model_validator(mode="after")
    def max_above_min(self) -> "ValueRange":
        if self.max <= self.min:
            raise ValueError("range max must be greater than min")
        return self

    @property
    def span(self) -> float:
        return self.max - self.min

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


# Observation values: a tagged union resolved once at ingestion


class NumericValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    value: float

    def as_number(self) -> float | None:
        return self.value

    def as_comparable(self) -> Any:
        return self.value


class TextValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    value: str

    def as_number(self) -> float | None:
        return None

    def as_comparable(self) -> Any:
        return self.value


class BooleanValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["boolean"] = "boolean"
    value: bool

    def as_number(self) -> float | None:
        return None

    def as_comparable(self) -> Any:
        return self.value


class StructuredValue(BaseModel):
    """Questionnaire-style payloads; ingestion extracts `numeric` or `code` when present."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["structured"] = "structured"
    value: dict[str, Any] = Field(default_factory=dict)
    numeric: float | None = None
    code: str | None = None

    def as_number(self) -> float | None:
        return self.numeric

    def as_comparable(self) -> Any:
        if self.numeric is not None:
            return self.numeric
        return self.code


ObservationValue = Annotated[
    NumericValue | TextValue | BooleanValue | StructuredValue,
    Field(discriminator="kind"),
]


class Observation(BaseModel):
    """A single recorded clinical measurement. Immutable once ingested."""

    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    organization_id: str
    enrollment_id: str | None = None
    metric_key: str
    value: ObservationValue
    recorded_at: AwareDatetime = Field(default_factory=lambda: datetime.now(UTC))


# Rule scoping: organization-wide or condition-preset-specific


class OrganizationScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: Literal["organization"] = "organization"
    organization_id: str


class ConditionPresetScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: Literal["condition_preset"] = "condition_preset"
    condition_preset_id: str


RuleScope = Annotated[OrganizationScope | ConditionPresetScope, Field(discriminator="level")]

Threshold = float | bool | str | list[float | bool | str]


class AlertRule(BaseModel):
    """Configured condition that raises an alert when an observation meets it."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str | None = None
    scope: RuleScope
    metric_key: str
    operator: Operator
    threshold: Threshold
    window: timedelta | None = Field(
        default=None, description="Look-back span for windowed evaluation"
    )
    min_occurrences: int = Field(
        default=1, ge=1, description="Qualifying readings required inside the window"
    )
    severity: Severity
    is_active: bool = True
    expected_range: ValueRange | None = None

    @model_validator(mode="after")
    def operator_matches_threshold(self) -> "AlertRule":
        numeric_threshold = isinstance(self.threshold, int | float) and not isinstance(
            self.threshold, bool
        )
        if (self.operator.is_numeric or self.operator.is_delta) and not numeric_threshold:
            raise ValueError(f"operator {self.operator.value} requires a numeric threshold")
        if self.operator is Operator.IN and not isinstance(self.threshold, list):
            raise ValueError("operator in requires a list threshold")
        if self.operator.is_delta and self.window is None:
            raise ValueError(f"operator {self.operator.value} requires a window")
        if self.operator.is_delta and self.threshold < 0:  # type: ignore[operator]
            raise ValueError("delta threshold must be non-negative")
        if self.min_occurrences > 1 and self.window is None:
            raise ValueError("min_occurrences above 1 requires a window")
        if self.window is not None and self.window <= timedelta(0):
            raise ValueError("window must be a positive duration")
        return self

    @property
    def is_windowed(self) -> bool:
        return self.window is not None

    @property
    def required_observations(self) -> int:
        """Readings needed inside the window (current one included) to evaluate."""
        if self.window is None:
            return 1
        return max(self.min_occurrences, 2)

    def applies_to(self, organization_id: str, condition_preset_ids: set[str]) -> bool:
        match self.scope:
            case OrganizationScope(organization_id=scope_org):
                return scope_org == organization_id
            case ConditionPresetScope(condition_preset_id=preset_id):
                return preset_id in condition_preset_ids
        return False


class MetricDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    display_name: str
    unit: str = ""
    normal_range: ValueRange | None = None


class Patient(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str


class ConditionPreset(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class Enrollment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    organization_id: str
    condition_preset_id: str | None = None
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    started_at: AwareDatetime
    ended_at: AwareDatetime | None = None

    def is_active_at(self, moment: datetime) -> bool:
        if self.status is not EnrollmentStatus.ACTIVE:
            return False
        if self.started_at > moment:
            return False
        return self.ended_at is None or self.ended_at > moment


class EvaluationContext(BaseModel):
    """Everything one evaluation needs, built fresh per observation."""

    model_config = ConfigDict(frozen=True)

    observation: Observation
    patient: Patient
    enrollments: list[Enrollment]
    condition_presets: list[ConditionPreset]
    metric: MetricDefinition | None = None
    rules: list[AlertRule] = Field(default_factory=list)
    window: list[Observation] = Field(
        default_factory=list, description="Prior readings for the metric, oldest first"
    )

    @property
    def condition_preset_ids(self) -> set[str]:
        enrolled = {e.condition_preset_id for e in self.enrollments if e.condition_preset_id}
        return enrolled | {preset.id for preset in self.condition_presets}

    @property
    def primary_enrollment(self) -> Enrollment | None:
        return self.enrollments[0] if self.enrollments else None


class RuleViolation(BaseModel):
    """One observation satisfying one rule. Never persisted."""

    model_config = ConfigDict(frozen=True)

    rule: AlertRule
    observation_id: str
    trigger_value: Any
    threshold: Threshold
    occurrences: int = Field(default=1, ge=1)
    window_size: int = Field(default=1, ge=1)


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_score: float = Field(ge=0.0, le=100.0)
    severity: Severity
    escalated: bool = False


class Alert(BaseModel):
    """Persisted, lifecycle-tracked notification for clinical staff."""

    id: str
    organization_id: str
    patient_id: str
    rule_id: str
    enrollment_id: str | None = None
    severity: Severity
    risk_score: float = Field(ge=0.0, le=100.0)
    message: str
    message_history: list[str] = Field(default_factory=list)
    status: AlertStatus = AlertStatus.TRIGGERED
    triggered_at: AwareDatetime
    last_triggered_at: AwareDatetime
    acknowledged_at: AwareDatetime | None = None
    acknowledged_by: str | None = None
    resolved_at: AwareDatetime | None = None
    resolution_note: str | None = None
    sla_breach_at: AwareDatetime | None = None
    observation_ids: list[str] = Field(default_factory=list)
    occurrence_count: int = Field(default=1, ge=1)

    @property
    def is_open(self) -> bool:
        return self.status.is_open
