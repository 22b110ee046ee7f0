"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Clinician-driven resolution unless auto-resolution is switched on explicitly
"""

import os
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from alert_engine.domain.models import Severity

# Load environment variables from .env file
load_dotenv()


class StoreConfig(BaseModel):
    """Data store access settings."""

    operation_timeout_seconds: float = Field(
        default=5.0, gt=0.0, description="Timeout for each store read or write"
    )


class ScoringConfig(BaseModel):
    """Risk scoring policy."""

    escalation_occurrences: int = Field(
        default=2, ge=2, description="Repeated readings in a rule window that escalate one tier"
    )
    non_numeric_excess: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Excess ratio for non-numeric triggers"
    )
    trend_weight: float = Field(
        default=0.3, ge=0.0, le=1.0, description="Share of a tier band a worsening trend can add"
    )
    trend_lookback_days: float = Field(
        default=7.0, gt=0.0, description="History used to measure trend velocity"
    )


class LifecycleConfig(BaseModel):
    """Alert lifecycle policy."""

    auto_resolve_on_normal: bool = Field(
        default=False, description="Resolve open alerts when the metric returns to normal"
    )
    message_history_limit: int = Field(
        default=20, gt=0, description="Messages kept on an alert"
    )
    stale_after_hours: float | None = Field(
        default=None, gt=0.0, description="Resolve open alerts untouched for this long"
    )
    sla_minutes: dict[Severity, int] = Field(
        default_factory=lambda: {
            Severity.CRITICAL: 30,
            Severity.HIGH: 120,
            Severity.MEDIUM: 480,
            Severity.LOW: 1440,
        },
        description="Minutes from trigger to SLA breach per severity",
    )

    def sla_breach_at(self, triggered_at: datetime, severity: Severity) -> datetime:
        return triggered_at + timedelta(minutes=self.sla_minutes.get(severity, 480))


class EvaluationConfig(BaseModel):
    """Evaluation throughput settings."""

    max_concurrent_evaluations: int = Field(
        default=10, gt=0, description="Observations evaluated in parallel by evaluate_many"
    )
    max_window_observations: int = Field(
        default=500, gt=0, description="Cap on history loaded for windowed rules"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    store: StoreConfig = Field(default_factory=StoreConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    def _parse_optional_float(val: str | None) -> float | None:
        if val is None or not val.strip():
            return None
        return float(val)

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    store_config = StoreConfig(
        operation_timeout_seconds=float(os.getenv("ALERT_STORE_TIMEOUT_SECONDS", "5.0")),
    )

    scoring_config = ScoringConfig(
        escalation_occurrences=int(os.getenv("ALERT_ESCALATION_OCCURRENCES", "2")),
    )

    lifecycle_config = LifecycleConfig(
        auto_resolve_on_normal=_parse_bool(os.getenv("ALERT_AUTO_RESOLVE"), False),
        stale_after_hours=_parse_optional_float(os.getenv("ALERT_STALE_AFTER_HOURS")),
    )

    evaluation_config = EvaluationConfig(
        max_concurrent_evaluations=int(os.getenv("ALERT_MAX_CONCURRENT_EVALUATIONS", "10")),
        max_window_observations=int(os.getenv("ALERT_MAX_WINDOW_OBSERVATIONS", "500")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        store=store_config,
        scoring=scoring_config,
        lifecycle=lifecycle_config,
        evaluation=evaluation_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()
