"""
Alert Deduplicator & Lifecycle Manager.

State machine per (patient, rule):

    TRIGGERED --acknowledge--> ACKNOWLEDGED --resolve--> RESOLVED
    TRIGGERED ---------------------------------resolve--> RESOLVED

A violation while an alert is open updates that alert instead of creating a
second one. RESOLVED is terminal; the next violation opens a fresh alert.
This is the only component that writes to the data store.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from alert_engine.config import LifecycleConfig
from alert_engine.domain.models import (
    Alert,
    AlertStatus,
    EvaluationContext,
    Observation,
    Operator,
    RiskAssessment,
    RuleViolation,
    Severity,
)
from alert_engine.errors import InvalidTransitionError, NotFoundError
from alert_engine.services.locks import PatientLockRegistry
from alert_engine.services.rule_matcher import RuleMatcher
from alert_engine.services.stores import AlertStore, guarded

logger = structlog.get_logger(__name__)

AUTO_RESOLVE_NOTE = "Auto-resolved: metric returned within normal range"
STALE_RESOLVE_NOTE = "Auto-resolved: no new violations within the stale period"


def build_message(violation: RuleViolation, context: EvaluationContext) -> str:
    rule = violation.rule
    metric = context.metric
    name = metric.display_name if metric else rule.metric_key
    unit = metric.unit if metric else ""
    headline = rule.description or rule.name

    if rule.operator.is_delta:
        direction = "rose" if rule.operator is Operator.INCREASE else "fell"
        return f"{headline}: {name} {direction} by {abs(violation.trigger_value)}{unit}"
    message = f"{headline}: {name} is {violation.trigger_value}{unit}"
    if rule.is_windowed:
        message += f" ({violation.occurrences} of {violation.window_size} readings in window)"
    return message


class AlertLifecycleManager:
    def __init__(
        self,
        store: AlertStore,
        policy: LifecycleConfig | None = None,
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] | None = None,
        locks: PatientLockRegistry | None = None,
    ) -> None:
        self.store = store
        self.locks = locks or PatientLockRegistry()
        self.policy = policy or LifecycleConfig()
        self.timeout_seconds = timeout_seconds
        self.clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger.bind(component="alert_lifecycle")

    async def reconcile(
        self,
        violation: RuleViolation,
        assessment: RiskAssessment,
        context: EvaluationContext,
    ) -> Alert:
        """
        Create a TRIGGERED alert or fold the violation into the open one.

        Re-running with a violation already recorded on the open alert returns
        it unchanged, so retries converge.
        """
        patient_id = context.patient.id
        rule_id = violation.rule.id
        message = build_message(violation, context)

        existing = await guarded(
            "find_open_alert", self.store.find_open(patient_id, rule_id), self.timeout_seconds
        )
        if existing is not None:
            if violation.observation_id in existing.observation_ids:
                self.logger.info(
                    "alert_reconcile_replayed", alert_id=existing.id, rule_id=rule_id
                )
                return existing
            return await self._fold(existing, violation, assessment, message)

        now = self.clock()
        enrollment = context.primary_enrollment
        alert = Alert(
            id=str(uuid.uuid4()),
            organization_id=context.patient.organization_id,
            patient_id=patient_id,
            rule_id=rule_id,
            enrollment_id=enrollment.id if enrollment else None,
            severity=assessment.severity,
            risk_score=assessment.risk_score,
            message=message,
            message_history=[message],
            status=AlertStatus.TRIGGERED,
            triggered_at=now,
            last_triggered_at=now,
            sla_breach_at=self.policy.sla_breach_at(now, assessment.severity),
            observation_ids=[violation.observation_id],
        )
        created = await guarded("create_alert", self.store.create(alert), self.timeout_seconds)
        self.logger.info(
            "alert_triggered",
            alert_id=created.id,
            patient_id=patient_id,
            rule_id=rule_id,
            severity=created.severity.value,
            risk_score=created.risk_score,
        )
        return created

    async def _fold(
        self,
        existing: Alert,
        violation: RuleViolation,
        assessment: RiskAssessment,
        message: str,
    ) -> Alert:
        severity = Severity.highest(existing.severity, assessment.severity)
        sla_breach_at = self.policy.sla_breach_at(existing.triggered_at, severity)
        if existing.sla_breach_at is not None:
            sla_breach_at = min(existing.sla_breach_at, sla_breach_at)

        history = [*existing.message_history, message][-self.policy.message_history_limit :]
        updated = existing.model_copy(
            update={
                "severity": severity,
                "risk_score": max(existing.risk_score, assessment.risk_score),
                "message": message,
                "message_history": history,
                "last_triggered_at": self.clock(),
                "sla_breach_at": sla_breach_at,
                "observation_ids": [*existing.observation_ids, violation.observation_id],
                "occurrence_count": existing.occurrence_count + 1,
            }
        )
        saved = await guarded("update_alert", self.store.update(updated), self.timeout_seconds)
        self.logger.info(
            "alert_updated",
            alert_id=saved.id,
            rule_id=saved.rule_id,
            severity=saved.severity.value,
            risk_score=saved.risk_score,
            occurrence_count=saved.occurrence_count,
        )
        return saved

    async def acknowledge(self, alert_id: str, acknowledged_by: str) -> Alert:
        """Clinician acknowledgement: TRIGGERED -> ACKNOWLEDGED."""
        patient_id = (await self._get(alert_id)).patient_id
        async with self.locks.hold(patient_id):
            alert = await self._get(alert_id)
            if alert.status is not AlertStatus.TRIGGERED:
                raise InvalidTransitionError(
                    f"alert {alert_id} cannot be acknowledged from {alert.status.value}"
                )
            updated = alert.model_copy(
                update={
                    "status": AlertStatus.ACKNOWLEDGED,
                    "acknowledged_at": self.clock(),
                    "acknowledged_by": acknowledged_by,
                }
            )
            saved = await guarded("update_alert", self.store.update(updated), self.timeout_seconds)
        self.logger.info("alert_acknowledged", alert_id=alert_id, acknowledged_by=acknowledged_by)
        return saved

    async def resolve(self, alert_id: str, note: str | None = None) -> Alert:
        patient_id = (await self._get(alert_id)).patient_id
        async with self.locks.hold(patient_id):
            return await self._resolve(await self._get(alert_id), note)

    async def auto_resolve(
        self,
        observation: Observation,
        context: EvaluationContext,
        matcher: RuleMatcher,
        fired_rule_ids: set[str],
    ) -> list[Alert]:
        """Resolve open alerts whose rule the new reading no longer crosses."""
        if not self.policy.auto_resolve_on_normal:
            return []

        resolved: list[Alert] = []
        for rule in matcher.candidate_rules(observation, context):
            if rule.id in fired_rule_ids or not matcher.is_within_normal(rule, observation):
                continue
            alert = await guarded(
                "find_open_alert",
                self.store.find_open(context.patient.id, rule.id),
                self.timeout_seconds,
            )
            if alert is not None:
                resolved.append(await self._resolve(alert, AUTO_RESOLVE_NOTE))
        return resolved

    async def expire_stale(self, now: datetime | None = None) -> list[Alert]:
        """Resolve open alerts with no new violation for `stale_after_hours`."""
        if self.policy.stale_after_hours is None:
            return []
        cutoff = (now or self.clock()) - timedelta(hours=self.policy.stale_after_hours)
        open_alerts = await guarded("list_open_alerts", self.store.list_open(), self.timeout_seconds)

        expired = []
        for alert in open_alerts:
            if alert.last_triggered_at >= cutoff:
                continue
            async with self.locks.hold(alert.patient_id):
                current = await self._get(alert.id)
                if current.is_open and current.last_triggered_at < cutoff:
                    expired.append(await self._resolve(current, STALE_RESOLVE_NOTE))
        self.logger.info("stale_alerts_expired", count=len(expired))
        return expired

    async def _get(self, alert_id: str) -> Alert:
        alert = await guarded("get_alert", self.store.get(alert_id), self.timeout_seconds)
        if alert is None:
            raise NotFoundError(f"alert {alert_id} not found")
        return alert

    async def _resolve(self, alert: Alert, note: str | None) -> Alert:
        if not alert.is_open:
            raise InvalidTransitionError(f"alert {alert.id} is already resolved")
        updated = alert.model_copy(
            update={
                "status": AlertStatus.RESOLVED,
                "resolved_at": self.clock(),
                "resolution_note": note,
            }
        )
        saved = await guarded("update_alert", self.store.update(updated), self.timeout_seconds)
        self.logger.info("alert_resolved", alert_id=alert.id, rule_id=alert.rule_id, note=note)
        return saved
