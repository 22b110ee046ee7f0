"""
Observation Context Resolver.

Loads the owning patient, the enrollments active when the observation was
recorded, their condition presets, the candidate rules, and the single bounded
history window needed by windowed rules and trend scoring. Read-only.
"""

from datetime import timedelta

import structlog

from alert_engine.domain.models import EvaluationContext, Observation
from alert_engine.errors import NotFoundError
from alert_engine.services.rule_store import RuleStoreAdapter
from alert_engine.services.stores import ObservationReader, PatientDirectory, guarded

logger = structlog.get_logger(__name__)


class ObservationContextResolver:
    def __init__(
        self,
        directory: PatientDirectory,
        rule_store: RuleStoreAdapter,
        observations: ObservationReader,
        timeout_seconds: float = 5.0,
        max_window_observations: int = 500,
        trend_lookback: timedelta | None = None,
    ) -> None:
        self.directory = directory
        self.rule_store = rule_store
        self.observations = observations
        self.timeout_seconds = timeout_seconds
        self.max_window_observations = max_window_observations
        self.trend_lookback = trend_lookback
        self.logger = logger.bind(component="context_resolver")

    async def resolve(self, observation: Observation) -> EvaluationContext:
        """
        Build the evaluation context for one observation.

        Raises:
            NotFoundError: unknown patient, or no enrollment active at recorded_at
                (or the referenced enrollment is not one of them).
            PersistenceError: a store read failed or timed out.
        """
        log = self.logger.bind(observation_id=observation.id, patient_id=observation.patient_id)

        patient = await guarded(
            "get_patient",
            self.directory.get_patient(observation.patient_id),
            self.timeout_seconds,
        )
        if patient is None:
            log.warning("patient_not_found")
            raise NotFoundError(f"patient {observation.patient_id} not found")

        enrollments = await guarded(
            "list_enrollments",
            self.directory.list_enrollments(patient.id),
            self.timeout_seconds,
        )
        active = [e for e in enrollments if e.is_active_at(observation.recorded_at)]
        if observation.enrollment_id is not None:
            active = [e for e in active if e.id == observation.enrollment_id]
        if not active:
            log.warning("active_enrollment_not_found", enrollment_id=observation.enrollment_id)
            raise NotFoundError(
                f"no active enrollment for patient {patient.id} at {observation.recorded_at}"
            )
        active.sort(key=lambda e: (e.started_at, e.id))

        preset_ids = sorted({e.condition_preset_id for e in active if e.condition_preset_id})
        presets = []
        if preset_ids:
            presets = await guarded(
                "get_condition_presets",
                self.directory.get_condition_presets(preset_ids),
                self.timeout_seconds,
            )

        metric = await guarded(
            "get_metric_definition",
            self.directory.get_metric_definition(observation.metric_key),
            self.timeout_seconds,
        )
        if metric is None:
            log.info("metric_definition_missing", metric_key=observation.metric_key)

        rules = await self.rule_store.applicable_rules(
            patient.organization_id, set(preset_ids), observation.metric_key
        )

        # One query sized by the widest window among the candidate rules,
        # or the trend look-back when anything could fire
        spans = [r.window for r in rules if r.window is not None]
        if rules and self.trend_lookback is not None:
            spans.append(self.trend_lookback)
        window = []
        if spans:
            window = await self._load_window(observation, max(spans))

        log.debug(
            "context_resolved",
            enrollments=len(active),
            presets=len(presets),
            rules=len(rules),
            window_size=len(window),
        )
        return EvaluationContext(
            observation=observation,
            patient=patient,
            enrollments=active,
            condition_presets=presets,
            metric=metric,
            rules=rules,
            window=window,
        )

    async def _load_window(self, observation: Observation, span: timedelta) -> list[Observation]:
        history = await guarded(
            "list_observations",
            self.observations.list_observations(
                patient_id=observation.patient_id,
                metric_key=observation.metric_key,
                since=observation.recorded_at - span,
                until=observation.recorded_at,
                limit=self.max_window_observations + 1,
            ),
            self.timeout_seconds,
        )
        prior = [o for o in history if o.id != observation.id]
        prior.sort(key=lambda o: o.recorded_at)
        return prior[-self.max_window_observations :]
