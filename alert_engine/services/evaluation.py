"""
Evaluation Orchestrator: the public entry point of the alert engine.

Pipeline per observation:
1. Resolve context (patient, active enrollments, presets, rules, history)
2. Match rules into violations
3. Score each violation
4. Reconcile each violation into a created or updated alert

The whole pipeline for one patient runs under that patient's lock, so the
open-alert lookup and the write it leads to cannot interleave with another
evaluation for the same patient. Different patients proceed in parallel.
"""

import asyncio
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

import structlog

from alert_engine.config import AppConfig, get_config
from alert_engine.domain.models import Alert, Observation
from alert_engine.errors import AlertEngineError, PersistenceError
from alert_engine.log import configure_logging
from alert_engine.services.context_resolver import ObservationContextResolver
from alert_engine.services.lifecycle import AlertLifecycleManager
from alert_engine.services.locks import PatientLockRegistry
from alert_engine.services.risk_scorer import RiskScorer
from alert_engine.services.rule_matcher import RuleMatcher
from alert_engine.services.rule_store import RuleStoreAdapter
from alert_engine.services.stores import (
    AlertStore,
    ObservationReader,
    PatientDirectory,
    Result,
    RuleReader,
)

logger = structlog.get_logger(__name__)


class AlertEvaluationService:
    """
    Orchestrates context resolution, matching, scoring and reconciliation.

    Design principles:
    - Stores injected as protocols (in-memory fakes in tests)
    - "No alert" is a normal outcome, not an error
    - One failed write does not stop the remaining violations
    """

    def __init__(
        self,
        resolver: ObservationContextResolver,
        matcher: RuleMatcher,
        scorer: RiskScorer,
        lifecycle: AlertLifecycleManager,
        locks: PatientLockRegistry | None = None,
        max_concurrent_evaluations: int = 10,
    ) -> None:
        self.resolver = resolver
        self.matcher = matcher
        self.scorer = scorer
        self.lifecycle = lifecycle
        self.locks = locks or lifecycle.locks
        self.max_concurrent_evaluations = max_concurrent_evaluations
        self.logger = logger.bind(component="alert_evaluation")

    async def evaluate(self, observation: Observation) -> list[Alert]:
        """
        Evaluate one observation and return the alerts it created or updated.

        Raises:
            NotFoundError: the observation's patient or active enrollment is unknown.
            PersistenceError: a store call failed; `alerts` holds what was persisted.
        """
        start_time = time.perf_counter()
        log = self.logger.bind(observation_id=observation.id, patient_id=observation.patient_id)

        async with self.locks.hold(observation.patient_id):
            context = await self.resolver.resolve(observation)

            alerts: list[Alert] = []
            fired_rule_ids: set[str] = set()
            failures: list[PersistenceError] = []
            for violation in self.matcher.match(observation, context):
                fired_rule_ids.add(violation.rule.id)
                assessment = self.scorer.score(violation, context)
                try:
                    alerts.append(await self.lifecycle.reconcile(violation, assessment, context))
                except PersistenceError as e:
                    log.error("alert_reconcile_failed", rule_id=violation.rule.id, error=str(e))
                    failures.append(e)

            if not failures:
                alerts.extend(
                    await self.lifecycle.auto_resolve(
                        observation, context, self.matcher, fired_rule_ids
                    )
                )

        if failures:
            raise PersistenceError(
                f"{len(failures)} of {len(fired_rule_ids)} alerts failed to persist: {failures[0]}",
                alerts=alerts,
            ) from failures[0]

        log.info(
            "observation_evaluated",
            violations=len(fired_rule_ids),
            alerts=len(alerts),
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )
        return alerts

    async def evaluate_many(
        self, observations: Iterable[Observation]
    ) -> list[Result[list[Alert], AlertEngineError]]:
        """
        Evaluate a burst of observations concurrently, one Result per input.

        Key pattern: TaskGroup for structured concurrency, a semaphore for
        backpressure. Failures are captured per observation so one bad record
        never cancels the rest of the batch.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_evaluations)

        async def _run(observation: Observation) -> Result[list[Alert], AlertEngineError]:
            async with semaphore:
                try:
                    return Result.ok(await self.evaluate(observation))
                except AlertEngineError as e:
                    self.logger.warning(
                        "observation_evaluation_failed",
                        observation_id=observation.id,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    return Result.err(e)

        async with asyncio.TaskGroup() as task_group:
            tasks = [task_group.create_task(_run(o)) for o in observations]

        results = [task.result() for task in tasks]
        self.logger.info(
            "batch_evaluated",
            total=len(results),
            failed=sum(1 for r in results if r.is_err()),
        )
        return results

    async def acknowledge(self, alert_id: str, acknowledged_by: str) -> Alert:
        return await self.lifecycle.acknowledge(alert_id, acknowledged_by)

    async def resolve(self, alert_id: str, note: str | None = None) -> Alert:
        return await self.lifecycle.resolve(alert_id, note)

    async def expire_stale(self) -> list[Alert]:
        return await self.lifecycle.expire_stale()


def build_evaluation_service(
    directory: PatientDirectory,
    rules: RuleReader,
    observations: ObservationReader,
    alerts: AlertStore,
    config: AppConfig | None = None,
    clock: Callable[[], datetime] | None = None,
    setup_logging: bool = False,
) -> AlertEvaluationService:
    """Wire the pipeline from configuration and injected stores."""
    config = config or get_config()
    if setup_logging:
        configure_logging(config.logging)

    timeout = config.store.operation_timeout_seconds
    locks = PatientLockRegistry()
    resolver = ObservationContextResolver(
        directory=directory,
        rule_store=RuleStoreAdapter(rules, timeout_seconds=timeout),
        observations=observations,
        timeout_seconds=timeout,
        max_window_observations=config.evaluation.max_window_observations,
        trend_lookback=(
            timedelta(days=config.scoring.trend_lookback_days)
            if config.scoring.trend_weight > 0
            else None
        ),
    )
    lifecycle = AlertLifecycleManager(
        store=alerts,
        policy=config.lifecycle,
        timeout_seconds=timeout,
        clock=clock,
        locks=locks,
    )
    return AlertEvaluationService(
        resolver=resolver,
        matcher=RuleMatcher(),
        scorer=RiskScorer(config.scoring),
        lifecycle=lifecycle,
        locks=locks,
        max_concurrent_evaluations=config.evaluation.max_concurrent_evaluations,
    )
