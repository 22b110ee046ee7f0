"""
Rule Matcher: evaluates one observation against every applicable rule.

Instantaneous rules compare the current value directly. Windowed rules
aggregate over the prior readings in the context plus the current one:
comparison operators count qualifying readings, increase/decrease compare
the current reading with the earliest one in the window. A windowed rule
without enough history is skipped, never failed.
"""

from collections.abc import Iterator
from typing import Any

import structlog

from alert_engine.domain.models import (
    AlertRule,
    EvaluationContext,
    Observation,
    ObservationValue,
    Operator,
    RuleViolation,
    Threshold,
)
from alert_engine.errors import InsufficientWindow
from alert_engine.services.stores import Result

logger = structlog.get_logger(__name__)


def _equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if isinstance(left, int | float) and isinstance(right, int | float):
        return float(left) == float(right)
    return left == right or str(left) == str(right)


def compare(operator: Operator, value: ObservationValue, threshold: Threshold) -> bool:
    """Apply a comparison operator to a single observation value."""
    if operator.is_numeric:
        number = value.as_number()
        if number is None:
            return False
        limit = float(threshold)  # type: ignore[arg-type]
        match operator:
            case Operator.GT:
                return number > limit
            case Operator.GTE:
                return number >= limit
            case Operator.LT:
                return number < limit
            case Operator.LTE:
                return number <= limit

    comparable = value.as_comparable()
    if comparable is None:
        return False
    match operator:
        case Operator.EQ:
            return _equals(comparable, threshold)
        case Operator.NEQ:
            return not _equals(comparable, threshold)
        case Operator.IN:
            return any(_equals(comparable, option) for option in threshold)  # type: ignore[union-attr]
    raise ValueError(f"operator {operator.value} is not a single-value comparison")


class RuleMatcher:
    """Produces rule violations for an observation; no short-circuit on first match."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="rule_matcher")

    def candidate_rules(self, observation: Observation, context: EvaluationContext) -> list[AlertRule]:
        rules = {
            rule.id: rule
            for rule in context.rules
            if rule.is_active
            and rule.metric_key == observation.metric_key
            and rule.applies_to(context.patient.organization_id, context.condition_preset_ids)
        }
        return [rules[rule_id] for rule_id in sorted(rules)]

    def match(self, observation: Observation, context: EvaluationContext) -> Iterator[RuleViolation]:
        """Yield every violation, in rule-id order."""
        for rule in self.candidate_rules(observation, context):
            if rule.operator.is_delta:
                violation = self._match_delta(rule, observation, context)
            elif rule.is_windowed:
                violation = self._match_count(rule, observation, context)
            else:
                violation = self._match_instant(rule, observation)

            if violation is not None:
                self.logger.info(
                    "rule_violated",
                    rule_id=rule.id,
                    observation_id=observation.id,
                    trigger_value=violation.trigger_value,
                    occurrences=violation.occurrences,
                )
                yield violation

    def is_within_normal(self, rule: AlertRule, observation: Observation) -> bool:
        """True when the current reading alone does not cross the rule."""
        if rule.operator.is_delta:
            return False
        value = observation.value
        if rule.operator.is_numeric and value.as_number() is None:
            return False
        if value.as_comparable() is None:
            return False
        return not compare(rule.operator, value, rule.threshold)

    def _match_instant(self, rule: AlertRule, observation: Observation) -> RuleViolation | None:
        if not compare(rule.operator, observation.value, rule.threshold):
            return None
        return RuleViolation(
            rule=rule,
            observation_id=observation.id,
            trigger_value=_trigger_value(observation),
            threshold=rule.threshold,
        )

    def _match_count(
        self, rule: AlertRule, observation: Observation, context: EvaluationContext
    ) -> RuleViolation | None:
        readings = self._window_for(rule, observation, context)
        if readings.is_err():
            self._log_skip(readings.unwrap_err())
            return None
        window = readings.unwrap()

        if not compare(rule.operator, observation.value, rule.threshold):
            return None
        qualifying = sum(1 for o in window if compare(rule.operator, o.value, rule.threshold))
        if qualifying < rule.min_occurrences:
            return None
        return RuleViolation(
            rule=rule,
            observation_id=observation.id,
            trigger_value=_trigger_value(observation),
            threshold=rule.threshold,
            occurrences=qualifying,
            window_size=len(window),
        )

    def _match_delta(
        self, rule: AlertRule, observation: Observation, context: EvaluationContext
    ) -> RuleViolation | None:
        current = observation.value.as_number()
        if current is None:
            return None
        readings = self._window_for(rule, observation, context, numeric_only=True)
        if readings.is_err():
            self._log_skip(readings.unwrap_err())
            return None
        window = readings.unwrap()

        earliest = window[0].value.as_number()
        if earliest is None:
            return None
        limit = float(rule.threshold)  # type: ignore[arg-type]

        def crosses(delta: float) -> bool:
            if rule.operator is Operator.INCREASE:
                return delta >= limit
            return delta <= -limit

        delta = current - earliest
        if not crosses(delta):
            return None
        occurrences = sum(
            1 for o in window[1:] if crosses(o.value.as_number() - earliest)  # type: ignore[operator]
        )
        return RuleViolation(
            rule=rule,
            observation_id=observation.id,
            trigger_value=round(delta, 4),
            threshold=rule.threshold,
            occurrences=max(occurrences, 1),
            window_size=len(window),
        )

    def _window_for(
        self,
        rule: AlertRule,
        observation: Observation,
        context: EvaluationContext,
        numeric_only: bool = False,
    ) -> Result[list[Observation], InsufficientWindow]:
        """Readings inside the rule's window, current observation last."""
        if rule.window is None:
            return Result.ok([observation])
        start = observation.recorded_at - rule.window
        window = [
            o
            for o in context.window
            if o.id != observation.id
            and o.metric_key == observation.metric_key
            and start <= o.recorded_at <= observation.recorded_at
            and (not numeric_only or o.value.as_number() is not None)
        ]
        window.append(observation)
        if len(window) < rule.required_observations:
            return Result.err(InsufficientWindow(rule.id, rule.required_observations, len(window)))
        return Result.ok(window)

    def _log_skip(self, skip: InsufficientWindow) -> None:
        self.logger.debug(
            "rule_skipped_insufficient_window",
            rule_id=skip.rule_id,
            required=skip.required,
            available=skip.available,
        )


def _trigger_value(observation: Observation) -> Any:
    number = observation.value.as_number()
    return number if number is not None else observation.value.as_comparable()
