"""
Risk Scorer: turns a rule violation into a 0-100 risk score and a severity tier.

Each tier owns a quarter of the scale (LOW 0-25, MEDIUM 25-50, HIGH 50-75,
CRITICAL 75-100). Two signals position the score inside its tier:

- excess: how far the violation lies past its threshold, normalized to the
  expected value range
- trend velocity: how consistently recent readings have been worsening,
  mapped to 0-10 and weighted by `trend_weight`

Their sum is capped at the top of the band. The rule's tier is a floor; a
windowed rule that fired on repeated readings moves up one tier, never past
CRITICAL.
"""

from datetime import timedelta

import structlog

from alert_engine.config import ScoringConfig
from alert_engine.domain.models import (
    EvaluationContext,
    Operator,
    RiskAssessment,
    RuleViolation,
)

logger = structlog.get_logger(__name__)

BAND_WIDTH = 25.0

MIN_TREND_READINGS = 3
# Share of worsening transitions -> velocity on a 0-10 scale
TREND_VELOCITY_STEPS = ((0.8, 10.0), (0.6, 7.0), (0.4, 5.0))
MINIMAL_TREND_VELOCITY = 2.0

_FALLING_OPERATORS = {Operator.LT, Operator.LTE, Operator.DECREASE}


class RiskScorer:
    def __init__(self, policy: ScoringConfig | None = None) -> None:
        self.policy = policy or ScoringConfig()
        self.logger = logger.bind(component="risk_scorer")

    def score(self, violation: RuleViolation, context: EvaluationContext) -> RiskAssessment:
        rule = violation.rule
        escalated = (
            rule.is_windowed and violation.occurrences >= self.policy.escalation_occurrences
        )
        severity = rule.severity.escalated() if escalated else rule.severity

        excess = self.excess_ratio(violation, context)
        velocity = self.trend_velocity(violation, context)
        position = min(1.0, excess + self.policy.trend_weight * velocity / 10.0)
        raw = severity.rank * BAND_WIDTH + BAND_WIDTH * position
        risk_score = round(max(0.0, min(100.0, raw)), 2)

        self.logger.debug(
            "violation_scored",
            rule_id=rule.id,
            severity=severity.value,
            risk_score=risk_score,
            excess=round(excess, 4),
            trend_velocity=velocity,
            escalated=escalated,
        )
        return RiskAssessment(risk_score=risk_score, severity=severity, escalated=escalated)

    def excess_ratio(self, violation: RuleViolation, context: EvaluationContext) -> float:
        """How far past the threshold the trigger value lies, in [0, 1]."""
        rule = violation.rule
        trigger = violation.trigger_value
        threshold = violation.threshold
        if not _is_number(trigger) or not _is_number(threshold):
            return self.policy.non_numeric_excess

        if rule.operator.is_delta:
            distance = abs(float(trigger)) - float(threshold)
        else:
            distance = abs(float(trigger) - float(threshold))

        if rule.expected_range is not None:
            span = rule.expected_range.span
        elif context.metric is not None and context.metric.normal_range is not None:
            span = context.metric.normal_range.span
        else:
            span = max(abs(float(threshold)), 1.0)

        return max(0.0, min(1.0, distance / span))

    def trend_velocity(self, violation: RuleViolation, context: EvaluationContext) -> float:
        """
        Worsening-trend score in [0, 10] over the look-back period.

        Counts consecutive transitions that move in the rule's direction of
        concern (rising for upper-bound rules, falling for lower-bound ones).
        Fewer than three numeric readings means no measurable trend.
        """
        observation = context.observation
        start = observation.recorded_at - timedelta(days=self.policy.trend_lookback_days)
        values = [
            o.value.as_number()
            for o in context.window
            if o.id != observation.id
            and o.metric_key == observation.metric_key
            and start <= o.recorded_at <= observation.recorded_at
        ]
        values.append(observation.value.as_number())
        readings = [v for v in values if v is not None]
        if len(readings) < MIN_TREND_READINGS:
            return 0.0

        falling = violation.rule.operator in _FALLING_OPERATORS
        worsening = sum(
            1
            for previous, current in zip(readings, readings[1:])
            if (current < previous if falling else current > previous)
        )
        share = worsening / (len(readings) - 1)
        for floor, velocity in TREND_VELOCITY_STEPS:
            if share > floor:
                return velocity
        return MINIMAL_TREND_VELOCITY


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)
