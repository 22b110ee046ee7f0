"""
Core services for the alert engine.

This package contains the evaluation pipeline: context resolution, rule
matching, risk scoring, alert lifecycle management and the orchestrator
that wires them together.
"""

from .context_resolver import ObservationContextResolver
from .evaluation import AlertEvaluationService, build_evaluation_service
from .lifecycle import AlertLifecycleManager
from .locks import PatientLockRegistry
from .risk_scorer import RiskScorer
from .rule_matcher import RuleMatcher
from .rule_store import RuleStoreAdapter
from .stores import (
    AlertStore,
    ObservationReader,
    PatientDirectory,
    Result,
    RuleReader,
)

__all__ = [
    "AlertEvaluationService",
    "AlertLifecycleManager",
    "AlertStore",
    "ObservationContextResolver",
    "ObservationReader",
    "PatientDirectory",
    "PatientLockRegistry",
    "Result",
    "RiskScorer",
    "RuleMatcher",
    "RuleReader",
    "RuleStoreAdapter",
    "build_evaluation_service",
]
