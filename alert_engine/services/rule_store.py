"""
Rule Store Adapter: read-only access to active alert rules.

Candidate rules for an observation are the organization-wide rules of the
patient's organization plus the rules of every condition preset the patient
is enrolled under.
"""

import structlog

from alert_engine.domain.models import AlertRule
from alert_engine.services.stores import RuleReader, guarded

logger = structlog.get_logger(__name__)


class RuleStoreAdapter:
    def __init__(self, reader: RuleReader, timeout_seconds: float = 5.0) -> None:
        self.reader = reader
        self.timeout_seconds = timeout_seconds
        self.logger = logger.bind(component="rule_store")

    async def applicable_rules(
        self,
        organization_id: str,
        condition_preset_ids: set[str],
        metric_key: str,
    ) -> list[AlertRule]:
        """Active rules for the metric across both scopes, ordered by rule id."""
        organization_rules = await guarded(
            "list_rules_for_organization",
            self.reader.list_rules_for_organization(organization_id),
            self.timeout_seconds,
        )
        preset_rules: list[AlertRule] = []
        if condition_preset_ids:
            preset_rules = await guarded(
                "list_rules_for_presets",
                self.reader.list_rules_for_presets(sorted(condition_preset_ids)),
                self.timeout_seconds,
            )

        rules: dict[str, AlertRule] = {}
        for rule in [*organization_rules, *preset_rules]:
            if not rule.is_active or rule.metric_key != metric_key:
                continue
            # Readers may over-fetch; keep only rules whose scope really applies
            if not rule.applies_to(organization_id, condition_preset_ids):
                continue
            rules.setdefault(rule.id, rule)

        ordered = [rules[rule_id] for rule_id in sorted(rules)]
        self.logger.debug(
            "applicable_rules_loaded",
            organization_id=organization_id,
            metric_key=metric_key,
            rule_count=len(ordered),
        )
        return ordered
