"""
Deterministic experiment assignment.

Hashes (user_id, experiment_id) to a stable point in [0, 1) and maps it onto
the variant ranges frozen when the experiment started. Audience rules,
cultural segments and accessibility needs gate eligibility first.
"""

import hashlib
import logging
from numbers import Number
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .events import EventChannel, EventType
from .schema import (
    AllocationRange,
    Assignment,
    AudienceRule,
    ExperimentConfig,
    ExperimentStatus,
    RuleOperator,
    utcnow,
)
from .store import ExperimentStore

logger = logging.getLogger(__name__)

HASH_BUCKETS = 10000
CULTURE_FIELD = "cultural_background"
ACCESSIBILITY_FIELD = "accessibility_needs"
OTHER_CULTURE = "other"


def hash_to_unit(user_id: str, experiment_id: str) -> float:
    """
    Deterministic hash to [0, 1).

    Same user + experiment_id always maps to the same point.
    """
    key = f"{user_id}:{experiment_id}"
    h = hashlib.sha256(key.encode()).hexdigest()
    return (int(h[:8], 16) % HASH_BUCKETS) / HASH_BUCKETS


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def evaluate_rule(rule: AudienceRule, context: Dict[str, Any]) -> bool:
    """Evaluate one rule against the participant context. Unknown operators never match."""
    try:
        operator = RuleOperator(rule.operator)
    except ValueError:
        return False

    actual = context.get(rule.field)
    expected = rule.value

    if operator == RuleOperator.EQUALS:
        return actual == expected
    if operator in (RuleOperator.IN, RuleOperator.NOT_IN):
        if not isinstance(expected, (list, tuple, set, frozenset)):
            expected = [expected]
        found = actual in expected
        return found if operator == RuleOperator.IN else not found
    if operator == RuleOperator.CONTAINS:
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        if isinstance(actual, (list, tuple, set, frozenset)):
            return expected in actual
        return False
    if operator in (RuleOperator.GREATER_THAN, RuleOperator.LESS_THAN):
        if not (_is_number(actual) and _is_number(expected)):
            return False
        return actual > expected if operator == RuleOperator.GREATER_THAN else actual < expected
    return False


def matches_all(rules: Iterable[AudienceRule], context: Dict[str, Any]) -> bool:
    return all(evaluate_rule(rule, context) for rule in rules)


def in_target_audience(config: ExperimentConfig, context: Dict[str, Any]) -> bool:
    audience = config.target_audience
    if not matches_all(audience.include_rules, context):
        return False
    return not any(evaluate_rule(rule, context) for rule in audience.exclude_rules)


def resolve_segment(config: ExperimentConfig, context: Dict[str, Any]) -> Optional[str]:
    """
    Cultural segment the participant counts towards.

    With segments configured this is the id of the segment whose culture
    matches (falling back to an "other" segment), or None when no segment
    accepts the participant. Without segments it is the raw background.
    """
    background = context.get(CULTURE_FIELD)
    if not config.cultural_segments:
        return str(background) if background is not None else None

    fallback = None
    for segment in config.cultural_segments:
        if background is not None and segment.culture == background:
            return segment.segment_id
        if segment.culture == OTHER_CULTURE and fallback is None:
            fallback = segment.segment_id
    return fallback


def _accessibility_needs(context: Dict[str, Any]) -> List[str]:
    needs = context.get(ACCESSIBILITY_FIELD) or []
    if isinstance(needs, str):
        return [needs]
    return list(needs)


def meets_accessibility(config: ExperimentConfig, context: Dict[str, Any]) -> bool:
    if not config.accessibility_considerations:
        return True
    needs = _accessibility_needs(context)
    if not needs:
        return True
    supported = {c.type for c in config.accessibility_considerations}
    return any(need in supported for need in needs)


def build_allocation_ranges(config: ExperimentConfig) -> Tuple[AllocationRange, ...]:
    """Cumulative hash ranges in declared allocation order."""
    ranges = []
    cumulative = 0.0
    for alloc in config.traffic_allocation:
        lower = cumulative / 100.0
        cumulative += alloc.percentage
        ranges.append(
            AllocationRange(
                variant_id=alloc.variant_id,
                lower=lower,
                upper=cumulative / 100.0,
                conditions=tuple(alloc.conditions),
            )
        )
    return tuple(ranges)


def select_variant(config: ExperimentConfig, point: float, context: Dict[str, Any]) -> str:
    """
    Walk the frozen ranges and pick the first one that covers the point and
    whose conditions hold. Falls back to the first variant.
    """
    ranges = config.allocation_ranges or build_allocation_ranges(config)
    for r in ranges:
        if point < r.upper and matches_all(r.conditions, context):
            return r.variant_id
    return config.variants[0].variant_id


class AssignmentEngine:
    """Maps (experiment, participant) to a variant, deterministically and exactly once."""

    def __init__(self, store: ExperimentStore, aggregator, channel: EventChannel):
        self.store = store
        self.aggregator = aggregator
        self.channel = channel

    def assign(
        self,
        experiment_id: str,
        user_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Assign a participant to a variant.

        Args:
            experiment_id: Experiment ID
            user_id: Participant ID
            context: Participant attributes used by audience rules and the
                     cultural / accessibility checks

        Returns:
            variant_id, or None when the experiment is unknown, not running, or
            the participant is not eligible
        """
        existing = self.store.get_assignment(experiment_id, user_id)
        if existing is not None:
            return existing.variant_id

        config = self.store.get_experiment(experiment_id)
        if config is None or config.status != ExperimentStatus.RUNNING:
            return None

        context = context or {}
        if not in_target_audience(config, context):
            logger.debug(f"{user_id} outside target audience of {experiment_id}")
            return None

        segment = resolve_segment(config, context)
        if config.cultural_segments and segment is None:
            logger.debug(f"{user_id} matches no cultural segment of {experiment_id}")
            return None

        if not meets_accessibility(config, context):
            logger.debug(f"{user_id} has accessibility needs not covered by {experiment_id}")
            return None

        variant_id = select_variant(config, hash_to_unit(user_id, experiment_id), context)
        stored, created = self.store.insert_assignment_if_absent(
            Assignment(experiment_id=experiment_id, user_id=user_id, variant_id=variant_id, assigned_at=utcnow())
        )
        if created:
            self.aggregator.register_participant(experiment_id, stored.variant_id, segment)
            self.channel.publish(
                EventType.USER_ASSIGNED,
                experiment_id,
                user_id=user_id,
                variant_id=stored.variant_id,
            )
            logger.debug(f"Assigned {user_id} -> {stored.variant_id} in {experiment_id}")
        return stored.variant_id

    def get_assignment(self, experiment_id: str, user_id: str) -> Optional[Assignment]:
        return self.store.get_assignment(experiment_id, user_id)
