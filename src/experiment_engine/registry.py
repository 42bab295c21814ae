"""
Experiment registry: configuration validation and lifecycle state.

State machine:

    draft -> running            start
    running -> paused           pause
    paused -> running           resume
    running -> completed        stop
    running|paused -> cancelled cancel

completed and cancelled are terminal. Every transition is a status
compare-and-set in the store, so a monitor tick and a concurrent manual
action can never both apply.
"""

import copy
import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from .analyze import StatisticalEngine
from .assignment import build_allocation_ranges
from .events import EventChannel, EventType
from .exceptions import (
    ExperimentEngineError,
    ExperimentNotFoundError,
    ExperimentValidationError,
    InvalidTransitionError,
    StartPreconditionError,
)
from .schema import (
    ApprovalGate,
    ExperimentConfig,
    ExperimentStatus,
    GuardrailAction,
    GuardrailDirection,
    MultipleTestingCorrection,
    TrafficAllocation,
    ensure_utc,
    utcnow,
)
from .store import ExperimentStore

logger = logging.getLogger(__name__)

TRAFFIC_TOLERANCE = 0.1

# action -> (allowed source statuses, target status, event)
TRANSITIONS: Dict[str, Tuple[Set[ExperimentStatus], ExperimentStatus, EventType]] = {
    "start": ({ExperimentStatus.DRAFT}, ExperimentStatus.RUNNING, EventType.EXPERIMENT_STARTED),
    "pause": ({ExperimentStatus.RUNNING}, ExperimentStatus.PAUSED, EventType.EXPERIMENT_PAUSED),
    "resume": ({ExperimentStatus.PAUSED}, ExperimentStatus.RUNNING, EventType.EXPERIMENT_RESUMED),
    "stop": ({ExperimentStatus.RUNNING}, ExperimentStatus.COMPLETED, EventType.EXPERIMENT_STOPPED),
    "cancel": (
        {ExperimentStatus.RUNNING, ExperimentStatus.PAUSED},
        ExperimentStatus.CANCELLED,
        EventType.EXPERIMENT_CANCELLED,
    ),
}


def generate_experiment_id() -> str:
    return f"exp_{uuid.uuid4().hex[:12]}"


def validate_config(config: ExperimentConfig) -> List[str]:
    """
    Check every creation-time invariant.

    Returns:
        List of violation messages (empty when the config is valid)
    """
    violations = []

    if not config.name:
        violations.append("experiment name is required")

    if len(config.variants) < 2:
        violations.append("at least 2 variants required")

    variant_ids = config.variant_ids()
    if len(set(variant_ids)) != len(variant_ids):
        violations.append("variant ids must be unique")

    total = sum(a.percentage for a in config.traffic_allocation)
    if abs(total - 100.0) > TRAFFIC_TOLERANCE:
        violations.append(f"traffic allocation must sum to 100% (got {total:g}%)")

    for alloc in config.traffic_allocation:
        if alloc.variant_id not in variant_ids:
            violations.append(f"traffic allocation references unknown variant '{alloc.variant_id}'")
        if alloc.percentage < 0:
            violations.append(f"traffic allocation for '{alloc.variant_id}' must be non-negative")

    for segment in config.cultural_segments:
        if not segment.culture:
            violations.append(f"cultural segment '{segment.segment_id}' requires a culture")
        for customization in segment.customizations:
            if customization.validation_required and not customization.adaptations:
                violations.append(
                    f"cultural segment '{segment.segment_id}': customization "
                    f"'{customization.element}' requires adaptations"
                )

    for objective in config.neuroscience_objectives:
        if not objective.validation_method:
            violations.append(f"neuroscience objective '{objective.name}' requires a validation method")
        if objective.expected_improvement <= 0:
            violations.append(
                f"neuroscience objective '{objective.name}' must have a positive expected improvement"
            )

    stat = config.statistical_config
    if not 0 < stat.alpha < 1:
        violations.append("alpha must be between 0 and 1")
    if not 0 < stat.power < 1:
        violations.append("power must be between 0 and 1")
    if stat.minimum_detectable_effect <= 0:
        violations.append("minimum detectable effect must be positive")
    if not 0 < stat.baseline_rate < 1:
        violations.append("baseline rate must be between 0 and 1")
    if not _is_member(MultipleTestingCorrection, stat.multiple_testing_correction):
        violations.append(f"unknown multiple testing correction '{stat.multiple_testing_correction}'")

    for guardrail in config.guardrail_metrics:
        if not _is_member(GuardrailDirection, guardrail.direction):
            violations.append(f"guardrail '{guardrail.metric_id}' has unknown direction '{guardrail.direction}'")
        if not _is_member(GuardrailAction, guardrail.action):
            violations.append(f"guardrail '{guardrail.metric_id}' has unknown action '{guardrail.action}'")

    if config.duration_days is not None and config.duration_days <= 0:
        violations.append("duration must be positive")

    return violations


def _is_member(enum_cls, value) -> bool:
    try:
        enum_cls(value)
    except ValueError:
        return False
    return True


def _allocation_from_weights(config: ExperimentConfig) -> List[TrafficAllocation]:
    weights = [v.weight for v in config.variants]
    if not any(weights):
        share = 100.0 / len(config.variants)
        return [TrafficAllocation(v.variant_id, share) for v in config.variants]
    return [TrafficAllocation(v.variant_id, v.weight) for v in config.variants]


def _normalize(config: ExperimentConfig) -> None:
    stat = config.statistical_config
    stat.multiple_testing_correction = MultipleTestingCorrection(stat.multiple_testing_correction)
    for guardrail in config.guardrail_metrics:
        guardrail.direction = GuardrailDirection(guardrail.direction)
        guardrail.action = GuardrailAction(guardrail.action)


def required_gates(config: ExperimentConfig) -> List[ApprovalGate]:
    """Gates that must be set before the experiment may run."""
    gates = []
    if config.cultural_segments:
        gates.append(ApprovalGate.CULTURAL_APPROVAL)
    if config.neuroscience_objectives:
        gates.append(ApprovalGate.NEUROSCIENCE_VALIDATION)
    gates.append(ApprovalGate.ETHICS_REVIEW)
    return gates


class ExperimentRegistry:
    """Owns experiment configuration and lifecycle state."""

    def __init__(
        self,
        store: ExperimentStore,
        channel: EventChannel,
        statistical_engine: Optional[StatisticalEngine] = None,
        id_factory: Callable[[], str] = generate_experiment_id,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.channel = channel
        self.statistical_engine = statistical_engine or StatisticalEngine()
        self.id_factory = id_factory
        self.clock = clock

    def create(self, config: ExperimentConfig) -> ExperimentConfig:
        """
        Validate and store a new experiment in draft.

        Raises:
            ExperimentValidationError: with every violated invariant
        """
        config = copy.deepcopy(config)
        config.start_date = ensure_utc(config.start_date)
        config.end_date = ensure_utc(config.end_date)
        if not config.traffic_allocation and config.variants:
            config.traffic_allocation = _allocation_from_weights(config)

        violations = validate_config(config)
        if violations:
            logger.warning(f"Rejected experiment '{config.name}': {len(violations)} violation(s)")
            raise ExperimentValidationError(violations)

        _normalize(config)
        config = replace(
            config,
            experiment_id=self.id_factory(),
            status=ExperimentStatus.DRAFT,
            cultural_approval=False,
            neuroscience_validation=False,
            ethics_review=False,
            created_at=self.clock(),
            required_sample_size=None,
            allocation_ranges=(),
        )
        self.store.insert_experiment(config)
        logger.info(f"Created experiment {config.experiment_id} ('{config.name}') with {len(config.variants)} variants")
        self.channel.publish(EventType.EXPERIMENT_CREATED, config.experiment_id, name=config.name)
        return config

    def approve(self, experiment_id: str, gate: Union[ApprovalGate, str]) -> ExperimentConfig:
        """Grant one approval gate. Only allowed while the experiment is draft."""
        gate = ApprovalGate(gate)
        updated = self.store.compare_and_update(experiment_id, {ExperimentStatus.DRAFT}, **{gate.value: True})
        if updated is None:
            current = self.get(experiment_id)
            raise ExperimentEngineError(
                f"Experiment {experiment_id} is {current.status.value}; approvals are only granted in draft",
                error_code="APPROVAL_NOT_ALLOWED",
                details={"experiment_id": experiment_id, "gate": gate.value, "status": current.status.value},
            )
        logger.info(f"Experiment {experiment_id}: {gate.value} granted")
        return updated

    def start(self, experiment_id: str) -> ExperimentConfig:
        """
        Move a draft experiment to running.

        Checks the approval gates, computes the required sample size and
        freezes the variant hash ranges.

        Raises:
            StartPreconditionError: naming every missing gate
            InvalidTransitionError: if the experiment is not draft
        """
        config = self.get(experiment_id)
        if config.status != ExperimentStatus.DRAFT:
            raise InvalidTransitionError(experiment_id, config.status.value, ExperimentStatus.RUNNING.value)

        missing = [g.value for g in required_gates(config) if not getattr(config, g.value)]
        if missing:
            logger.warning(f"Experiment {experiment_id} cannot start, missing gates: {missing}")
            raise StartPreconditionError(experiment_id, missing)

        return self._transition_or_raise(
            experiment_id,
            "start",
            required_sample_size=self.statistical_engine.required_sample_size(config),
            allocation_ranges=build_allocation_ranges(config),
            start_date=self.clock(),
        )

    def pause(self, experiment_id: str) -> ExperimentConfig:
        return self._transition_or_raise(experiment_id, "pause")

    def resume(self, experiment_id: str) -> ExperimentConfig:
        return self._transition_or_raise(experiment_id, "resume")

    def stop(self, experiment_id: str, end_date: Optional[datetime] = None) -> ExperimentConfig:
        """Complete a running experiment. end_date defaults to now."""
        return self._transition_or_raise(experiment_id, "stop", end_date=end_date or self.clock())

    def cancel(self, experiment_id: str) -> ExperimentConfig:
        return self._transition_or_raise(experiment_id, "cancel")

    def try_transition(self, experiment_id: str, action: str, **changes: Any) -> Optional[ExperimentConfig]:
        """
        Apply a lifecycle transition if the current status allows it.

        Args:
            experiment_id: Experiment ID
            action: One of start, pause, resume, stop, cancel
            **changes: Extra fields written atomically with the new status

        Returns:
            The updated config, or None when the experiment is missing or the
            status compare-and-set lost
        """
        sources, target, event_type = TRANSITIONS[action]
        updated = self.store.compare_and_update(experiment_id, sources, status=target, **changes)
        if updated is None:
            return None

        logger.info(f"Experiment {experiment_id}: {action} -> {target.value}")
        self.channel.publish(event_type, experiment_id, status=target.value)
        return updated

    def _transition_or_raise(self, experiment_id: str, action: str, **changes: Any) -> ExperimentConfig:
        updated = self.try_transition(experiment_id, action, **changes)
        if updated is None:
            current = self.get(experiment_id)
            target = TRANSITIONS[action][1]
            raise InvalidTransitionError(experiment_id, current.status.value, target.value)
        return updated

    def find(self, experiment_id: str) -> Optional[ExperimentConfig]:
        return self.store.get_experiment(experiment_id)

    def get(self, experiment_id: str) -> ExperimentConfig:
        config = self.store.get_experiment(experiment_id)
        if config is None:
            raise ExperimentNotFoundError(experiment_id)
        return config

    def list(self, status: Optional[ExperimentStatus] = None) -> List[ExperimentConfig]:
        experiments = self.store.list_experiments()
        if status is not None:
            status = ExperimentStatus(status)
            experiments = [e for e in experiments if e.status == status]
        return experiments
