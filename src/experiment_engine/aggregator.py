"""
Per-variant, per-metric running statistics.

Metric accumulators are updated with Welford's algorithm under the lock
striped to their (experiment_id, variant_id, metric_id) key; arm counters
under the lock striped to (experiment_id, variant_id). Both pools have a
fixed size. Lock order is always metric stripe, then arm stripe.
No raw event history is kept.
"""

import logging
import math
import threading
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence

from .events import EventChannel, EventType
from .schema import (
    AccessibilityMetricResult,
    ArmTally,
    CulturalMetricResult,
    ExperimentConfig,
    ExperimentResult,
    ExperimentStatus,
    MetricState,
    NeuroscienceMetricResult,
    StatisticalSignificance,
    utcnow,
)
from .store import ExperimentStore

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


def _as_finite(value: Any) -> Optional[float]:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


class MetricsAggregator:
    """Accumulates tracked events into MetricState and ArmTally records."""

    def __init__(self, store: ExperimentStore, channel: EventChannel):
        self.store = store
        self.channel = channel
        self._metric_locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._arm_locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    @staticmethod
    def _stripe(locks: Sequence[threading.Lock], key: Hashable) -> threading.Lock:
        return locks[hash(key) % len(locks)]

    @property
    def lock_count(self) -> int:
        return len(self._metric_locks) + len(self._arm_locks)

    def _update_tally(self, experiment_id: str, variant_id: str, update: Callable[[ArmTally], None]) -> None:
        with self._stripe(self._arm_locks, (experiment_id, variant_id)):
            tally = self.store.get_tally(experiment_id, variant_id) or ArmTally(experiment_id, variant_id)
            update(tally)
            tally.updated_at = utcnow()
            self.store.put_tally(tally)

    def register_participant(self, experiment_id: str, variant_id: str, segment: Optional[str] = None) -> None:
        """Count a newly assigned participant (called once per assignment)."""

        def update(tally: ArmTally) -> None:
            tally.participants += 1
            if segment is not None:
                tally.segment_counts[segment] = tally.segment_counts.get(segment, 0) + 1

        self._update_tally(experiment_id, variant_id, update)

    def track_event(
        self,
        experiment_id: str,
        user_id: str,
        metric_id: str,
        value: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Record one metric observation for an assigned participant.

        Returns:
            True if the event was applied; False (no-op) for unknown or
            non-running experiments, unassigned participants and non-finite values
        """
        value = _as_finite(value)
        if value is None:
            logger.debug(f"Ignoring non-finite value for {metric_id} in {experiment_id}")
            return False

        config = self.store.get_experiment(experiment_id)
        if config is None or config.status != ExperimentStatus.RUNNING:
            return False

        assignment = self.store.get_assignment(experiment_id, user_id)
        if assignment is None:
            return False
        variant_id = assignment.variant_id

        with self._stripe(self._metric_locks, (experiment_id, variant_id, metric_id)):
            state = self.store.get_metric_state(experiment_id, variant_id, metric_id) or MetricState(
                experiment_id, variant_id, metric_id
            )
            state.update(value)
            self.store.put_metric_state(state)

            if metric_id == config.primary_metric.metric_id and value > 0:
                if self.store.add_conversion_if_absent(experiment_id, user_id):
                    self._update_tally(experiment_id, variant_id, _increment_conversions)

        self.channel.publish(
            EventType.CONVERSION_TRACKED,
            experiment_id,
            user_id=user_id,
            variant_id=variant_id,
            metric_id=metric_id,
            value=value,
            metadata=dict(metadata or {}),
        )
        return True

    def track_dropout(self, experiment_id: str, user_id: str) -> bool:
        """Mark an assigned participant as dropped out. Counted once per participant."""
        config = self.store.get_experiment(experiment_id)
        if config is None or config.status != ExperimentStatus.RUNNING:
            return False
        assignment = self.store.get_assignment(experiment_id, user_id)
        if assignment is None:
            return False

        if self.store.add_dropout_if_absent(experiment_id, user_id):
            self._update_tally(experiment_id, assignment.variant_id, _increment_dropouts)
        return True

    def _record_measurement(self, experiment_id: str, variant_id: str, attr: str, measurement: Any) -> bool:
        config = self.store.get_experiment(experiment_id)
        if config is None or variant_id not in config.variant_ids():
            return False

        def update(tally: ArmTally) -> None:
            getattr(tally, attr).append(measurement)

        self._update_tally(experiment_id, variant_id, update)
        return True

    def record_cultural_metric(self, experiment_id: str, variant_id: str, result: CulturalMetricResult) -> bool:
        return self._record_measurement(experiment_id, variant_id, "cultural_metrics", result)

    def record_neuroscience_metric(
        self, experiment_id: str, variant_id: str, result: NeuroscienceMetricResult
    ) -> bool:
        return self._record_measurement(experiment_id, variant_id, "neuroscience_metrics", result)

    def record_accessibility_metric(
        self, experiment_id: str, variant_id: str, result: AccessibilityMetricResult
    ) -> bool:
        return self._record_measurement(experiment_id, variant_id, "accessibility_metrics", result)

    def record_significance(
        self, experiment_id: str, variant_id: str, significance: StatisticalSignificance
    ) -> None:
        def update(tally: ArmTally) -> None:
            tally.statistical_significance = significance

        self._update_tally(experiment_id, variant_id, update)

    def get_metric_state(self, experiment_id: str, variant_id: str, metric_id: str) -> Optional[MetricState]:
        return self.store.get_metric_state(experiment_id, variant_id, metric_id)

    def snapshot(self, config: ExperimentConfig) -> List[ExperimentResult]:
        """
        Per-variant results in declared variant order.

        Arms that have seen no traffic are zero-filled. Reads are eventually
        consistent with concurrent tracking.
        """
        experiment_id = config.experiment_id
        tallies = {t.variant_id: t for t in self.store.list_tallies(experiment_id)}
        states: Dict[str, List[MetricState]] = {}
        for state in self.store.list_metric_states(experiment_id):
            states.setdefault(state.variant_id, []).append(state)

        results = []
        for variant_id in config.variant_ids():
            tally = tallies.get(variant_id) or ArmTally(experiment_id, variant_id)
            participants = tally.participants
            results.append(
                ExperimentResult(
                    experiment_id=experiment_id,
                    variant_id=variant_id,
                    participants=participants,
                    conversions=tally.conversions,
                    conversion_rate=tally.conversions / participants if participants > 0 else 0.0,
                    dropouts=tally.dropouts,
                    metrics=sorted(states.get(variant_id, []), key=lambda s: s.metric_id),
                    segment_counts=dict(tally.segment_counts),
                    cultural_metrics=list(tally.cultural_metrics),
                    neuroscience_metrics=list(tally.neuroscience_metrics),
                    accessibility_metrics=list(tally.accessibility_metrics),
                    statistical_significance=tally.statistical_significance,
                )
            )
        return results


def _increment_conversions(tally: ArmTally) -> None:
    tally.conversions += 1


def _increment_dropouts(tally: ArmTally) -> None:
    tally.dropouts += 1
