"""
Persistence contract for the experimentation engine.

ExperimentStore is the injected durable-store interface. It exposes the
compare-and-set primitives the engine relies on for exactly-once assignment
and race-free lifecycle transitions. InMemoryExperimentStore is the reference
adapter (used in tests); FileExperimentStore in file_store.py adds durability.
"""

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .schema import ArmTally, Assignment, ExperimentConfig, ExperimentStatus, MetricState


class ExperimentStore(ABC):
    """Durable store for configs, assignments and per-arm aggregates.

    Implementations must give read-your-writes consistency and make the
    *_if_absent and compare_and_update operations atomic.
    """

    # Experiments

    @abstractmethod
    def insert_experiment(self, config: ExperimentConfig) -> None:
        """Store a new experiment. Raises ValueError if the id already exists."""

    @abstractmethod
    def get_experiment(self, experiment_id: str) -> Optional[ExperimentConfig]:
        ...

    @abstractmethod
    def list_experiments(self) -> List[ExperimentConfig]:
        ...

    @abstractmethod
    def compare_and_update(
        self,
        experiment_id: str,
        expected_statuses: Iterable[ExperimentStatus],
        **changes: Any,
    ) -> Optional[ExperimentConfig]:
        """
        Atomically apply changes if the current status is one of expected_statuses.

        Returns:
            The updated config, or None if the experiment is missing or its
            status did not match.
        """

    # Assignments

    @abstractmethod
    def get_assignment(self, experiment_id: str, user_id: str) -> Optional[Assignment]:
        ...

    @abstractmethod
    def insert_assignment_if_absent(self, assignment: Assignment) -> Tuple[Assignment, bool]:
        """
        Store the assignment unless one already exists for the pair.

        Returns:
            (stored assignment, created) - the existing one and False on conflict
        """

    @abstractmethod
    def count_assignments(self, experiment_id: str) -> int:
        ...

    @abstractmethod
    def add_conversion_if_absent(self, experiment_id: str, user_id: str) -> bool:
        """Mark the participant as converted. True only for the first call per pair."""

    @abstractmethod
    def add_dropout_if_absent(self, experiment_id: str, user_id: str) -> bool:
        """Mark the participant as dropped out. True only for the first call per pair."""

    # Aggregates

    @abstractmethod
    def get_metric_state(self, experiment_id: str, variant_id: str, metric_id: str) -> Optional[MetricState]:
        ...

    @abstractmethod
    def put_metric_state(self, state: MetricState) -> None:
        ...

    @abstractmethod
    def list_metric_states(self, experiment_id: str) -> List[MetricState]:
        ...

    @abstractmethod
    def get_tally(self, experiment_id: str, variant_id: str) -> Optional[ArmTally]:
        ...

    @abstractmethod
    def put_tally(self, tally: ArmTally) -> None:
        ...

    @abstractmethod
    def list_tallies(self, experiment_id: str) -> List[ArmTally]:
        ...


class InMemoryExperimentStore(ExperimentStore):
    """
    Process-local store.

    Every table has its own lock; values are copied in and out so callers
    never share mutable state with the store.
    """

    def __init__(self):
        self._experiments_lock = threading.Lock()
        self._assignments_lock = threading.Lock()
        self._aggregates_lock = threading.Lock()

        self._experiments: Dict[str, ExperimentConfig] = {}
        self._assignments: Dict[Tuple[str, str], Assignment] = {}
        self._assignment_counts: Dict[str, int] = {}
        self._conversions: Set[Tuple[str, str]] = set()
        self._dropouts: Set[Tuple[str, str]] = set()
        self._metric_states: Dict[Tuple[str, str, str], MetricState] = {}
        self._tallies: Dict[Tuple[str, str], ArmTally] = {}

    def insert_experiment(self, config: ExperimentConfig) -> None:
        with self._experiments_lock:
            if config.experiment_id in self._experiments:
                raise ValueError(f"Experiment {config.experiment_id} already exists")
            self._experiments[config.experiment_id] = copy.deepcopy(config)

    def get_experiment(self, experiment_id: str) -> Optional[ExperimentConfig]:
        with self._experiments_lock:
            config = self._experiments.get(experiment_id)
            return copy.deepcopy(config) if config is not None else None

    def list_experiments(self) -> List[ExperimentConfig]:
        with self._experiments_lock:
            return [copy.deepcopy(c) for c in self._experiments.values()]

    def compare_and_update(
        self,
        experiment_id: str,
        expected_statuses: Iterable[ExperimentStatus],
        **changes: Any,
    ) -> Optional[ExperimentConfig]:
        expected = set(expected_statuses)
        with self._experiments_lock:
            current = self._experiments.get(experiment_id)
            if current is None or current.status not in expected:
                return None
            updated = replace(current, **changes)
            self._experiments[experiment_id] = updated
            return copy.deepcopy(updated)

    def get_assignment(self, experiment_id: str, user_id: str) -> Optional[Assignment]:
        with self._assignments_lock:
            return self._assignments.get((experiment_id, user_id))

    def insert_assignment_if_absent(self, assignment: Assignment) -> Tuple[Assignment, bool]:
        key = (assignment.experiment_id, assignment.user_id)
        with self._assignments_lock:
            existing = self._assignments.get(key)
            if existing is not None:
                return existing, False
            self._assignments[key] = assignment
            self._assignment_counts[assignment.experiment_id] = (
                self._assignment_counts.get(assignment.experiment_id, 0) + 1
            )
            return assignment, True

    def count_assignments(self, experiment_id: str) -> int:
        with self._assignments_lock:
            return self._assignment_counts.get(experiment_id, 0)

    def add_conversion_if_absent(self, experiment_id: str, user_id: str) -> bool:
        key = (experiment_id, user_id)
        with self._assignments_lock:
            if key in self._conversions:
                return False
            self._conversions.add(key)
            return True

    def add_dropout_if_absent(self, experiment_id: str, user_id: str) -> bool:
        key = (experiment_id, user_id)
        with self._assignments_lock:
            if key in self._dropouts:
                return False
            self._dropouts.add(key)
            return True

    def get_metric_state(self, experiment_id: str, variant_id: str, metric_id: str) -> Optional[MetricState]:
        with self._aggregates_lock:
            state = self._metric_states.get((experiment_id, variant_id, metric_id))
            return replace(state) if state is not None else None

    def put_metric_state(self, state: MetricState) -> None:
        with self._aggregates_lock:
            self._metric_states[(state.experiment_id, state.variant_id, state.metric_id)] = replace(state)

    def list_metric_states(self, experiment_id: str) -> List[MetricState]:
        with self._aggregates_lock:
            return [replace(s) for (e, _, _), s in self._metric_states.items() if e == experiment_id]

    def get_tally(self, experiment_id: str, variant_id: str) -> Optional[ArmTally]:
        with self._aggregates_lock:
            tally = self._tallies.get((experiment_id, variant_id))
            return copy.deepcopy(tally) if tally is not None else None

    def put_tally(self, tally: ArmTally) -> None:
        with self._aggregates_lock:
            self._tallies[(tally.experiment_id, tally.variant_id)] = copy.deepcopy(tally)

    def list_tallies(self, experiment_id: str) -> List[ArmTally]:
        with self._aggregates_lock:
            return [copy.deepcopy(t) for (e, _), t in self._tallies.items() if e == experiment_id]
