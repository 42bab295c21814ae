"""
Exception hierarchy for the experimentation engine.

Management operations (create, start, transitions, analysis) raise these.
The hot paths (assignment and event tracking) never do: unknown, non-running
or unassigned inputs are treated as no-ops there.
"""

from typing import Any, Dict, List, Optional


class ExperimentEngineError(Exception):
    """Base exception carrying an error code and structured details."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"[{self.error_code}] {self.message} - Details: {self.details}"
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ExperimentValidationError(ExperimentEngineError):
    """Raised by create with every violated invariant, not just the first."""

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__(
            f"Experiment validation failed: {'; '.join(self.violations)}",
            details={"violations": self.violations},
        )


class ExperimentNotFoundError(ExperimentEngineError):
    def __init__(self, experiment_id: str):
        self.experiment_id = experiment_id
        super().__init__(
            f"Experiment {experiment_id} not found",
            details={"experiment_id": experiment_id},
        )


class StartPreconditionError(ExperimentEngineError):
    """Raised when approval gates are missing at start time."""

    def __init__(self, experiment_id: str, missing_gates: List[str]):
        self.experiment_id = experiment_id
        self.missing_gates = list(missing_gates)
        super().__init__(
            f"Experiment {experiment_id} cannot start, missing: {', '.join(self.missing_gates)}",
            details={"experiment_id": experiment_id, "missing_gates": self.missing_gates},
        )


class InvalidTransitionError(ExperimentEngineError):
    """Raised when a lifecycle transition is not allowed from the current status.

    The experiment record is left unchanged.
    """

    def __init__(self, experiment_id: str, current: str, target: str):
        self.experiment_id = experiment_id
        self.current = current
        self.target = target
        super().__init__(
            f"Experiment {experiment_id} cannot move from {current} to {target}",
            details={"experiment_id": experiment_id, "current": current, "target": target},
        )
