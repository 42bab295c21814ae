"""Experimentation engine: inclusive A/B testing with guardrails and bias detection."""

from .schema import (
    ExperimentConfig,
    ExperimentStatus,
    ExperimentType,
    Variant,
    TrafficAllocation,
    AudienceConfig,
    AudienceRule,
    RuleOperator,
    CulturalSegment,
    NeuroscienceObjective,
    AccessibilityConsideration,
    MetricDefinition,
    GuardrailConfig,
    GuardrailDirection,
    GuardrailAction,
    StatisticalConfig,
    MultipleTestingCorrection,
    ApprovalGate,
    Assignment,
    MetricState,
    ExperimentResult,
    CulturalMetricResult,
    NeuroscienceMetricResult,
    AccessibilityMetricResult,
    StatisticalAnalysis,
    BiasReport,
    ExperimentAnalysis,
)
from .exceptions import (
    ExperimentEngineError,
    ExperimentValidationError,
    ExperimentNotFoundError,
    StartPreconditionError,
    InvalidTransitionError,
)
from .config import EngineSettings, configure_logging
from .events import EventChannel, EventType, Event, Subscription, EventRecorder
from .store import ExperimentStore, InMemoryExperimentStore
from .file_store import FileExperimentStore, get_store_summary
from .registry import ExperimentRegistry
from .assignment import AssignmentEngine, hash_to_unit
from .aggregator import MetricsAggregator
from .analyze import StatisticalEngine
from .bias import BiasDetector
from .monitor import GuardrailMonitor
from .service import ExperimentationService
from .simulate import simulate_traffic

__all__ = [
    "ExperimentConfig",
    "ExperimentStatus",
    "ExperimentType",
    "Variant",
    "TrafficAllocation",
    "AudienceConfig",
    "AudienceRule",
    "RuleOperator",
    "CulturalSegment",
    "NeuroscienceObjective",
    "AccessibilityConsideration",
    "MetricDefinition",
    "GuardrailConfig",
    "GuardrailDirection",
    "GuardrailAction",
    "StatisticalConfig",
    "MultipleTestingCorrection",
    "ApprovalGate",
    "Assignment",
    "MetricState",
    "ExperimentResult",
    "CulturalMetricResult",
    "NeuroscienceMetricResult",
    "AccessibilityMetricResult",
    "StatisticalAnalysis",
    "BiasReport",
    "ExperimentAnalysis",
    "ExperimentEngineError",
    "ExperimentValidationError",
    "ExperimentNotFoundError",
    "StartPreconditionError",
    "InvalidTransitionError",
    "EngineSettings",
    "configure_logging",
    "EventChannel",
    "EventType",
    "Event",
    "Subscription",
    "EventRecorder",
    "ExperimentStore",
    "InMemoryExperimentStore",
    "FileExperimentStore",
    "get_store_summary",
    "ExperimentRegistry",
    "AssignmentEngine",
    "hash_to_unit",
    "MetricsAggregator",
    "StatisticalEngine",
    "BiasDetector",
    "GuardrailMonitor",
    "ExperimentationService",
    "simulate_traffic",
]
