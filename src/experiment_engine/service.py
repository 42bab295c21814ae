"""
Experimentation service.

Wires the registry, assignment engine, aggregator, statistical engine, bias
detector and guardrail monitor over one injected store and event channel.
Construct one per process and pass it where it is needed.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from .aggregator import MetricsAggregator
from .analyze import StatisticalEngine, analyze_cultural, analyze_neuroscience, generate_recommendations
from .assignment import AssignmentEngine
from .bias import BiasDetector
from .config import EngineSettings
from .events import EventChannel, EventHandler, EventType, Subscription
from .file_store import FileExperimentStore
from .monitor import GuardrailMonitor
from .registry import ExperimentRegistry, generate_experiment_id
from .schema import (
    AccessibilityMetricResult,
    ApprovalGate,
    CulturalMetricResult,
    ExperimentAnalysis,
    ExperimentConfig,
    ExperimentResult,
    ExperimentStatus,
    NeuroscienceMetricResult,
    utcnow,
)
from .store import ExperimentStore, InMemoryExperimentStore

logger = logging.getLogger(__name__)


class ExperimentationService:
    """Inbound operations of the experimentation engine."""

    def __init__(
        self,
        store: Optional[ExperimentStore] = None,
        channel: Optional[EventChannel] = None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = generate_experiment_id,
    ):
        self.settings = settings or EngineSettings()
        self.store = store if store is not None else InMemoryExperimentStore()
        self.channel = channel if channel is not None else EventChannel()

        self.statistical_engine = StatisticalEngine(ci_level=self.settings.ci_level)
        self.registry = ExperimentRegistry(
            self.store, self.channel, self.statistical_engine, id_factory=id_factory, clock=clock
        )
        self.aggregator = MetricsAggregator(self.store, self.channel)
        self.assignment = AssignmentEngine(self.store, self.aggregator, self.channel)
        self.bias_detector = BiasDetector.from_settings(self.settings)
        self.monitor = GuardrailMonitor(
            self.registry,
            self.aggregator,
            self.bias_detector,
            self.channel,
            interval_seconds=self.settings.monitor_interval_seconds,
            clock=clock,
        )

    @classmethod
    def durable(cls, settings: Optional[EngineSettings] = None, **kwargs: Any) -> "ExperimentationService":
        """Service backed by a FileExperimentStore under settings.data_dir."""
        settings = settings or EngineSettings.from_env()
        logger.info(f"Using durable experiment store at {settings.data_dir}")
        return cls(store=FileExperimentStore(settings.data_dir), settings=settings, **kwargs)

    # Lifecycle

    def create_experiment(self, config: ExperimentConfig) -> str:
        return self.registry.create(config).experiment_id

    def approve_experiment(self, experiment_id: str, gate: Union[ApprovalGate, str]) -> None:
        self.registry.approve(experiment_id, gate)

    def start_experiment(self, experiment_id: str) -> None:
        self.registry.start(experiment_id)

    def pause_experiment(self, experiment_id: str) -> None:
        self.registry.pause(experiment_id)

    def resume_experiment(self, experiment_id: str) -> None:
        self.registry.resume(experiment_id)

    def stop_experiment(self, experiment_id: str) -> None:
        self.registry.stop(experiment_id)

    def cancel_experiment(self, experiment_id: str) -> None:
        self.registry.cancel(experiment_id)

    # Hot path

    def assign_user_to_variant(
        self,
        experiment_id: str,
        user_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        return self.assignment.assign(experiment_id, user_id, context)

    def track_conversion(
        self,
        experiment_id: str,
        user_id: str,
        metric_id: str,
        value: float = 1.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return self.aggregator.track_event(experiment_id, user_id, metric_id, value, metadata)

    def track_dropout(self, experiment_id: str, user_id: str) -> bool:
        return self.aggregator.track_dropout(experiment_id, user_id)

    # External measurements

    def record_cultural_metric(self, experiment_id: str, variant_id: str, result: CulturalMetricResult) -> bool:
        return self.aggregator.record_cultural_metric(experiment_id, variant_id, result)

    def record_neuroscience_metric(
        self, experiment_id: str, variant_id: str, result: NeuroscienceMetricResult
    ) -> bool:
        return self.aggregator.record_neuroscience_metric(experiment_id, variant_id, result)

    def record_accessibility_metric(
        self, experiment_id: str, variant_id: str, result: AccessibilityMetricResult
    ) -> bool:
        return self.aggregator.record_accessibility_metric(experiment_id, variant_id, result)

    # Reads

    def analyze_experiment(self, experiment_id: str) -> ExperimentAnalysis:
        """
        Full analysis: statistics, bias, cultural and neuroscience summaries
        and recommendations. The per-arm significance is recorded back on the
        arms so later result reads carry it.
        """
        config = self.registry.get(experiment_id)
        results = self.aggregator.snapshot(config)

        analysis = self.statistical_engine.analyze(config, results)
        bias = self.bias_detector.analyze(config, results)
        cultural = analyze_cultural(config, results, bias)
        neuroscience = analyze_neuroscience(config, results)
        recommendations = generate_recommendations(analysis, results, cultural, neuroscience, bias)

        by_variant = dict(self.statistical_engine.significance_by_variant(analysis))
        for result in results:
            significance = by_variant.get(result.variant_id)
            if significance is not None:
                self.aggregator.record_significance(experiment_id, result.variant_id, significance)
                result.statistical_significance = significance

        return ExperimentAnalysis(
            experiment_id=experiment_id,
            results=results,
            analysis=analysis,
            cultural_analysis=cultural,
            neuroscience_analysis=neuroscience,
            bias=bias,
            recommendations=recommendations,
        )

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[ExperimentConfig]:
        return self.registry.list(status)

    def get_experiment_config(self, experiment_id: str) -> ExperimentConfig:
        return self.registry.get(experiment_id)

    def get_experiment_results(self, experiment_id: str) -> List[ExperimentResult]:
        return self.aggregator.snapshot(self.registry.get(experiment_id))

    # Events and monitoring

    def subscribe(self, handler: EventHandler, event_type: Optional[EventType] = None) -> Subscription:
        return self.channel.subscribe(handler, event_type)

    def start_monitoring(self) -> None:
        self.monitor.start()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        self.monitor.stop(timeout)

    def __enter__(self) -> "ExperimentationService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
