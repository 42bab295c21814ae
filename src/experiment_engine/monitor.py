"""
Guardrail monitor.

A background thread that, on a fixed interval, evaluates every running
experiment: guardrail thresholds, schedule expiry and bias detection.
Transitions go through the registry's status compare-and-set, so repeated
ticks or a race with a manual action never apply a transition twice.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from .aggregator import MetricsAggregator
from .bias import BiasDetector
from .events import EventChannel, EventType
from .registry import ExperimentRegistry
from .schema import (
    ExperimentConfig,
    ExperimentResult,
    ExperimentStatus,
    GuardrailAction,
    GuardrailConfig,
    GuardrailDirection,
    utcnow,
)

logger = logging.getLogger(__name__)

# Guardrails may also watch these per-arm rates
DERIVED_METRICS = {
    "conversion_rate": lambda r: r.conversion_rate,
    "dropout_rate": lambda r: r.dropout_rate,
}


def guardrail_value(result: ExperimentResult, metric_id: str) -> Optional[float]:
    """Latest aggregated value of a metric on one arm, or None if nothing was observed."""
    state = result.metric(metric_id)
    if state is not None and state.count > 0:
        return state.mean
    if metric_id in DERIVED_METRICS and result.participants > 0:
        return DERIVED_METRICS[metric_id](result)
    return None


def is_breach(guardrail: GuardrailConfig, value: float) -> bool:
    if guardrail.direction == GuardrailDirection.ABOVE:
        return value > guardrail.threshold
    return value < guardrail.threshold


class GuardrailMonitor:
    """Periodic control loop over all running experiments."""

    def __init__(
        self,
        registry: ExperimentRegistry,
        aggregator: MetricsAggregator,
        bias_detector: BiasDetector,
        channel: EventChannel,
        interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.aggregator = aggregator
        self.bias_detector = bias_detector
        self.channel = channel
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="guardrail-monitor", daemon=True)
        self._thread.start()
        logger.info(f"Guardrail monitor started (interval={self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop scheduling ticks and wait for an in-flight tick to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Guardrail monitor stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Guardrail monitor tick failed")

    def run_once(self) -> int:
        """
        Evaluate every running experiment once.

        Returns:
            Number of experiments evaluated
        """
        with self._tick_lock:
            running = self.registry.list(ExperimentStatus.RUNNING)
            for config in running:
                try:
                    self.evaluate(config)
                except Exception:
                    logger.exception(f"Monitoring failed for experiment {config.experiment_id}")
            return len(running)

    def evaluate(self, config: ExperimentConfig) -> None:
        results = self.aggregator.snapshot(config)
        if self.check_guardrails(config, results):
            return
        if self.check_schedule(config):
            return
        self.check_bias(config, results)

    def check_guardrails(self, config: ExperimentConfig, results: Sequence[ExperimentResult]) -> bool:
        """
        Returns:
            True if a guardrail moved the experiment out of running
        """
        for guardrail in config.guardrail_metrics:
            for result in results:
                value = guardrail_value(result, guardrail.metric_id)
                if value is None or not is_breach(guardrail, value):
                    continue

                logger.warning(
                    f"Guardrail breach in {config.experiment_id}: {guardrail.metric_id}={value:.4f} "
                    f"{guardrail.direction.value} {guardrail.threshold} on {result.variant_id} "
                    f"(action={guardrail.action.value})"
                )
                self.channel.publish(
                    EventType.GUARDRAIL_ALERT,
                    config.experiment_id,
                    metric_id=guardrail.metric_id,
                    variant_id=result.variant_id,
                    value=value,
                    threshold=guardrail.threshold,
                    direction=guardrail.direction.value,
                    action=guardrail.action.value,
                )

                if guardrail.action == GuardrailAction.PAUSE:
                    self.registry.try_transition(config.experiment_id, "pause")
                    return True
                if guardrail.action == GuardrailAction.STOP:
                    self.registry.try_transition(config.experiment_id, "stop", end_date=self.clock())
                    return True
                break
        return False

    def check_schedule(self, config: ExperimentConfig) -> bool:
        """
        Returns:
            True if the experiment was stopped on schedule expiry
        """
        now = self.clock()
        if config.end_date is not None and now >= config.end_date:
            self.registry.try_transition(config.experiment_id, "stop", end_date=config.end_date)
            logger.info(f"Experiment {config.experiment_id} reached its end date")
            return True

        if config.start_date is not None and config.duration_days:
            if now >= config.start_date + timedelta(days=config.duration_days):
                self.registry.try_transition(config.experiment_id, "stop", end_date=now)
                logger.info(f"Experiment {config.experiment_id} reached its duration")
                return True
        return False

    def check_bias(self, config: ExperimentConfig, results: Sequence[ExperimentResult]) -> None:
        report = self.bias_detector.analyze(config, results)
        if report.bias_detected:
            self.channel.publish(
                EventType.BIAS_DETECTED,
                config.experiment_id,
                bias_types=list(report.bias_types),
                bias_score=report.bias_score,
            )
