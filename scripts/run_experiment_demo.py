#!/usr/bin/env python3
"""
Run full experiment demo: create -> start -> simulate -> monitor -> analyze.

Uses the durable file store under data/experiments and writes
artifacts/experiments/<id>/analysis.json.
"""

import json
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))

from experiment_engine import (  # noqa: E402
    ApprovalGate,
    CulturalMetricResult,
    CulturalSegment,
    EngineSettings,
    EventType,
    ExperimentationService,
    ExperimentConfig,
    GuardrailAction,
    GuardrailConfig,
    MetricDefinition,
    NeuroscienceMetricResult,
    NeuroscienceObjective,
    TrafficAllocation,
    Variant,
    configure_logging,
    get_store_summary,
    simulate_traffic,
)
from experiment_engine.config import DEFAULT_DATA_DIR  # noqa: E402


def build_config() -> ExperimentConfig:
    return ExperimentConfig(
        name="Bilingual lesson onboarding",
        hypothesis="Culturally adapted onboarding raises lesson completion",
        variants=[
            Variant("control", "Standard onboarding", 50),
            Variant("variant_1", "Adapted onboarding", 50),
        ],
        traffic_allocation=[TrafficAllocation("control", 50), TrafficAllocation("variant_1", 50)],
        cultural_segments=[
            CulturalSegment("seg_maya", "Maya", "maya"),
            CulturalSegment("seg_ladino", "Ladino", "ladino"),
            CulturalSegment("seg_garifuna", "Garifuna", "garifuna"),
        ],
        neuroscience_objectives=[
            NeuroscienceObjective("obj_attention", "Attention", expected_improvement=0.1, validation_method="eye_tracking"),
        ],
        primary_metric=MetricDefinition("lesson_completed", "Lesson completion"),
        secondary_metrics=[MetricDefinition("time_on_task", "Time on task", metric_type="engagement")],
        guardrail_metrics=[GuardrailConfig("error_rate", 0.2, action=GuardrailAction.PAUSE)],
        duration_days=14,
        tags=["demo"],
    )


def main():
    settings = EngineSettings.from_env()
    configure_logging(settings.log_level)
    if settings.data_dir == DEFAULT_DATA_DIR:
        settings = settings.model_copy(update={"data_dir": str(ROOT / "data" / "experiments")})
    artifacts_dir = ROOT / "artifacts" / "experiments"

    with ExperimentationService.durable(settings) as service:
        service.subscribe(lambda e: print(f"   [event] {e.event_type.value}: {e.payload}"), EventType.GUARDRAIL_ALERT)

        print("1. Creating experiment...")
        experiment_id = service.create_experiment(build_config())
        for gate in (ApprovalGate.CULTURAL_APPROVAL, ApprovalGate.NEUROSCIENCE_VALIDATION, ApprovalGate.ETHICS_REVIEW):
            service.approve_experiment(experiment_id, gate)
        service.start_experiment(experiment_id)
        config = service.get_experiment_config(experiment_id)
        print(f"   {experiment_id} running, required sample size per arm: {config.required_sample_size}")

        print("2. Simulating traffic...")
        summary = simulate_traffic(
            service,
            experiment_id,
            n_users=3000,
            conversion_rates={"control": 0.12, "variant_1": 0.16},
            dropout_rates={"control": 0.04, "variant_1": 0.05},
            cultures=["maya", "ladino", "garifuna"],
            culture_weights=[0.5, 0.35, 0.15],
            engagement_metric="time_on_task",
            engagement_mean=6.0,
            engagement_std=1.5,
        )
        print(f"   Assigned: {summary['assigned']}, conversions: {summary['conversions']}")

        print("3. Recording external measurements...")
        service.record_cultural_metric(
            experiment_id, "variant_1",
            CulturalMetricResult("maya", 200, performance=0.82, cultural_relevance=0.9, localized_success=0.85),
        )
        service.record_cultural_metric(
            experiment_id, "control",
            CulturalMetricResult("garifuna", 60, performance=0.55, cultural_relevance=0.5, localized_success=0.6),
        )
        service.record_neuroscience_metric(
            experiment_id, "variant_1",
            NeuroscienceMetricResult("Attention", measured=0.12, expected=0.1,
                                     cognitive_load_score=0.65, attention_retention=0.72),
        )

        print("4. Running one monitor tick...")
        service.monitor.run_once()

        print("5. Analyzing...")
        analysis = service.analyze_experiment(experiment_id)
        stats = analysis.analysis
        print(f"   Lift: {stats.lift:.2%}  p={stats.p_value:.4f}  significant={stats.is_significant}")
        print(f"   Bias detected: {analysis.bias.bias_detected} {analysis.bias.bias_types}")
        for rec in analysis.recommendations:
            print(f"   - {rec}")

        print(f"   Store: {get_store_summary(service.store, experiment_id)}")

    out_dir = artifacts_dir / experiment_id
    out_dir.mkdir(parents=True, exist_ok=True)
    with open(out_dir / "analysis.json", "w") as f:
        json.dump(analysis.to_dict(), f, indent=2)
    print(f"\n[OK] Demo complete. Analysis written to {out_dir / 'analysis.json'}")


if __name__ == "__main__":
    main()
