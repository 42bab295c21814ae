"""End-to-end: simulate -> analyze produces a complete, serializable analysis."""
import json

import pytest

from conftest import launch, make_config
from experiment_engine import (
    CulturalSegment,
    EngineSettings,
    ExperimentationService,
    ExperimentStatus,
    simulate_traffic,
)


def test_e2e_simulate_analyze(service, running_experiment):
    """Strong effect -> significant lift, rollout recommendation, JSON-ready output."""
    sim = simulate_traffic(
        service,
        running_experiment,
        n_users=4000,
        conversion_rates={"control": 0.10, "variant_1": 0.20},
        engagement_metric="time_on_task",
    )
    assert sim["n_assigned"] == 4000

    analysis = service.analyze_experiment(running_experiment)
    stats = analysis.analysis

    assert stats.is_significant
    assert stats.lift > 0
    assert stats.sample_size == 4000
    assert analysis.recommendations[0].startswith("Roll out the winning variant")

    by_variant = {r.variant_id: r for r in analysis.results}
    for vid in ("control", "variant_1"):
        assert by_variant[vid].participants == sim["assigned"][vid]
        assert by_variant[vid].conversions == sim["conversions"][vid]
        assert by_variant[vid].metric("time_on_task").count == sim["assigned"][vid]

    assert by_variant["variant_1"].statistical_significance.is_significant
    stored = {r.variant_id: r for r in service.get_experiment_results(running_experiment)}
    assert stored["variant_1"].statistical_significance.is_significant

    payload = json.loads(json.dumps(analysis.to_dict()))
    assert payload["experiment_id"] == running_experiment
    assert payload["analysis"]["is_significant"] is True


def test_e2e_segments_and_dropouts(service):
    config = make_config(cultural_segments=[
        CulturalSegment("seg_maya", "Maya", "maya"),
        CulturalSegment("seg_ladino", "Ladino", "ladino"),
    ])
    experiment_id = launch(service, config)
    sim = simulate_traffic(
        service,
        experiment_id,
        n_users=600,
        dropout_rates={"control": 0.05, "variant_1": 0.05},
        cultures=["maya", "ladino"],
    )

    results = service.get_experiment_results(experiment_id)
    for r in results:
        assert sum(r.segment_counts.values()) == r.participants
        assert set(r.segment_counts) <= {"seg_maya", "seg_ladino"}
        assert r.dropouts == sim["dropouts"][r.variant_id]


def test_stopped_experiment_ignores_traffic(service, running_experiment):
    service.stop_experiment(running_experiment)
    sim = simulate_traffic(service, running_experiment, n_users=50)
    assert sim["n_skipped"] == 50
    assert service.get_experiment_config(running_experiment).status == ExperimentStatus.COMPLETED


def test_context_manager_stops_monitor():
    with ExperimentationService(settings=EngineSettings(monitor_interval_seconds=0.01)) as svc:
        svc.start_monitoring()
        assert svc.monitor.is_running
    assert not svc.monitor.is_running


def test_analysis_is_reproducible(service, running_experiment):
    simulate_traffic(service, running_experiment, n_users=500)
    first = service.analyze_experiment(running_experiment).analysis
    second = service.analyze_experiment(running_experiment).analysis
    assert first.p_value == pytest.approx(second.p_value)
    assert first.lift == pytest.approx(second.lift)
