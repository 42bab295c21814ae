"""Tests for the statistical engine and the cultural / neuroscience analyses."""
import pytest

from conftest import make_config
from experiment_engine import (
    BiasReport,
    CulturalMetricResult,
    CulturalSegment,
    ExperimentResult,
    MultipleTestingCorrection,
    NeuroscienceMetricResult,
    NeuroscienceObjective,
    StatisticalConfig,
    StatisticalEngine,
)
from experiment_engine.analyze import analyze_cultural, analyze_neuroscience, generate_recommendations


def _result(variant_id, participants, conversions, **kwargs):
    rate = conversions / participants if participants else 0.0
    return ExperimentResult(
        experiment_id="exp_1",
        variant_id=variant_id,
        participants=participants,
        conversions=conversions,
        conversion_rate=rate,
        **kwargs,
    )


def test_empty_arm_is_neutral():
    """One arm with zero participants -> not significant, p=1, no exception."""
    analysis = StatisticalEngine().analyze(make_config(), [_result("control", 0, 0), _result("variant_1", 120, 30)])
    assert analysis.is_significant is False
    assert analysis.p_value == 1.0
    assert analysis.control_conversion_rate == 0.0
    assert analysis.variant_conversion_rate == 0.0
    assert analysis.sample_size == 120


def test_both_arms_empty():
    analysis = StatisticalEngine().analyze(make_config(), [_result("control", 0, 0), _result("variant_1", 0, 0)])
    assert analysis.p_value == 1.0
    assert analysis.lift == 0.0
    assert analysis.power_analysis.achieved_power == 0.0
    assert analysis.power_analysis.detectable_effect is None


def test_significant_lift():
    analysis = StatisticalEngine().analyze(
        make_config(), [_result("control", 2000, 200), _result("variant_1", 2000, 300)]
    )
    assert analysis.is_significant
    assert analysis.lift == pytest.approx(0.5)
    low, high = analysis.confidence_interval
    assert low < 0.05 < high
    assert analysis.power_analysis.required_sample_size == 566
    assert analysis.power_analysis.achieved_power > 0.9


def test_no_difference_not_significant():
    analysis = StatisticalEngine().analyze(
        make_config(), [_result("control", 500, 50), _result("variant_1", 500, 52)]
    )
    assert not analysis.is_significant
    assert analysis.p_value > 0.05


def test_pairwise_comparisons_with_correction():
    config = make_config(
        split=(34, 33, 33),
        statistical_config=StatisticalConfig(multiple_testing_correction=MultipleTestingCorrection.BONFERRONI),
    )
    results = [_result("control", 1000, 100), _result("variant_1", 1000, 125), _result("variant_2", 1000, 101)]
    analysis = StatisticalEngine().analyze(config, results)

    assert [c.variant_id for c in analysis.comparisons] == ["variant_1", "variant_2"]
    for c in analysis.comparisons:
        assert c.adjusted_p_value >= c.p_value
        assert c.adjusted_p_value == pytest.approx(min(1.0, c.p_value * 2))
    assert analysis.p_value == analysis.comparisons[0].adjusted_p_value


def test_significance_by_variant():
    analysis = StatisticalEngine().analyze(
        make_config(), [_result("control", 2000, 200), _result("variant_1", 2000, 300)]
    )
    pairs = StatisticalEngine.significance_by_variant(analysis)
    assert [vid for vid, _ in pairs] == ["variant_1"]
    assert pairs[0][1].is_significant


def test_cultural_analysis_without_measurements():
    config = make_config(cultural_segments=[CulturalSegment("seg_maya", "Maya", "maya")])
    cultural = analyze_cultural(config, [_result("control", 10, 1), _result("variant_1", 10, 2)])
    assert cultural.overall_cultural_fit is None
    assert cultural.cultural_relevance is None
    assert cultural.localization_success is None
    assert cultural.recommendations


def test_cultural_analysis_weighted():
    control = _result(
        "control", 100, 10,
        cultural_metrics=[CulturalMetricResult("maya", 30, performance=0.9, cultural_relevance=0.8, localized_success=0.9)],
    )
    variant = _result(
        "variant_1", 100, 12,
        cultural_metrics=[CulturalMetricResult("garifuna", 10, performance=0.5, cultural_relevance=0.4,
                                               localized_success=0.6, bias_score=0.35)],
    )
    cultural = analyze_cultural(make_config(), [control, variant])
    assert cultural.overall_cultural_fit == pytest.approx((0.9 * 30 + 0.5 * 10) / 40)
    assert cultural.bias_detected
    assert "Improve cultural relevance of content for garifuna" in cultural.recommendations
    assert "Improve localization for garifuna" in cultural.recommendations


def test_cultural_bias_from_report():
    cultural = analyze_cultural(make_config(), [], BiasReport(bias_detected=True, bias_types=["cultural"]))
    assert cultural.bias_detected


def test_neuroscience_analysis():
    config = make_config(neuroscience_objectives=[
        NeuroscienceObjective("obj1", "Attention", expected_improvement=0.2, validation_method="eeg")
    ])
    assert analyze_neuroscience(config, [_result("control", 0, 0)]).attention_engagement is None

    measured = NeuroscienceMetricResult("Attention", measured=0.1, expected=0.2,
                                        cognitive_load_score=0.6, attention_retention=0.5)
    neuro = analyze_neuroscience(config, [_result("variant_1", 10, 1, neuroscience_metrics=[measured])])
    assert neuro.cognitive_load_optimization == pytest.approx(0.6)
    assert neuro.attention_engagement == pytest.approx(0.5)
    assert any("below its expected improvement" in r for r in neuro.recommendations)


def test_recommendations():
    config = make_config()
    engine = StatisticalEngine()
    results = [_result("control", 2000, 200), _result("variant_1", 2000, 300)]
    analysis = engine.analyze(config, results)

    neuro = analyze_neuroscience(config, [_result("variant_1", 10, 1, neuroscience_metrics=[
        NeuroscienceMetricResult("Attention", 0.3, 0.2, cognitive_load_score=0.5, attention_retention=0.5)
    ])])
    bias = BiasReport(bias_detected=True, bias_types=["survival"],
                      recommendations=["Investigate causes of differential dropout"])
    recs = generate_recommendations(analysis, results, analyze_cultural(config, results), neuro, bias)

    assert recs[0].startswith("Roll out the winning variant")
    assert "Optimize cognitive load to improve learning" in recs
    assert "Apply techniques to improve attention retention" in recs
    assert "Investigate causes of differential dropout" in recs


def test_recommendations_keep_collecting():
    config = make_config()
    results = [_result("control", 50, 5), _result("variant_1", 50, 6)]
    analysis = StatisticalEngine().analyze(config, results)
    recs = generate_recommendations(analysis, results, analyze_cultural(config, results),
                                    analyze_neuroscience(config, results), BiasReport())
    assert recs[0] == "Continue the experiment to reach statistical significance"
    assert any("566 participants" in r for r in recs)


def test_winner_chosen_across_all_arms():
    """A significant third arm wins even when the first variant is flat."""
    config = make_config(split=(34, 33, 33))
    results = [_result("control", 1000, 100), _result("variant_1", 1000, 101), _result("variant_2", 1000, 200)]
    analysis = StatisticalEngine().analyze(config, results)

    assert not analysis.is_significant
    assert analysis.comparisons[1].is_significant
    assert analysis.winner == "variant_2"

    recs = generate_recommendations(analysis, results, analyze_cultural(config, results),
                                    analyze_neuroscience(config, results), BiasReport())
    assert recs[0].startswith("Roll out the winning variant variant_2")


def test_winner_has_largest_lift():
    config = make_config(split=(34, 33, 33))
    results = [_result("control", 2000, 200), _result("variant_1", 2000, 300), _result("variant_2", 2000, 400)]
    analysis = StatisticalEngine().analyze(config, results)
    assert all(c.is_significant for c in analysis.comparisons)
    assert analysis.winner == "variant_2"


def test_no_winner_when_variant_significantly_worse():
    config = make_config()
    results = [_result("control", 2000, 300), _result("variant_1", 2000, 200)]
    analysis = StatisticalEngine().analyze(config, results)
    assert analysis.is_significant
    assert analysis.winner is None

    recs = generate_recommendations(analysis, results, analyze_cultural(config, results),
                                    analyze_neuroscience(config, results), BiasReport())
    assert recs[0] == "Keep control: no variant beats it significantly"
