"""
Experiment analysis.

StatisticalEngine compares every variant against control (results[0]) and
reports lift, p-value, confidence interval, effect size and power. Cultural
and neuroscience analyses aggregate externally supplied measurements only;
with nothing measured their scores stay None.
"""

import logging
from typing import Iterable, List, Optional, Sequence

import numpy as np

from .schema import (
    BiasReport,
    CulturalAnalysis,
    ExperimentConfig,
    ExperimentResult,
    NeuroscienceAnalysis,
    PowerAnalysis,
    StatisticalAnalysis,
    StatisticalSignificance,
    VariantComparison,
)
from .stats import (
    achieved_power,
    adjust_p_values,
    mde_proportion,
    proportions_test,
    required_sample_size,
)

logger = logging.getLogger(__name__)

CULTURAL_RELEVANCE_FLOOR = 0.7
LOCALIZATION_FLOOR = 0.7
CULTURAL_BIAS_SCORE_CEILING = 0.2
COGNITIVE_LOAD_FLOOR = 0.7
ATTENTION_FLOOR = 0.6


def select_winner(comparisons: Sequence[VariantComparison]) -> Optional[str]:
    """Significant arm that beats control with the largest lift, if any."""
    improving = [c for c in comparisons if c.is_significant and c.variant_rate > c.control_rate]
    if not improving:
        return None
    best = max(improving, key=lambda c: (c.lift, c.variant_rate - c.control_rate))
    return best.variant_id


class StatisticalEngine:
    """Frequentist comparison of conversion rates across arms."""

    def __init__(self, ci_level: float = 0.95):
        self.ci_level = ci_level

    def required_sample_size(self, config: ExperimentConfig) -> int:
        stat = config.statistical_config
        return required_sample_size(
            alpha=stat.alpha,
            power=stat.power,
            mde=stat.minimum_detectable_effect,
            baseline_rate=stat.baseline_rate,
            num_cultural_segments=len(config.cultural_segments),
            num_variants=len(config.variants),
        )

    def compare(
        self,
        config: ExperimentConfig,
        control: ExperimentResult,
        variants: Sequence[ExperimentResult],
    ) -> List[VariantComparison]:
        """
        Pairwise comparison of each variant against control, with the
        configured multiple-testing correction applied across comparisons.
        """
        stat = config.statistical_config
        raw = []
        for variant in variants:
            n_c, n_v = control.participants, variant.participants
            lift, p_value, ci_low, ci_high, effect = proportions_test(
                n_c, control.conversions, n_v, variant.conversions, self.ci_level
            )
            degenerate = n_c == 0 or n_v == 0
            raw.append(
                (
                    variant,
                    0.0 if degenerate else control.conversion_rate,
                    0.0 if degenerate else variant.conversion_rate,
                    lift,
                    p_value,
                    (ci_low, ci_high),
                    effect,
                )
            )

        adjusted = adjust_p_values([r[4] for r in raw], stat.multiple_testing_correction.value)
        return [
            VariantComparison(
                variant_id=variant.variant_id,
                control_rate=control_rate,
                variant_rate=variant_rate,
                lift=lift,
                p_value=p_value,
                adjusted_p_value=p_adj,
                confidence_interval=ci,
                effect_size=effect,
                is_significant=p_adj < stat.alpha,
            )
            for (variant, control_rate, variant_rate, lift, p_value, ci, effect), p_adj in zip(raw, adjusted)
        ]

    def analyze(self, config: ExperimentConfig, results: Sequence[ExperimentResult]) -> StatisticalAnalysis:
        """
        Analyze aggregated results.

        Args:
            config: Experiment configuration
            results: Per-variant results, control first

        Returns:
            StatisticalAnalysis whose top-level fields describe results[1]
            against control; all pairwise comparisons are in `comparisons`
        """
        sample_size = int(sum(r.participants for r in results))
        required = config.required_sample_size or self.required_sample_size(config)
        if len(results) < 2:
            return StatisticalAnalysis(
                sample_size=sample_size,
                power_analysis=PowerAnalysis(required_sample_size=required),
            )

        control = results[0]
        comparisons = self.compare(config, control, results[1:])
        first = comparisons[0]

        analysis = StatisticalAnalysis(
            control_conversion_rate=first.control_rate,
            variant_conversion_rate=first.variant_rate,
            lift=first.lift,
            p_value=first.adjusted_p_value,
            confidence_interval=first.confidence_interval,
            effect_size=first.effect_size,
            is_significant=first.is_significant,
            sample_size=sample_size,
            power_analysis=self.power_analysis(config, results, required),
            comparisons=comparisons,
            winner=select_winner(comparisons),
        )
        logger.info(
            f"Analysis {config.experiment_id}: lift={analysis.lift:.4f} p={analysis.p_value:.4f} "
            f"significant={analysis.is_significant} winner={analysis.winner} n={sample_size}"
        )
        return analysis

    def power_analysis(
        self,
        config: ExperimentConfig,
        results: Sequence[ExperimentResult],
        required: int,
    ) -> PowerAnalysis:
        """Power for the configured MDE at the current arm sizes (weakest pairing)."""
        stat = config.statistical_config
        control = results[0]
        baseline = control.conversion_rate if 0 < control.conversion_rate < 1 else stat.baseline_rate

        powers = [
            achieved_power(baseline, stat.minimum_detectable_effect, control.participants, r.participants, stat.alpha)
            for r in results[1:]
        ]
        smallest_arm = min(r.participants for r in results)
        detectable = mde_proportion(baseline, smallest_arm, stat.alpha, stat.power) if smallest_arm > 0 else None
        return PowerAnalysis(
            achieved_power=float(min(powers)) if powers else 0.0,
            required_sample_size=required,
            detectable_effect=detectable,
        )

    @staticmethod
    def significance_by_variant(analysis: StatisticalAnalysis) -> List[tuple]:
        """(variant_id, StatisticalSignificance) pairs for recording on the arms."""
        return [
            (
                c.variant_id,
                StatisticalSignificance(
                    p_value=c.adjusted_p_value,
                    confidence_interval=c.confidence_interval,
                    effect_size=c.effect_size,
                    is_significant=c.is_significant,
                ),
            )
            for c in analysis.comparisons
        ]


def _weighted_mean(values: Iterable[float], weights: Iterable[float]) -> Optional[float]:
    values = np.asarray(list(values), dtype=float)
    if values.size == 0:
        return None
    weights = np.asarray(list(weights), dtype=float)
    if weights.sum() <= 0:
        return float(values.mean())
    return float(np.average(values, weights=weights))


def analyze_cultural(
    config: ExperimentConfig,
    results: Sequence[ExperimentResult],
    bias: Optional[BiasReport] = None,
) -> CulturalAnalysis:
    """
    Aggregate cultural measurements across arms, weighted by participants.
    """
    measured = [m for r in results for m in r.cultural_metrics]
    cultural_bias = bias is not None and "cultural" in bias.bias_types
    if not measured:
        recommendations = []
        if config.cultural_segments:
            recommendations.append("No cultural measurements recorded yet; collect them before drawing conclusions")
        return CulturalAnalysis(bias_detected=cultural_bias, recommendations=recommendations)

    weights = [m.participants for m in measured]
    analysis = CulturalAnalysis(
        overall_cultural_fit=_weighted_mean((m.performance for m in measured), weights),
        cultural_relevance=_weighted_mean((m.cultural_relevance for m in measured), weights),
        localization_success=_weighted_mean((m.localized_success for m in measured), weights),
        bias_detected=cultural_bias or any(m.bias_score > CULTURAL_BIAS_SCORE_CEILING for m in measured),
        results=measured,
    )

    for m in measured:
        if m.cultural_relevance < CULTURAL_RELEVANCE_FLOOR:
            analysis.recommendations.append(f"Improve cultural relevance of content for {m.culture}")
        if m.localized_success < LOCALIZATION_FLOOR:
            analysis.recommendations.append(f"Improve localization for {m.culture}")
        if m.bias_score > CULTURAL_BIAS_SCORE_CEILING:
            analysis.recommendations.append(f"Review content for bias against {m.culture} participants")
    analysis.recommendations = list(dict.fromkeys(analysis.recommendations))
    return analysis


def analyze_neuroscience(config: ExperimentConfig, results: Sequence[ExperimentResult]) -> NeuroscienceAnalysis:
    measured = [m for r in results for m in r.neuroscience_metrics]
    if not measured:
        recommendations = []
        if config.neuroscience_objectives:
            recommendations.append("No neuroscience measurements recorded yet; validate objectives before concluding")
        return NeuroscienceAnalysis(recommendations=recommendations)

    analysis = NeuroscienceAnalysis(
        neuroplasticity_improvement=float(np.mean([m.measured for m in measured])),
        cognitive_load_optimization=float(np.mean([m.cognitive_load_score for m in measured])),
        attention_engagement=float(np.mean([m.attention_retention for m in measured])),
        results=measured,
    )
    for m in measured:
        if m.measured < m.expected:
            analysis.recommendations.append(
                f"Objective '{m.objective}' is below its expected improvement ({m.measured:.2f} < {m.expected:.2f})"
            )
    return analysis


def generate_recommendations(
    analysis: StatisticalAnalysis,
    results: Sequence[ExperimentResult],
    cultural: CulturalAnalysis,
    neuroscience: NeuroscienceAnalysis,
    bias: BiasReport,
) -> List[str]:
    """Actionable next steps from the statistical, cultural, neuroscience and bias results."""
    recommendations = []

    winner = next((c for c in analysis.comparisons if c.variant_id == analysis.winner), None)
    if winner is not None:
        recommendations.append(f"Roll out the winning variant {winner.variant_id} ({winner.lift * 100:.1f}% lift)")
    elif any(c.is_significant for c in analysis.comparisons):
        recommendations.append("Keep control: no variant beats it significantly")
    else:
        recommendations.append("Continue the experiment to reach statistical significance")

    required = analysis.power_analysis.required_sample_size
    if results and required:
        smallest = min(r.participants for r in results)
        if smallest < required:
            recommendations.append(
                f"Keep collecting data until every arm reaches {required} participants (smallest arm: {smallest})"
            )

    if cultural.bias_detected:
        recommendations.append("Review and correct detected cultural bias")
    if cultural.cultural_relevance is not None and cultural.cultural_relevance < CULTURAL_RELEVANCE_FLOOR:
        recommendations.append("Improve cultural relevance of content")
    if (
        neuroscience.cognitive_load_optimization is not None
        and neuroscience.cognitive_load_optimization < COGNITIVE_LOAD_FLOOR
    ):
        recommendations.append("Optimize cognitive load to improve learning")
    if neuroscience.attention_engagement is not None and neuroscience.attention_engagement < ATTENTION_FLOOR:
        recommendations.append("Apply techniques to improve attention retention")

    recommendations.extend(bias.recommendations)
    return list(dict.fromkeys(recommendations))
