"""
Systematic bias detection over aggregated results.

Three checks, each contributing a fixed severity to the bias score (capped
at 1.0):

    selection  0.30  arm sizes deviate from the configured traffic split
    cultural   0.40  a cultural segment is under-represented in some arm
    survival   0.25  dropout rates differ too much between arms
"""

import logging
from typing import Dict, List, Optional, Sequence

from .config import EngineSettings
from .schema import BiasReport, ExperimentConfig, ExperimentResult
from .stats import check_srm

logger = logging.getLogger(__name__)

SEVERITY = {
    "selection": 0.3,
    "cultural": 0.4,
    "survival": 0.25,
}

RECOMMENDATIONS = {
    "selection": [
        "Review participant selection criteria",
        "Use stratified randomization",
    ],
    "cultural": [
        "Balance cultural representation across groups",
        "Consider subgroup analysis by culture",
    ],
    "survival": [
        "Investigate causes of differential dropout",
        "Apply targeted retention techniques",
    ],
}


def expected_shares(config: ExperimentConfig) -> Dict[str, float]:
    """Expected fraction of participants per variant from the traffic allocation."""
    shares: Dict[str, float] = {vid: 0.0 for vid in config.variant_ids()}
    for alloc in config.traffic_allocation:
        shares[alloc.variant_id] = shares.get(alloc.variant_id, 0.0) + alloc.percentage / 100.0
    return shares


class BiasDetector:
    def __init__(
        self,
        selection_threshold: float = 0.2,
        cultural_threshold: float = 0.2,
        dropout_threshold: float = 0.15,
    ):
        self.selection_threshold = selection_threshold
        self.cultural_threshold = cultural_threshold
        self.dropout_threshold = dropout_threshold

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "BiasDetector":
        return cls(
            selection_threshold=settings.selection_imbalance_threshold,
            cultural_threshold=settings.cultural_underrepresentation_threshold,
            dropout_threshold=settings.dropout_spread_threshold,
        )

    def analyze(self, config: ExperimentConfig, results: Sequence[ExperimentResult]) -> BiasReport:
        """
        Run every bias check.

        Returns:
            BiasReport with triggered types, capped score and recommendations
        """
        report = BiasReport()

        selection, srm_p = self.selection_bias(config, results)
        report.srm_p_value = srm_p
        if selection:
            report.bias_types.append("selection")
        if self.cultural_bias(config, results):
            report.bias_types.append("cultural")
        if self.survival_bias(results):
            report.bias_types.append("survival")

        report.bias_detected = bool(report.bias_types)
        report.bias_score = min(1.0, sum(SEVERITY[t] for t in report.bias_types))
        for bias_type in report.bias_types:
            report.recommendations.extend(RECOMMENDATIONS[bias_type])
        srm_note = srm_summary(report)
        if srm_note:
            report.recommendations.append(srm_note)

        if report.bias_detected:
            logger.warning(
                f"Bias detected in {config.experiment_id}: {report.bias_types} (score={report.bias_score:.2f})"
            )
        return report

    def selection_bias(self, config: ExperimentConfig, results: Sequence[ExperimentResult]):
        """
        Returns:
            Tuple of (flagged, srm_p_value); srm_p_value is None without traffic
        """
        total = sum(r.participants for r in results)
        if total == 0 or len(results) < 2:
            return False, None

        shares = expected_shares(config)
        fractions = [shares.get(r.variant_id, 0.0) for r in results]
        _, _, srm_p = check_srm([r.participants for r in results], fractions)

        flagged = False
        for result, share in zip(results, fractions):
            expected = total * share
            if expected <= 0:
                continue
            if abs(result.participants - expected) / expected > self.selection_threshold:
                flagged = True
        return flagged, srm_p

    def cultural_bias(self, config: ExperimentConfig, results: Sequence[ExperimentResult]) -> bool:
        segments = config.cultural_segments
        if not segments:
            return False

        default_share = 1.0 / len(segments)
        for result in results:
            counts = {s.segment_id: result.segment_counts.get(s.segment_id, 0) for s in segments}
            arm_total = sum(counts.values())
            if arm_total == 0:
                continue
            for segment in segments:
                expected = segment.expected_share if segment.expected_share is not None else default_share
                observed = counts[segment.segment_id] / arm_total
                if observed < expected * (1 - self.cultural_threshold):
                    logger.debug(
                        f"Segment {segment.segment_id} under-represented in {result.variant_id}: "
                        f"{observed:.3f} < expected {expected:.3f}"
                    )
                    return True
        return False

    def survival_bias(self, results: Sequence[ExperimentResult]) -> bool:
        rates: List[float] = [r.dropout_rate for r in results if r.participants > 0]
        if len(rates) < 2:
            return False
        return max(rates) - min(rates) > self.dropout_threshold


def srm_summary(report: BiasReport, alpha: float = 0.01) -> Optional[str]:
    """Human-readable sample-ratio-mismatch note, or None when the split looks fine."""
    if report.srm_p_value is None or report.srm_p_value >= alpha:
        return None
    return f"Sample ratio mismatch (p={report.srm_p_value:.4f}): allocation deviates from the configured split"
