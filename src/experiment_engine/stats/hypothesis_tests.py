"""
Frequentist tests for conversion-rate comparisons.

Pooled-proportion chi-square for the p-value, Wald interval on the rate
difference, relative lift and Cohen's h. Degenerate inputs (an empty arm, or
a pooled rate of exactly 0 or 1) give neutral results instead of NaN.
"""

import math
from typing import Tuple

from scipy import stats

P_VALUE_FLOOR = 0.001
P_VALUE_CEILING = 0.999


def pooled_chi_square(n1: int, x1: float, n2: int, x2: float) -> Tuple[float, float]:
    """
    Chi-square test (1 dof) of equal success rates using pooled expectations.

    Args:
        n1: Control participants
        x1: Control successes
        n2: Variant participants
        x2: Variant successes

    Returns:
        Tuple of (chi2_statistic, p_value). p_value is 1.0 for degenerate
        inputs and clamped to [0.001, 0.999] otherwise.
    """
    if n1 <= 0 or n2 <= 0:
        return 0.0, 1.0

    total = n1 + n2
    successes = x1 + x2
    p_pool = successes / total
    if p_pool <= 0 or p_pool >= 1:
        return 0.0, 1.0

    chi2 = 0.0
    for n, x in ((n1, x1), (n2, x2)):
        expected_success = n * p_pool
        expected_failure = n * (1 - p_pool)
        chi2 += (x - expected_success) ** 2 / expected_success
        chi2 += ((n - x) - expected_failure) ** 2 / expected_failure

    p_value = float(stats.chi2.sf(chi2, df=1))
    return float(chi2), min(P_VALUE_CEILING, max(P_VALUE_FLOOR, p_value))


def cohens_h(p1: float, p2: float) -> float:
    """Effect size for two proportions."""
    p1 = min(1.0, max(0.0, p1))
    p2 = min(1.0, max(0.0, p2))
    return 2 * math.asin(math.sqrt(p2)) - 2 * math.asin(math.sqrt(p1))


def proportions_test(
    n1: int,
    x1: float,
    n2: int,
    x2: float,
    ci_level: float = 0.95,
) -> Tuple[float, float, float, float, float]:
    """
    Compare a variant's conversion rate against control.

    Args:
        n1: Control sample size
        x1: Control conversions
        n2: Variant sample size
        x2: Variant conversions
        ci_level: Confidence level for the interval on the rate difference

    Returns:
        Tuple of (lift, p_value, ci_low, ci_high, effect_size) where lift is
        relative to the control rate (0 when the control rate is 0)
    """
    if n1 <= 0 or n2 <= 0:
        return 0.0, 1.0, 0.0, 0.0, 0.0

    p1 = x1 / n1
    p2 = x2 / n2
    lift = (p2 - p1) / p1 if p1 > 0 else 0.0

    _, p_value = pooled_chi_square(n1, x1, n2, x2)

    p_pool = (x1 + x2) / (n1 + n2)
    se = math.sqrt(max(p_pool * (1 - p_pool), 0.0) * (1 / n1 + 1 / n2))
    z_crit = stats.norm.ppf((1 + ci_level) / 2)
    diff = p2 - p1
    ci_low = diff - z_crit * se
    ci_high = diff + z_crit * se

    return float(lift), float(p_value), float(ci_low), float(ci_high), float(cohens_h(p1, p2))
