"""
Power analysis and required sample size for conversion-rate experiments.

The minimum detectable effect is an absolute difference in rates.
"""

import math

import numpy as np
from scipy import stats

CULTURAL_SEGMENT_INFLATION = 0.2
EXTRA_VARIANT_INFLATION = 0.15


def required_sample_size(
    alpha: float,
    power: float,
    mde: float,
    baseline_rate: float,
    num_cultural_segments: int = 0,
    num_variants: int = 2,
) -> int:
    """
    Participants needed per arm.

    n = ceil((z_{alpha/2} + z_beta)^2 * 2p(1-p) / mde^2), inflated by 20% per
    cultural segment and by 15% per variant beyond the second.

    Args:
        alpha: Type I error rate
        power: Statistical power (1 - Type II)
        mde: Minimum detectable effect (absolute)
        baseline_rate: Expected control conversion rate
        num_cultural_segments: Number of cultural segments analysed separately
        num_variants: Number of arms including control

    Returns:
        Required sample size
    """
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")
    if not 0 < power < 1:
        raise ValueError(f"power must be in (0, 1), got {power}")
    if mde <= 0:
        raise ValueError(f"minimum detectable effect must be positive, got {mde}")
    if not 0 < baseline_rate < 1:
        raise ValueError(f"baseline rate must be in (0, 1), got {baseline_rate}")

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    n = math.ceil((z_alpha + z_beta) ** 2 * 2 * baseline_rate * (1 - baseline_rate) / mde ** 2)

    factor = 1.0
    if num_cultural_segments > 0:
        factor *= 1 + CULTURAL_SEGMENT_INFLATION * num_cultural_segments
    if num_variants > 2:
        factor *= 1 + EXTRA_VARIANT_INFLATION * (num_variants - 2)

    return int(math.ceil(n * factor))


def achieved_power(
    baseline_rate: float,
    mde: float,
    n_control: int,
    n_variant: int,
    alpha: float = 0.05,
) -> float:
    """
    Power to detect an absolute difference of mde with the current arm sizes.

    Returns:
        Statistical power (0-1); 0 when either arm is empty
    """
    if n_control <= 0 or n_variant <= 0 or mde <= 0:
        return 0.0

    p1 = min(max(baseline_rate, 1e-6), 1 - 1e-6)
    p2 = min(max(p1 + mde, 1e-6), 1 - 1e-6)
    se = math.sqrt(p1 * (1 - p1) / n_control + p2 * (1 - p2) / n_variant)
    if se == 0:
        return 0.0

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_effect = abs(p2 - p1) / se
    power = 1 - stats.norm.cdf(z_alpha - z_effect) + stats.norm.cdf(-z_alpha - z_effect)
    return float(np.clip(power, 0, 1))


def mde_proportion(
    baseline_rate: float,
    n_per_arm: int,
    alpha: float = 0.05,
    power: float = 0.8,
) -> float:
    """
    Smallest absolute effect detectable with n_per_arm participants in each arm.

    Returns:
        MDE as an absolute rate difference (inf for an empty arm)
    """
    if n_per_arm <= 0:
        return float("inf")

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)
    p = min(max(baseline_rate, 1e-6), 1 - 1e-6)
    return float((z_alpha + z_beta) * math.sqrt(2 * p * (1 - p) / n_per_arm))
