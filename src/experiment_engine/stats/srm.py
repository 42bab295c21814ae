"""
Sample Ratio Mismatch (SRM) chi-square test.

Detects if the observed split of participants across arms deviates
significantly from the configured traffic allocation.
"""

from typing import Sequence, Tuple

import numpy as np
from scipy import stats


def srm_chi_square(
    observed: Sequence[int],
    expected_fractions: Sequence[float],
) -> Tuple[float, float]:
    """
    Chi-square goodness-of-fit test for sample ratio mismatch.

    H0: actual split equals the expected fractions
    H1: actual split differs

    Args:
        observed: Participants per arm
        expected_fractions: Expected share per arm (normalized internally)

    Returns:
        Tuple of (chi2_statistic, p_value)
    """
    obs = np.asarray(observed, dtype=float)
    frac = np.asarray(expected_fractions, dtype=float)
    n_total = obs.sum()
    if n_total == 0 or len(obs) < 2 or frac.sum() <= 0:
        return 0.0, 1.0

    expected = n_total * frac / frac.sum()
    mask = expected > 0
    if mask.sum() < 2:
        return 0.0, 1.0

    chi2 = np.sum((obs[mask] - expected[mask]) ** 2 / expected[mask])
    p_value = stats.chi2.sf(chi2, df=int(mask.sum()) - 1)

    return float(chi2), float(p_value)


def check_srm(
    observed: Sequence[int],
    expected_fractions: Sequence[float],
    alpha: float = 0.01,
) -> Tuple[bool, float, float]:
    """
    Check for sample ratio mismatch.

    Returns:
        Tuple of (srm_passed, chi2_statistic, p_value)
    """
    chi2, p_value = srm_chi_square(observed, expected_fractions)
    srm_passed = p_value >= alpha
    return srm_passed, chi2, p_value
