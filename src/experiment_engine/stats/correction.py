"""
Multiple-testing correction for pairwise variant comparisons.
"""

from typing import List, Sequence

import numpy as np


def adjust_p_values(p_values: Sequence[float], method: str = "fdr") -> List[float]:
    """
    Adjust p-values for the number of comparisons.

    Args:
        p_values: Raw p-values
        method: 'bonferroni', 'fdr' (Benjamini-Hochberg) or 'none'

    Returns:
        Adjusted p-values in the original order, capped at 1
    """
    p_arr = np.asarray(p_values, dtype=float)
    n = len(p_arr)
    if n <= 1 or method == "none":
        return [float(p) for p in p_arr]

    if method == "bonferroni":
        return [float(p) for p in np.minimum(p_arr * n, 1.0)]

    if method == "fdr":
        return _benjamini_hochberg(p_arr)

    raise ValueError(f"Unknown correction method: {method}")


def _benjamini_hochberg(p_arr: np.ndarray) -> List[float]:
    n = len(p_arr)
    order = np.argsort(p_arr)
    ranks = np.arange(1, n + 1)
    scaled = p_arr[order] * n / ranks
    # Enforce monotonicity from the largest p-value down
    p_adj = np.minimum.accumulate(scaled[::-1])[::-1]
    p_adj = np.minimum(p_adj, 1.0)

    inv_order = np.argsort(order)
    return [float(p) for p in p_adj[inv_order]]
