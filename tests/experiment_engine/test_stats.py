"""Tests for the statistics helpers."""
import math

import pytest

from experiment_engine.stats import (
    achieved_power,
    adjust_p_values,
    check_srm,
    cohens_h,
    mde_proportion,
    pooled_chi_square,
    proportions_test,
    required_sample_size,
    srm_chi_square,
)


def test_pooled_chi_square_known():
    """20/100 vs 10/100 -> chi2 ~ 3.92, p just under 0.05."""
    chi2, p = pooled_chi_square(100, 20, 100, 10)
    assert chi2 == pytest.approx(3.9216, abs=1e-3)
    assert 0.04 < p < 0.05


def test_p_value_clamped():
    _, p_high = pooled_chi_square(1000, 100, 1000, 100)
    _, p_low = pooled_chi_square(1000, 900, 1000, 100)
    assert p_high == 0.999
    assert p_low == 0.001


@pytest.mark.parametrize("args", [(0, 0, 100, 10), (100, 10, 0, 0), (100, 0, 100, 0), (50, 50, 50, 50)])
def test_degenerate_inputs_neutral(args):
    _, p = pooled_chi_square(*args)
    assert p == 1.0


def test_proportions_test_lift_and_ci():
    lift, p, ci_low, ci_high, effect = proportions_test(1000, 100, 1000, 150)
    assert lift == pytest.approx(0.5)
    assert ci_low < 0.05 < ci_high
    assert p < 0.01
    assert effect > 0


def test_proportions_test_empty_arm():
    assert proportions_test(0, 0, 100, 10) == (0.0, 1.0, 0.0, 0.0, 0.0)


def test_proportions_test_zero_control_rate():
    lift, _, _, _, _ = proportions_test(100, 0, 100, 10)
    assert lift == 0.0


def test_cohens_h_symmetric():
    assert cohens_h(0.1, 0.2) == pytest.approx(-cohens_h(0.2, 0.1))
    assert cohens_h(0.3, 0.3) == 0.0


def test_required_sample_size_known():
    """alpha=0.05, power=0.8, MDE=0.05, p=0.1 -> 566 per arm."""
    assert required_sample_size(0.05, 0.8, 0.05, 0.1) == 566


def test_required_sample_size_inflation():
    base = required_sample_size(0.05, 0.8, 0.05, 0.1)
    assert required_sample_size(0.05, 0.8, 0.05, 0.1, num_cultural_segments=2) == math.ceil(base * 1.4)
    assert required_sample_size(0.05, 0.8, 0.05, 0.1, num_variants=3) == math.ceil(base * 1.15)
    assert required_sample_size(0.05, 0.8, 0.05, 0.1, num_variants=2) == base


def test_required_sample_size_non_increasing_in_mde():
    sizes = [required_sample_size(0.05, 0.8, mde / 100, 0.2) for mde in range(1, 40)]
    assert all(a >= b for a, b in zip(sizes, sizes[1:]))


def test_required_sample_size_rejects_bad_inputs():
    with pytest.raises(ValueError):
        required_sample_size(0.05, 0.8, 0.0, 0.1)
    with pytest.raises(ValueError):
        required_sample_size(1.5, 0.8, 0.05, 0.1)


def test_achieved_power():
    assert achieved_power(0.1, 0.05, 0, 100) == 0.0
    small = achieved_power(0.1, 0.05, 100, 100)
    large = achieved_power(0.1, 0.05, 2000, 2000)
    assert 0 < small < large <= 1
    assert 0.65 < achieved_power(0.1, 0.05, 566, 566) < 0.85


def test_mde_proportion():
    assert mde_proportion(0.1, 0) == float("inf")
    assert mde_proportion(0.1, 1000) < mde_proportion(0.1, 100)


def test_srm_balanced_and_imbalanced():
    passed, _, p = check_srm([500, 500], [0.5, 0.5])
    assert passed
    assert p > 0.9

    passed, _, p = check_srm([900, 100], [0.5, 0.5])
    assert not passed
    assert p < 0.01


def test_srm_k_arms_weighted():
    passed, _, _ = check_srm([200, 300, 500], [20, 30, 50])
    assert passed
    chi2, p = srm_chi_square([0, 0, 0], [1, 1, 1])
    assert (chi2, p) == (0.0, 1.0)


def test_bonferroni():
    assert adjust_p_values([0.01, 0.04], "bonferroni") == pytest.approx([0.02, 0.08])
    assert adjust_p_values([0.6, 0.7], "bonferroni") == [1.0, 1.0]


def test_benjamini_hochberg():
    assert adjust_p_values([0.01, 0.04, 0.03], "fdr") == pytest.approx([0.03, 0.04, 0.04])


def test_single_comparison_unadjusted():
    assert adjust_p_values([0.03], "bonferroni") == [0.03]
    assert adjust_p_values([0.03, 0.2], "none") == [0.03, 0.2]


def test_unknown_correction():
    with pytest.raises(ValueError):
        adjust_p_values([0.01, 0.02], "holm")
