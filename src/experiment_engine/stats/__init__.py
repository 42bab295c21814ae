"""Experiment statistics module."""

from .srm import srm_chi_square, check_srm
from .power import required_sample_size, achieved_power, mde_proportion
from .hypothesis_tests import pooled_chi_square, proportions_test, cohens_h
from .correction import adjust_p_values

__all__ = [
    "srm_chi_square",
    "check_srm",
    "required_sample_size",
    "achieved_power",
    "mde_proportion",
    "pooled_chi_square",
    "proportions_test",
    "cohens_h",
    "adjust_p_values",
]
