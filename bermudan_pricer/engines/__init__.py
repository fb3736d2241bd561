from .banded import BandedList
from .binomial_tree import PcvBinomialTree, step_expectation
from .drift import DriftFactorTreeBuilder, TreeIntegrator, update_sum_us
from .lmm_tree import LmmBinomialTree
from .rate_annuity import (
    DistributionError,
    RateAnnuity,
    calculate_lognormal_terminal_values,
    calculate_normal_terminal_values,
)
