import numpy as np
import pytest

from bermudan_pricer.engines.banded import BandedList
from bermudan_pricer.engines.binomial_tree import PcvBinomialTree
from bermudan_pricer.engines.drift import DriftFactorTreeBuilder, TreeIntegrator, update_sum_us
from bermudan_pricer.engines.rate_annuity import RateAnnuity
from bermudan_pricer.instruments import DistributionType


@pytest.fixture
def tree():
    # unit volatility: cumulative variance at the period ends is 0.5 and 1.5
    return PcvBinomialTree.build([2, 3, 2], [0.5, 1.0, 0.5], [1.0, 1.0, 1.0])


def test_integrate_unit_increments(tree):
    increments = [BandedList(m + 1, 0, np.ones(m + 1)) for m in range(tree.total_step_count)]
    results = TreeIntegrator(tree).integrate(1, increments)
    assert len(results) == 2
    np.testing.assert_allclose(results[0], np.full(3, 0.5))
    np.testing.assert_allclose(results[1], np.full(6, 1.5))


def test_integrate_stops_at_rate_index(tree):
    increments = [BandedList(m + 1, 0, np.ones(m + 1)) for m in range(tree.total_step_count)]
    results = TreeIntegrator(tree).integrate(0, increments)
    assert len(results) == 1
    assert len(results[0]) == 3


@pytest.mark.parametrize("kind, expected", [
    (DistributionType.LOG_NORMAL, 0.1 / 2.1),
    (DistributionType.NORMAL, 2.0 / 2.1),
])
def test_drift_factors_of_constant_pairs(tree, kind, expected):
    end = tree.step_maps[1]
    ra = RateAnnuity(np.full(end + 1, 0.1), np.full(end + 1, 2.0))
    factors = DriftFactorTreeBuilder(tree, kind).build(1, ra)
    assert len(factors) == end + 1
    assert factors[end] is None
    for m in range(end):
        assert len(factors[m]) == m + 1
        np.testing.assert_allclose(factors[m].data, expected)


def test_drift_factor_tree_checks_length(tree):
    ra = RateAnnuity(np.ones(3), np.ones(3))
    with pytest.raises(ValueError):
        DriftFactorTreeBuilder(tree, DistributionType.LOG_NORMAL).build(1, ra)


def test_update_sum_us():
    sum_us = [None, None]
    drift_us = [np.array([1.0]), np.array([1.0, 2.0])]
    update_sum_us(1, 0.5, drift_us, sum_us)
    np.testing.assert_allclose(sum_us[0], [0.5])
    np.testing.assert_allclose(sum_us[1], [0.5, 1.0])
    update_sum_us(0, 1.0, drift_us, sum_us)
    np.testing.assert_allclose(sum_us[0], [1.5])
    np.testing.assert_allclose(sum_us[1], [0.5, 1.0])
    # the inputs are not aliased
    np.testing.assert_allclose(drift_us[0], [1.0])


def test_update_sum_us_rejects_nan():
    with pytest.raises(FloatingPointError):
        update_sum_us(0, 1.0, [np.array([np.nan])], [None])
