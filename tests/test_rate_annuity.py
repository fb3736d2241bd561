import numpy as np
import pytest

from bermudan_pricer.engines.binomial_tree import PcvBinomialTree, step_expectation
from bermudan_pricer.engines.rate_annuity import (
    DistributionError,
    RateAnnuity,
    calculate_lognormal_terminal_values,
    calculate_normal_terminal_values,
)
from bermudan_pricer.instruments import DistributionType


@pytest.fixture
def tree():
    return PcvBinomialTree.build([10], [1.0], [1.0])


def test_rate_annuity_components():
    ra = RateAnnuity(np.array([1.0, 2.0]), np.array([2.0, 4.0]))
    np.testing.assert_allclose(ra.rate, [0.5, 0.5])
    np.testing.assert_allclose(ra.sum(), [3.0, 6.0])
    np.testing.assert_allclose(ra.factor(DistributionType.LOG_NORMAL), [1 / 3, 1 / 3])
    np.testing.assert_allclose(ra.factor("normal"), [2 / 3, 2 / 3])
    assert len(ra) == 2
    assert len(ra[1:]) == 1

    doubled = ra + ra
    np.testing.assert_allclose(doubled.value, [2.0, 4.0])
    halved = 0.5 * ra
    np.testing.assert_allclose(halved.annuity, [1.0, 2.0])
    zero = ra - ra
    np.testing.assert_allclose(zero.value, [0.0, 0.0])


def test_step_expectation_on_pairs():
    up = RateAnnuity.from_rate(0.5, 4.0)
    down = RateAnnuity(1.0, 2.0)
    mean = step_expectation(0, 0.25, up, down)
    assert mean.value == pytest.approx(1.25)
    assert mean.annuity == pytest.approx(2.5)


def test_lognormal_values_match_mean(tree):
    values = calculate_lognormal_terminal_values(tree, 0.05, 10, 0.2)
    assert len(values) == 11
    assert np.all(values > 0.0)
    assert np.all(np.diff(values) > 0.0)
    assert tree.calculate_expectation(10, values) == pytest.approx(0.05, rel=1e-12)


def test_lognormal_log_spacing(tree):
    values = calculate_lognormal_terminal_values(tree, 0.05, 10, 0.2)
    np.testing.assert_allclose(np.diff(np.log(values)), 0.2 * tree.jump_size)


def test_lognormal_with_adjustments_keeps_mean(tree):
    adj = np.linspace(-0.1, 0.3, 11)
    values = calculate_lognormal_terminal_values(tree, 0.02, 10, 0.3, adj)
    assert tree.calculate_expectation(10, values) == pytest.approx(0.02, rel=1e-12)


def test_lognormal_overflow():
    tree = PcvBinomialTree.build([100], [1.0], [1.0])
    with pytest.raises(OverflowError):
        calculate_lognormal_terminal_values(tree, 0.05, 100, 1.0e4)


def test_normal_values_match_mean(tree):
    values = calculate_normal_terminal_values(tree, 0.02, 10, 0.01)
    assert tree.calculate_expectation(10, values) == pytest.approx(0.02, rel=1e-12)
    np.testing.assert_allclose(np.diff(values), 0.01 * tree.jump_size)


def test_normal_values_with_annuities(tree):
    annuities = np.linspace(0.9, 1.1, 11)
    sum_us = np.linspace(0.0, 0.2, 11)
    values = calculate_normal_terminal_values(
        tree, 0.02, 10, 0.01, None, sum_us, annuities)
    assert tree.calculate_expectation(10, values) == pytest.approx(0.02, rel=1e-12)


def test_normal_lower_bound_truncates_and_keeps_mean(tree):
    bound = -0.05
    values = calculate_normal_terminal_values(tree, 0.001, 10, 0.05, bound)
    assert values.min() >= bound - 1e-15
    assert np.sum(np.isclose(values, bound)) >= 1
    assert tree.calculate_expectation(10, values) == pytest.approx(0.001, rel=1e-10)


def test_normal_lower_bound_not_binding(tree):
    free = calculate_normal_terminal_values(tree, 0.02, 10, 0.001)
    bounded = calculate_normal_terminal_values(tree, 0.02, 10, 0.001, -1.0)
    np.testing.assert_allclose(free, bounded)


def test_normal_lower_bound_above_mean(tree):
    with pytest.raises(ValueError):
        calculate_normal_terminal_values(tree, 0.001, 10, 0.01, 0.01)


def test_normal_zero_weight(tree):
    with pytest.raises(DistributionError):
        calculate_normal_terminal_values(
            tree, 0.02, 10, 0.01, -1.0, np.zeros(11), np.zeros(11))
    assert issubclass(DistributionError, ArithmeticError)
