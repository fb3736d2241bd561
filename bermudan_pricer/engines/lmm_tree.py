import logging
import math

import numpy as np

from ..instruments import DistributionType
from .binomial_tree import PcvBinomialTree, step_expectation
from .drift import DriftFactorTreeBuilder, TreeIntegrator, update_sum_us
from .rate_annuity import (
    RateAnnuity,
    calculate_lognormal_terminal_values,
    calculate_normal_terminal_values,
)

logger = logging.getLogger(__name__)


class LmmBinomialTree:
    """One-factor Libor Market Model on a binomial lattice.

    Tenor times ``T_0 < ... < T_N`` define ``N`` forward rates; rate ``i``
    resets at ``T_i`` and matures at ``T_{i+1}``. Lattice period ``i`` ends at
    ``T_i``, so rate ``i`` is known on the states at step ``step_maps[i]``.

    Everything is expressed in the terminal measure (numeraire ``P(T_N)``):
    each rate is carried as a ``RateAnnuity`` pair whose expectation is a
    martingale, and the drift of earlier rates is integrated from the
    distributions of the later ones. Rates are therefore generated last
    first.

    The ``betas`` array is held by reference; a calibrator may overwrite its
    entries between evaluations.
    """

    def __init__(self, tree, tenor_times, zero_prices, terminal_discount_factor,
                 betas, kind, lower_bound=-1.0):
        self._tree = tree
        self._tenor_times = tenor_times
        self._zero_prices = zero_prices
        self._terminal_discount_factor = terminal_discount_factor
        self._betas = betas
        self._kind = DistributionType(kind)
        self._lower_bound = lower_bound

    @classmethod
    def create(cls, tenor_times, discount_factors, step_counts, kind, betas,
               common_volatility_fn=None, lower_bound=-1.0):
        """Build the lattice.

        Parameters
        ----------
        tenor_times : sequence of float
            ``T_0 .. T_N`` in years, strictly increasing and positive.
        discount_factors : sequence of float
            ``P(T_0) .. P(T_N)`` from the pricing date.
        step_counts : sequence of int
            Steps in each of the ``N`` periods.
        kind : DistributionType or str
        betas : numpy.ndarray
            One volatility multiplier per rate; kept by reference.
        common_volatility_fn : callable, optional
            ``sigma(t)`` such that the cumulative variance to ``t`` is
            ``sigma(t)^2 t``. Defaults to a flat unit volatility.
        lower_bound : float or None
            Floor on normal rates ``delta L``; ignored for log-normal rates.
        """
        tenor_times = np.asarray(tenor_times, dtype=float)
        discount_factors = np.asarray(discount_factors, dtype=float)
        rate_count = len(tenor_times) - 1
        if rate_count < 1:
            raise ValueError("at least two tenor times are required")
        if len(discount_factors) != rate_count + 1:
            raise ValueError("one discount factor per tenor time is required")
        if len(step_counts) != rate_count:
            raise ValueError("one step count per reset interval is required")
        if not isinstance(betas, np.ndarray):
            betas = np.asarray(betas, dtype=float)
        if len(betas) != rate_count:
            raise ValueError("one beta per forward rate is required")
        if np.any(np.diff(tenor_times) <= 0.0) or tenor_times[0] <= 0.0:
            raise ValueError("tenor times must be positive and strictly increasing")

        terminal_discount = float(discount_factors[rate_count])
        intervals = np.empty(rate_count)
        sigmas = np.empty(rate_count)
        t = v = 0.0
        for i in range(rate_count):
            t0, v0 = t, v
            t = float(tenor_times[i])
            if common_volatility_fn is None:
                v = t
            else:
                v = common_volatility_fn(t) ** 2 * t
            dt = intervals[i] = t - t0
            sigmas[i] = math.sqrt((v - v0) / dt)
        zero_prices = discount_factors / terminal_discount
        zero_prices[rate_count] = 1.0

        tree = PcvBinomialTree.build(step_counts, intervals, sigmas)
        logger.debug("LMM lattice: %d rates, %d steps, kind=%s",
                     rate_count, tree.total_step_count, DistributionType(kind).value)
        return cls(tree, tenor_times, zero_prices, terminal_discount,
                   betas, kind, lower_bound)

    # ------------------------------------------------------------------
    # Properties and simple queries
    # ------------------------------------------------------------------
    @property
    def tree(self):
        return self._tree

    @property
    def betas(self):
        return self._betas

    @property
    def distribution(self):
        return self._kind

    @property
    def rate_count(self):
        return len(self._tenor_times) - 1

    @property
    def terminal_discount_factor(self):
        return self._terminal_discount_factor

    @property
    def zero_prices(self):
        """Discount factors relative to the terminal date."""
        return self._zero_prices

    def get_reset_time(self, rate_index):
        self._check_rate_index(rate_index)
        return float(self._tenor_times[rate_index])

    def get_reset_step_count(self, rate_index):
        self._check_rate_index(rate_index)
        return self._tree.step_maps[rate_index]

    def get_current_rate_index_at_time(self, time):
        """Index of the last rate reset at or before ``time`` (-1 if none)."""
        if time < 0:
            raise ValueError("time must be non-negative")
        for i, tenor in enumerate(self._tenor_times):
            if time < tenor:
                return i - 1
        return len(self._tenor_times) - 1

    def get_step_index_at_time(self, time):
        """Lattice step reached at ``time``, interpolated inside a period."""
        if time < 0:
            raise ValueError("time must be non-negative")
        maps = self._tree.step_maps
        tenors = self._tenor_times
        for i in range(len(maps)):
            if time >= tenors[i]:
                continue
            if i == 0:
                return int(math.floor(time * maps[0] / tenors[0] + 1e-6))
            s0 = maps[i - 1]
            t0 = tenors[i - 1]
            return s0 + int(math.floor((time - t0) * (maps[i] - s0) / (tenors[i] - t0) + 1e-6))
        return maps[-1]

    def calculate_expectation_at_expiry(self, rate_index, values):
        """Discounted expectation of ``values`` on the reset states of a rate."""
        return self._terminal_discount_factor * self._tree.calculate_expectation(
            self._tree.step_maps[rate_index], values)

    def _check_rate_index(self, rate_index):
        if not 0 <= rate_index < self.rate_count:
            raise IndexError(f"rate index {rate_index} outside [0, {self.rate_count})")

    # ------------------------------------------------------------------
    # Forward rates
    # ------------------------------------------------------------------
    def enumerate_rates(self):
        """Yield each rate's ``RateAnnuity`` states at its reset step, last first."""
        last = self.rate_count - 1
        ra = self._last_rate_annuities()
        yield ra
        sum_us = [None] * last
        builder = DriftFactorTreeBuilder(self._tree, self._kind)
        integrator = TreeIntegrator(self._tree)
        for t in range(last - 1, -1, -1):
            ra = self._roll_back_rate(t, ra, sum_us, builder, integrator)
            yield ra

    def calculate_swap_rates(self, start_rate_index, weights):
        """Co-terminal swap ``RateAnnuity`` states at the reset of ``start_rate_index``.

        The swap value is the sum of the rate values and its annuity the sum
        of ``weights[j] * A_j`` over the rates ``j >= start_rate_index``.
        """
        self._check_rate_index(start_rate_index)
        last = self.rate_count - 1
        ra = self._last_rate_annuities()
        swaps = RateAnnuity(ra.value.copy(), weights[last] * ra.annuity)
        _, swaps = self._advance_swap_rates(
            start_rate_index, last, ra, swaps, [None] * last, weights)
        return swaps

    def evaluate_swaption(self, start_rate_index, sign, strike, weights):
        """Value of the European swaption on the co-terminal swap at ``start_rate_index``."""
        swaps = self.calculate_swap_rates(start_rate_index, weights)
        values = self._exercise_values(sign, strike, swaps)
        return self.calculate_expectation_at_expiry(start_rate_index, values)

    def evaluate_bermudan_swaption(self, start_rate_index, last_call_rate_index,
                                   signs, strikes, weights):
        """Value of a Bermudan swaption exercisable at the resets of the rates.

        Exercise at reset ``t`` delivers ``sign_t (V - K_t A)`` on the
        co-terminal swap starting there. Reset dates after
        ``last_call_rate_index`` only feed the swap distributions; a zero sign
        marks a date without exercise.
        """
        self._check_rate_index(start_rate_index)
        tree = self._tree
        maps = tree.step_maps
        last = self.rate_count - 1

        ra = self._last_rate_annuities()
        swaps = RateAnnuity(ra.value.copy(), weights[last] * ra.annuity)
        values = self._exercise_values(signs[last], strikes[last], swaps)

        sum_us = [None] * last
        for t in range(last - 1, start_rate_index - 1, -1):
            continuation = None
            if t < last_call_rate_index:
                continuation = tree.perform_backward_induction(
                    maps[t + 1], values, step_expectation, maps[t])
            ra, swaps = self._advance_swap_rates(t, t + 1, ra, swaps, sum_us, weights)
            values = self._exercise_values(signs[t], strikes[t], swaps, continuation)

        return self.calculate_expectation_at_expiry(start_rate_index, values)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _initial_value(self, rate_index):
        zp = self._zero_prices
        return zp[rate_index] - zp[rate_index + 1]

    def _terminal_rate_annuities(self, rate_index, annuities=None, sum_us=None):
        end_step = self._tree.step_maps[rate_index]
        beta = self._betas[rate_index]
        m = self._initial_value(rate_index)
        if self._kind is DistributionType.NORMAL:
            return calculate_normal_terminal_values(
                self._tree, m, end_step, beta, self._lower_bound, sum_us, annuities)
        adjustments = None
        if sum_us is not None:
            adjustments = np.log(annuities) - beta * sum_us
        return calculate_lognormal_terminal_values(
            self._tree, m, end_step, beta, adjustments)

    def _last_rate_annuities(self):
        values = self._terminal_rate_annuities(self.rate_count - 1)
        return RateAnnuity(values, np.ones(len(values)))

    def _roll_back_rate(self, t, ra, sum_us, builder, integrator):
        # ra holds rate t + 1 at its own reset; returns rate t at step maps[t]
        maps = self._tree.step_maps
        ra = self._tree.perform_backward_induction(
            maps[t + 1], ra, step_expectation, maps[t])
        drift_us = integrator.integrate(t, builder.build(t, ra))
        update_sum_us(t, self._betas[t + 1], drift_us, sum_us)
        annuities = ra.sum()
        values = self._terminal_rate_annuities(t, annuities, sum_us[t])
        return RateAnnuity(values, annuities)

    def _advance_swap_rates(self, start_rate_index, current_rate_index, ra, swaps,
                            sum_us, weights):
        if current_rate_index == start_rate_index:
            return ra, swaps
        if start_rate_index > current_rate_index:
            raise ValueError("swap rates can only be advanced backward in time")
        maps = self._tree.step_maps
        builder = DriftFactorTreeBuilder(self._tree, self._kind)
        integrator = TreeIntegrator(self._tree)
        for t in range(current_rate_index - 1, start_rate_index - 1, -1):
            swaps = self._tree.perform_backward_induction(
                maps[t + 1], swaps, step_expectation, maps[t])
            ra = self._roll_back_rate(t, ra, sum_us, builder, integrator)
            swaps = RateAnnuity(swaps.value + ra.value,
                                swaps.annuity + weights[t] * ra.annuity)
        return ra, swaps

    @staticmethod
    def _exercise_values(sign, strike, swaps, continuation=None):
        sign = int(sign)
        if continuation is not None:
            if sign == 0:
                return continuation
            return np.maximum(sign * (swaps.value - strike * swaps.annuity), continuation)
        if sign == 0:
            return np.zeros(len(swaps))
        return np.maximum(sign * (swaps.value - strike * swaps.annuity), 0.0)
