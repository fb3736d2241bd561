"""Drift of the forward rates under the terminal measure.

For rate ``n`` the lattice needs, at the reset step of every earlier rate
``j``, the conditional expectation of::

    U_n(T_j) = int_0^{T_j} f_n(s) sigma^2(s) ds

where ``f_n = dL_n / (1 + dL_n)`` for log-normal rates and
``1 / (1 + dL_n)`` for normal ones. It is computed in two sweeps: a backward
induction records ``f_n`` on every node (the drift-factor tree), then a
forward pass integrates it, conditioning each node on how it was reached.
"""

import numpy as np

from .banded import BandedList
from .binomial_tree import CUTOFF, step_expectation


class DriftFactorTreeBuilder:
    """Backward induction of a rate's drift factor on every node."""

    def __init__(self, tree, kind):
        self._tree = tree
        self._kind = kind

    def build(self, rate_index, rate_annuities):
        """Drift factors from step 0 to the reset step of ``rate_index``.

        Parameters
        ----------
        rate_index : int
            The earlier rate whose reset step ends the tree.
        rate_annuities : RateAnnuity
            The later rate's pairs by state at that reset step.

        Returns
        -------
        list of BandedList
            Factor by state for steps ``0 .. end - 1``; entry ``end`` is None.
        """
        tree = self._tree
        end_step = tree.step_maps[rate_index]
        if len(rate_annuities) != end_step + 1:
            raise ValueError(
                f"expected {end_step + 1} rate-annuity states, got {len(rate_annuities)}"
            )
        factors = [None] * (end_step + 1)
        for step, values in tree.iterate_backward(
                end_step, rate_annuities, step_expectation, 0):
            probs = tree.get_probabilities(step).to_array()
            live = np.flatnonzero(probs >= CUTOFF)
            start, stop = int(live[0]), int(live[-1]) + 1
            factors[step] = BandedList(
                step + 1, start, values[start:stop].factor(self._kind))
        return factors


class TreeIntegrator:
    """Forward integration of an increment tree over the lattice."""

    def __init__(self, tree):
        self._tree = tree

    def integrate(self, rate_index, increment_tree):
        """Integrate ``increment * variance`` up to the reset of ``rate_index``.

        Returns
        -------
        list of numpy.ndarray
            ``U`` by state at the end step of each period ``0 .. rate_index``.
        """
        tree = self._tree
        maps = tree.step_maps
        terminal = maps[rate_index]
        results = []
        values = np.zeros(1)
        step = 0
        for t in range(len(maps)):
            p = tree.up_jump_probabilities[t]
            vdt = tree.variances[t]
            stop = min(maps[t], terminal)
            while step < stop:
                step += 1
                increments = increment_tree[step - 1].to_array()
                values = tree.evolve_one_step(step, p, values + increments * vdt)
            results.append(values)
            if stop >= terminal:
                break
        return results


def update_sum_us(rate_index, beta, drift_us, sum_us):
    """Add ``beta * U`` into the running drift sums of rates ``0 .. rate_index``.

    ``sum_us`` is modified in place; a ``None`` entry is replaced.
    """
    for t in range(rate_index + 1):
        u = drift_us[t]
        if np.isnan(u).any():
            raise FloatingPointError(f"drift at period {t} contains NaN")
        if sum_us[t] is None:
            sum_us[t] = beta * u
        else:
            sum_us[t] = sum_us[t] + beta * u
