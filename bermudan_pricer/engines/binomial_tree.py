import bisect
import logging

import numpy as np

from .banded import BandedList

logger = logging.getLogger(__name__)

# Node probabilities below this are dropped from the band.
CUTOFF = 1e-22

# States below this probability are skipped when taking expectations.
EXPECTATION_CUTOFF = 1e-24


def step_expectation(step_index, up_jump_probability, value_if_up, value_if_down):
    """Conditional mean over one step: ``down + p * (up - down)``.

    Works on floats, numpy arrays and ``RateAnnuity`` pairs alike.
    """
    return value_if_down + up_jump_probability * (value_if_up - value_if_down)


class PcvBinomialTree:
    """Binomial tree with piecewise constant volatilities.

    The tree approximates ``X(t) = int_0^t sigma(s) dW(s)`` on a time grid
    made of flat-volatility periods, each cut into a number of steps. There is
    exactly one jump per step, with a common total jump size ``d`` and an up
    probability ``p_m`` which may vary by period.

    The up probability matches the variance of the step::

        p_m (1 - p_m) d^2 = v_m,   v_m = sigma_m^2 * period_m / steps_m

    A real solution exists for every period iff ``d >= 2 sqrt(max v_m)``; the
    tree takes the equality, which gives ``p_m = 1/2`` in the period with the
    largest variance per step and the smaller root elsewhere::

        p_m = 1/2 - 1/2 sqrt(1 - v_m / max v)

    Node probabilities ``P(m, k)`` (exactly ``k`` up jumps after ``m`` steps)
    follow by convolution and are stored as ``BandedList`` objects, dropping
    states whose probability falls below ``CUTOFF``.

    Instances are immutable; use :meth:`build`.
    """

    cutoff = CUTOFF

    def __init__(self, jump_size, step_maps, variances, up_jump_probabilities,
                 node_probabilities):
        self._jump_size = float(jump_size)
        self._step_maps = tuple(int(m) for m in step_maps)
        self._variances = tuple(float(v) for v in variances)
        self._up_jump_probabilities = tuple(float(p) for p in up_jump_probabilities)
        self._node_probabilities = tuple(node_probabilities)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def jump_size(self):
        """Total jump size (up jump plus down jump) per step."""
        return self._jump_size

    @property
    def total_step_count(self):
        return self._step_maps[-1]

    @property
    def step_maps(self):
        """End step index of each flat-volatility period."""
        return self._step_maps

    @property
    def variances(self):
        """Variance per step by period."""
        return self._variances

    @property
    def up_jump_probabilities(self):
        """Up jump probability per step by period."""
        return self._up_jump_probabilities

    @property
    def node_probabilities(self):
        return self._node_probabilities

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def build(cls, steps, periods, volatilities):
        """Build the tree.

        Parameters
        ----------
        steps : sequence of int
            Number of steps in each period.
        periods : sequence of float
            Period lengths in years (at least ``len(steps)`` values).
        volatilities : sequence of float
            Flat volatility in each period (at least ``len(steps)`` values).

        Returns
        -------
        PcvBinomialTree
        """
        steps = np.asarray(steps, dtype=int)
        count = len(steps)
        if count == 0:
            raise ValueError("at least one period is required")
        if np.any(steps <= 0):
            raise ValueError(f"step counts must be positive, got {steps.tolist()}")
        periods = np.asarray(periods, dtype=float)
        volatilities = np.asarray(volatilities, dtype=float)
        if len(periods) < count or len(volatilities) < count:
            raise ValueError("periods and volatilities must cover every step count")

        maps = np.cumsum(steps)
        variances = volatilities[:count] ** 2 * periods[:count] / steps
        max_var = float(variances.max())
        if not max_var > 0.0:
            raise ValueError("at least one period must have a positive variance")
        jump_size = 2.0 * np.sqrt(max_var)
        jump_probs = 0.5 * (1.0 - np.sqrt(np.maximum(1.0 - variances / max_var, 0.0)))

        total_steps = int(maps[-1])
        prev = BandedList(1, 0, [1.0])
        nodes = [prev]
        step_index = 1
        for t in range(count):
            p = float(jump_probs[t])
            q = 1.0 - p
            while step_index <= maps[t]:
                base = prev.data
                n = len(base)
                probs = np.empty(n + 1)
                probs[0] = base[0] * q
                probs[1:n] = base[1:] + p * (base[:-1] - base[1:])
                probs[n] = base[-1] * p
                start = 1 if probs[0] < CUTOFF else 0
                stop = n if probs[n] < CUTOFF else n + 1
                prev = BandedList(step_index + 1, prev.begin_index + start,
                                  probs[start:stop])
                nodes.append(prev)
                step_index += 1

        logger.debug(
            "Built binomial tree: %d periods, %d steps, jump size %.6g",
            count, total_steps, jump_size,
        )
        return cls(jump_size, maps, variances, jump_probs, nodes)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_probabilities(self, step_index):
        """Node probabilities at ``step_index`` as a ``BandedList``."""
        return self._node_probabilities[step_index]

    def get_map_index(self, end_step_index):
        """Index of the period containing the step ending at ``end_step_index``."""
        if not 0 <= end_step_index <= self.total_step_count:
            raise ValueError(
                f"step index {end_step_index} outside [0, {self.total_step_count}]"
            )
        return bisect.bisect_left(self._step_maps, end_step_index)

    def get_jump_probability(self, end_step_index):
        """Up jump probability from step ``m - 1`` to ``m = end_step_index``."""
        return self._up_jump_probabilities[self.get_map_index(end_step_index)]

    def calculate_expectation(self, step_index, values):
        """Probability weighted mean of ``values`` at ``step_index``.

        States with probability below ``EXPECTATION_CUTOFF`` are skipped and
        the result is divided by the sum of the retained probabilities.

        Parameters
        ----------
        step_index : int
        values : array-like or callable
            Values by state, or a function of the state index.
        """
        probs = self._node_probabilities[step_index].to_array()
        keep = np.flatnonzero(probs >= EXPECTATION_CUTOFF)
        if callable(values):
            vals = np.array([values(int(i)) for i in keep], dtype=float)
        else:
            vals = np.asarray(values, dtype=float)[keep]
        weights = probs[keep]
        return float(np.dot(weights, vals) / weights.sum())

    # ------------------------------------------------------------------
    # Backward induction
    # ------------------------------------------------------------------
    def iterate_backward(self, terminal_step_index, terminal_values,
                         step_expectation_fn=step_expectation, stop_step_index=0):
        """Yield ``(step_index, values)`` walking back from the terminal step.

        ``values`` must support slicing over states (numpy arrays and
        ``RateAnnuity`` pairs both do). The first pair yielded is for
        ``terminal_step_index - 1``; the last for ``stop_step_index``.
        """
        if not 0 <= stop_step_index < terminal_step_index <= self.total_step_count:
            raise ValueError(
                f"invalid backward induction range: from {terminal_step_index} "
                f"to {stop_step_index} (total steps {self.total_step_count})"
            )
        maps = self._step_maps
        values = terminal_values
        start = terminal_step_index
        for t in range(self.get_map_index(terminal_step_index), -1, -1):
            p = self._up_jump_probabilities[t]
            stop = maps[t - 1] if t > 0 else 0
            for step in range(start - 1, max(stop, stop_step_index) - 1, -1):
                values = step_expectation_fn(
                    step, p, values[1:step + 2], values[:step + 1])
                yield step, values
            if stop <= stop_step_index:
                return
            start = stop

    def perform_backward_induction(self, terminal_step_index, terminal_values,
                                   step_expectation_fn=step_expectation,
                                   record_step_index=0):
        """Roll ``terminal_values`` back to ``record_step_index``.

        Each step computes ``step_expectation_fn(step, p, up, down)`` for all
        states at once and the values at ``record_step_index`` are returned.
        """
        values = None
        for _, values in self.iterate_backward(
                terminal_step_index, terminal_values,
                step_expectation_fn, record_step_index):
            pass
        return values

    # ------------------------------------------------------------------
    # Forward accumulation
    # ------------------------------------------------------------------
    def get_lower_origin_probability(self, step_index, state_index, up_jump_probability):
        """Probability that state ``(m, k)`` was entered by an up jump.

        ::

            q(m, k) = p P(m-1, k-1) / (p P(m-1, k-1) + (1-p) P(m-1, k))
        """
        if step_index <= 0:
            raise ValueError("step index must be positive")
        if state_index <= 0:
            return 0.0
        if state_index >= step_index:
            return 1.0
        probs = self.get_probabilities(step_index - 1)
        p0 = up_jump_probability * probs[state_index - 1]
        p1 = (1.0 - up_jump_probability) * probs[state_index]
        if p0 < CUTOFF:
            return 0.0 if p0 < p1 else 1.0
        if p1 < CUTOFF:
            return 1.0
        return p0 / (p0 + p1)

    def step_accumulate(self, step_index, state_index, up_jump_probability,
                        value_if_up_jumped, value_if_down_jumped):
        """Scalar form of :meth:`evolve_one_step` for a single state."""
        d = value_if_up_jumped
        u = value_if_down_jumped
        q = self.get_lower_origin_probability(step_index, state_index, up_jump_probability)
        if q >= 1.0:
            return d
        if q <= 0.0:
            return u
        return q * (d - u) + u if q < 0.5 else (1.0 - q) * (u - d) + d

    def evolve_one_step(self, step_index, up_jump_probability, last_step_values):
        """Conditional means at step ``m`` from the values at step ``m - 1``.

        ::

            x_m(k) = q(m, k) x_{m-1}(k-1) + (1 - q(m, k)) x_{m-1}(k)

        Parameters
        ----------
        step_index : int
            The step ``m > 0``.
        up_jump_probability : float
        last_step_values : array-like
            Values ``x_{m-1}(k)`` for ``k = 0 .. m-1``.

        Returns
        -------
        numpy.ndarray
            Values for ``k = 0 .. m``.
        """
        if not 0 < step_index <= self.total_step_count:
            raise ValueError(f"step index {step_index} outside [1, {self.total_step_count}]")
        last = np.asarray(last_step_values, dtype=float)[:step_index]
        values = np.empty(step_index + 1)
        values[0] = last[0]
        values[step_index] = last[step_index - 1]
        if step_index > 1:
            p = up_jump_probability
            prev_probs = self.get_probabilities(step_index - 1).to_array()
            prob0 = prev_probs[:-1]
            prob = prev_probs[1:]
            u0 = last[:-1]
            u = last[1:]
            live = prob0 > CUTOFF
            denom = np.where(live, p * prob0 + (1.0 - p) * prob, 1.0)
            q = np.where(live, p * prob0 / denom, 0.0)
            values[1:step_index] = q * (u0 - u) + u
        return values
