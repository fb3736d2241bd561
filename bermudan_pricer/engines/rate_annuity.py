import numpy as np

from ..instruments import DistributionType


class DistributionError(ArithmeticError):
    """Terminal values cannot meet both the lower bound and the expectation."""


class RateAnnuity:
    """A forward rate held jointly with its annuity.

    The pair is stored as ``(value, annuity)`` with ``value = rate * annuity``.
    Both components are linear in the conditional expectation operator, so
    backward induction on the pair is exact while the rate itself is not.
    Components are floats or numpy arrays over tree states; indexing and
    slicing apply to both.

    In the terminal measure of the rate lattice, for rate ``n`` resetting at
    ``T_n``::

        annuity = P(T_{n+1}) / P(T_N)
        value   = (P(T_n) - P(T_{n+1})) / P(T_N)
        sum()   = P(T_n) / P(T_N)
    """

    __slots__ = ("value", "annuity")

    def __init__(self, value, annuity):
        self.value = value
        self.annuity = annuity

    @classmethod
    def from_rate(cls, rate, annuity):
        return cls(rate * annuity, annuity)

    @property
    def rate(self):
        return self.value / self.annuity

    def sum(self):
        """``annuity + value``, the prior-period discount ratio."""
        return self.annuity + self.value

    def factor(self, kind):
        """Instantaneous drift factor of the rate.

        ``value / sum`` (i.e. ``dL / (1 + dL)``) for log-normal rates and
        ``annuity / sum`` (``1 / (1 + dL)``) for normal rates.
        """
        if DistributionType(kind) is DistributionType.NORMAL:
            return self.annuity / self.sum()
        return self.value / self.sum()

    def __len__(self):
        return len(self.value)

    def __getitem__(self, index):
        return RateAnnuity(self.value[index], self.annuity[index])

    def __add__(self, other):
        if isinstance(other, RateAnnuity):
            return RateAnnuity(self.value + other.value, self.annuity + other.annuity)
        return NotImplemented

    def __sub__(self, other):
        if isinstance(other, RateAnnuity):
            return RateAnnuity(self.value - other.value, self.annuity - other.annuity)
        return NotImplemented

    def __mul__(self, scale):
        if isinstance(scale, RateAnnuity):
            return NotImplemented
        return RateAnnuity(self.value * scale, self.annuity * scale)

    __rmul__ = __mul__

    def __repr__(self):
        return f"RateAnnuity(value={self.value!r}, annuity={self.annuity!r})"


def calculate_lognormal_terminal_values(tree, initial_value, end_step_index, beta,
                                        log_adjustments=None):
    """Log-normal values by state whose mean matches ``initial_value``.

    ::

        value(k) = G exp(beta k d + adj(k)),   sum_k P(k) value(k) = m

    where ``d`` is the tree jump size and ``P`` the node probabilities at
    ``end_step_index``. ``adj`` carries the log annuity and drift correction
    of rates that are not the last one.

    Raises
    ------
    OverflowError
        If the normaliser or any value is not finite.
    """
    n = end_step_index + 1
    probs = tree.get_probabilities(end_step_index)
    exponents = beta * tree.jump_size * np.arange(n, dtype=float)
    if log_adjustments is not None:
        exponents = exponents + np.asarray(log_adjustments, dtype=float)[:n]

    band = exponents[probs.begin_index:probs.end_index]
    shift = band.max()
    with np.errstate(over="ignore", invalid="ignore"):
        total = float(np.dot(probs.data, np.exp(band - shift)))
        if not np.isfinite(total) or total <= 0.0:
            raise OverflowError(
                f"log-normal normaliser is not finite (beta={beta}, step={end_step_index})"
            )
        values = initial_value * np.exp(exponents - shift) / total
    if not np.all(np.isfinite(values)):
        raise OverflowError(
            f"log-normal terminal values overflow (beta={beta}, step={end_step_index})"
        )
    return values


def calculate_normal_terminal_values(tree, initial_value, end_step_index, beta,
                                     lower_bound=None, sum_us=None, annuities=None):
    """Normal values by state whose mean matches ``initial_value``.

    The rates are ``x(k) = c + beta (k d - U(k))`` and the values
    ``A(k) x(k)``, with ``c`` solving ``sum_k P(k) A(k) x(k) = m``.

    With a ``lower_bound`` the rates violating it are truncated and ``c`` is
    solved again over the remaining states, until the truncated set no longer
    changes. The expectation is then exact with every rate at or above the
    bound.

    Raises
    ------
    ValueError
        If the lower bound exceeds the expected rate.
    DistributionError
        If no positive weight is left to carry the expectation.
    """
    n = end_step_index + 1
    probs = tree.get_probabilities(end_step_index).to_array()
    shape = beta * tree.jump_size * np.arange(n, dtype=float)
    if sum_us is not None:
        shape = shape - beta * np.asarray(sum_us, dtype=float)[:n]
    annuity = np.ones(n) if annuities is None else np.asarray(annuities, dtype=float)[:n]

    weights = probs * annuity
    total = float(weights.sum())
    if not total > 0.0:
        raise DistributionError(
            f"total weight {total} at step {end_step_index} is not positive"
        )
    mean_rate = initial_value / total
    level = mean_rate - float(np.dot(weights, shape)) / total
    if lower_bound is not None:
        if mean_rate < lower_bound:
            raise ValueError(
                f"lower bound {lower_bound} exceeds the expected rate {mean_rate}"
            )
        level = _solve_truncated_level(shape, weights, initial_value, lower_bound, level)
        return annuity * np.maximum(level + shape, lower_bound)
    return annuity * (level + shape)


def _solve_truncated_level(shape, weights, target, bound, level):
    truncated = np.zeros(len(shape), dtype=bool)
    for _ in range(len(shape) + 1):
        below = level + shape < bound
        if np.array_equal(below, truncated):
            return level
        truncated = below
        free = ~truncated
        free_weight = float(weights[free].sum())
        if not free_weight > 0.0:
            raise DistributionError(
                "cannot match the expectation with all rates at the lower bound"
            )
        level = (
            target
            - bound * float(weights[truncated].sum())
            - float(np.dot(weights[free], shape[free]))
        ) / free_weight
    raise DistributionError("truncation to the lower bound did not converge")
