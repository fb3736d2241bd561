import logging
import math

import numpy as np
from scipy import optimize

from .config import AppConfig
from .engines.lmm_tree import LmmBinomialTree
from .instruments import DistributionType, OptionType
from .utils import DateUtils

logger = logging.getLogger(__name__)


class CalibrationError(RuntimeError):
    """The lattice cannot reproduce the co-terminal swaption prices."""


class ConsistencyError(RuntimeError):
    """Implied curve or fitted prices disagree with the market records."""


class CoTerminalSwaptionCalibrator:
    """Fit per-period volatility multipliers to co-terminal swaptions.

    Every record describes a European swaption expiring at ``T_i`` on the
    swap from ``T_i`` to the common ``maturity``. The records fix the
    discount curve on the expiry grid::

        level_i * rate_i = P(T_i) - P(T_N)
        level_{N-1}      = tau_{N-1} * P(T_N)

    and each swaption price fixes the beta of its first rate. Betas are
    solved from the last expiry backward, since swaption ``i`` depends only
    on the rates ``j >= i``. When a swaption cannot be matched alone its
    beta is merged with the next earlier one and the pair is solved
    together; only a failure at the first expiry is fatal.

    Parameters
    ----------
    as_of : date-like
        Pricing date.
    maturity : date-like
        Common end date of the underlying swaps.
    swaptions : sequence of SwaptionInfo
        Records ordered by expiry.
    cfg : AppConfig, optional
        Numerical settings; a default configuration is used when omitted.
    """

    def __init__(self, as_of, maturity, swaptions, cfg=None):
        self.cfg = cfg if cfg is not None else AppConfig(DateUtils.to_ql_date(as_of))
        self.as_of = DateUtils.to_ql_date(as_of)
        self.maturity = DateUtils.to_ql_date(maturity)
        self._swaptions = tuple(swaptions)
        self._validate()

        dc = self.cfg.day_count
        expiries = [DateUtils.to_ql_date(s.date) for s in self._swaptions]
        self._expiries = expiries
        self._tenor_times = np.array(
            DateUtils.year_fractions(self.as_of, expiries + [self.maturity], dc))
        self._build_curve()
        self._step_counts = self._resolve_step_counts()

        lo, hi = self.cfg.bracket
        self._betas = np.full(len(self._swaptions), 0.5 * (lo + hi))
        self._tree = LmmBinomialTree.create(
            self._tenor_times,
            self._discount_factors,
            self._step_counts,
            self.cfg.distribution,
            self._betas,
            lower_bound=self.cfg.normal_lower_bound,
        )
        self._fit_history = []
        self._fitted = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def swaptions(self):
        return self._swaptions

    @property
    def tree(self):
        """The LMM rate lattice."""
        return self._tree

    @property
    def lattice(self):
        """The underlying binomial tree."""
        return self._tree.tree

    @property
    def betas(self):
        """Volatility multiplier by forward rate (a copy)."""
        return self._betas.copy()

    @property
    def fractions(self):
        """Accrual fraction of each forward rate."""
        return self._fractions.copy()

    @property
    def forward_rates(self):
        """Annualised simple forward rate of each period."""
        return self._forward_rates.copy()

    @property
    def discount_factors(self):
        """``P(T_0) .. P(T_N)`` implied by the records."""
        return self._discount_factors.copy()

    @property
    def tenor_times(self):
        return self._tenor_times.copy()

    @property
    def step_counts(self):
        return list(self._step_counts)

    @property
    def first_expiry_discount_factor(self):
        return float(self._discount_factors[0])

    @property
    def fit_history(self):
        """``(start, stop, beta)`` for every solved range, in solve order."""
        return list(self._fit_history)

    @property
    def is_fitted(self):
        return self._fitted

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def _validate(self):
        if not self._swaptions:
            raise ValueError("at least one swaption is required")
        previous = self.as_of
        for i, s in enumerate(self._swaptions):
            expiry = DateUtils.to_ql_date(s.date)
            if expiry <= previous:
                raise ValueError(
                    f"swaption {i} expiry {expiry} is not after {previous}; "
                    "expiries must be strictly increasing and after the pricing date"
                )
            if s.level <= 0.0:
                raise ValueError(f"swaption {i} has a non-positive level {s.level}")
            previous = expiry
        if self.maturity <= previous:
            raise ValueError(f"maturity {self.maturity} is not after the last expiry {previous}")

    def _build_curve(self):
        n = len(self._swaptions)
        levels = np.array([s.level for s in self._swaptions])
        values = np.array([s.floating_value for s in self._swaptions])
        tau = DateUtils.year_fraction(self._expiries[-1], self.maturity, self.cfg.day_count)

        terminal = levels[-1] / tau
        dfs = np.empty(n + 1)
        dfs[:n] = terminal + values
        dfs[n] = terminal
        if np.any(dfs <= 0.0):
            raise ValueError(f"implied discount factors must be positive: {dfs.tolist()}")

        fractions = np.empty(n)
        fractions[:-1] = (levels[:-1] - levels[1:]) / dfs[1:n]
        fractions[-1] = tau
        if np.any(fractions <= 0.0):
            raise ValueError(f"implied accrual fractions must be positive: {fractions.tolist()}")

        forwards = (dfs[:-1] / dfs[1:] - 1.0) / np.diff(self._tenor_times)
        if self.cfg.distribution is DistributionType.LOG_NORMAL and np.any(forwards <= 0.0):
            raise ValueError(
                f"log-normal rates require positive forwards: {forwards.tolist()}"
            )

        self._discount_factors = dfs
        self._fractions = fractions
        self._forward_rates = forwards
        if self.cfg.verify:
            self._verify_curve()

    def _verify_curve(self):
        tol = self.cfg.verify_tolerance
        dfs = self._discount_factors
        # level_i = sum_{j >= i} w_j P(T_{j+1})
        levels = np.cumsum((self._fractions * dfs[1:])[::-1])[::-1]
        for i, s in enumerate(self._swaptions):
            rate = (dfs[i] - dfs[-1]) / levels[i]
            if abs(levels[i] - s.level) > tol or abs(rate - s.rate) > tol:
                raise ConsistencyError(
                    f"implied curve does not reproduce swaption {i}: "
                    f"level {levels[i]:.10g} vs {s.level:.10g}, "
                    f"rate {rate:.10g} vs {s.rate:.10g}"
                )
        first = self._swaptions[0]
        expected = dfs[-1] + first.floating_value
        if abs(dfs[0] - expected) > tol:
            raise ConsistencyError(
                f"first expiry discount factor {dfs[0]:.10g} vs {expected:.10g}"
            )

    def _resolve_step_counts(self):
        cfg = self.cfg
        counts = []
        previous = self.as_of
        for i, s in enumerate(self._swaptions):
            expiry = self._expiries[i]
            if cfg.step_size_days > 0:
                days = DateUtils.days_between(previous, expiry)
                floor = 10 if i == 0 else 5
                steps = max(min(floor, days), int(math.ceil(days / cfg.step_size_days)))
            elif s.steps > 0:
                steps = s.steps
            elif i == 0 and cfg.initial_steps > 0:
                steps = cfg.initial_steps
            elif i > 0 and cfg.middle_steps > 0:
                steps = cfg.middle_steps
            else:
                years = self._tenor_times[i] - (self._tenor_times[i - 1] if i > 0 else 0.0)
                steps = int(math.ceil(years * cfg.tree_steps_year))
            counts.append(max(int(steps), 1))
            previous = expiry
        return counts

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------
    @staticmethod
    def _calibration_sign(record):
        sign = record.sign
        return sign if sign != 0 else int(OptionType.PAYER)

    def calculate_swaption_value(self, start):
        """Lattice value of the European swaption expiring at ``T_start``."""
        record = self._swaptions[start]
        return self._tree.evaluate_swaption(
            start, self._calibration_sign(record), record.coupon, self._fractions)

    def calculate_bermudan_value(self, begin=0, last_call=None):
        """Value of the Bermudan swaption exercisable at the record expiries.

        Each record contributes its side and coupon at its expiry; a record
        with option type none is not an exercise date. Exercise is allowed
        from ``begin`` to ``last_call`` (default: the last expiry).
        """
        n = len(self._swaptions)
        if last_call is None:
            last_call = n - 1
        if not 0 <= begin <= last_call < n:
            raise ValueError(f"invalid exercise range [{begin}, {last_call}] for {n} expiries")
        if not self._fitted:
            logger.warning("Pricing a Bermudan swaption with unfitted betas")
        signs = [s.sign for s in self._swaptions]
        strikes = [s.coupon for s in self._swaptions]
        return self._tree.evaluate_bermudan_swaption(
            begin, last_call, signs, strikes, self._fractions)

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------
    def _objective(self, start, stop, target):
        betas = self._betas

        def f(beta):
            betas[start:stop] = beta
            value = self.calculate_swaption_value(start)
            if not np.isfinite(value):
                raise OverflowError(f"swaption value is not finite at beta={beta}")
            logger.debug("period %d: beta=%.10g value=%.12g target=%.12g",
                         start, beta, value, target)
            return value - target

        return f

    def _find_bracket(self, f):
        lo, hi = self.cfg.bracket
        f_lo, f_hi = f(lo), f(hi)
        for _ in range(self.cfg.bracket_expansions):
            if f_lo > 0.0:
                hi, f_hi = lo, f_lo
                lo = 0.5 * lo
                f_lo = f(lo)
            elif f_hi < 0.0:
                lo, f_lo = hi, f_hi
                hi = 2.0 * hi
                f_hi = f(hi)
            else:
                return lo, hi
        if f_lo <= 0.0 <= f_hi:
            return lo, hi
        raise CalibrationError(f"no bracket found (last tried [{lo:.6g}, {hi:.6g}])")

    def try_solve_volatility(self, start, stop):
        """Solve one beta shared by the rates ``start .. stop - 1``.

        Returns
        -------
        float or None
            The beta, written into ``betas[start:stop]``, or None when the
            swaption at ``start`` cannot be matched (the betas are restored).
        """
        record = self._swaptions[start]
        accuracy = record.accuracy if record.accuracy > 0.0 else self.cfg.calibration_tolerance
        saved = self._betas[start:stop].copy()
        f = self._objective(start, stop, record.value)
        try:
            lo, hi = self._find_bracket(f)
            beta = optimize.brentq(
                f, lo, hi,
                xtol=self.cfg.solver_xtol,
                maxiter=self.cfg.solver_max_iter,
            )
            error = f(beta)
        except (ValueError, RuntimeError, ArithmeticError) as exc:
            logger.debug("period %d: solver failed: %s", start, exc)
            self._betas[start:stop] = saved
            return None
        if abs(error) > accuracy:
            logger.debug("period %d: residual %.3g above accuracy %.3g",
                         start, error, accuracy)
            self._betas[start:stop] = saved
            return None
        return float(beta)

    def fit(self):
        """Calibrate all betas, last expiry first.

        The fitted multipliers are read back through ``betas``; each solved
        range is appended to ``fit_history``.
        """
        self._fit_history = []
        n = len(self._swaptions)
        stop = n
        for t in range(n - 1, -1, -1):
            beta = self.try_solve_volatility(t, stop)
            if beta is None:
                if t == 0:
                    raise CalibrationError("Unable to match co-terminal swaptions")
                logger.warning(
                    "Swaption %d (expiry %s) not matched; merging with the previous period",
                    t, self._expiries[t],
                )
                continue
            logger.info("Fixed beta %.8g for rates %d..%d", beta, t, stop - 1)
            self._fit_history.append((t, stop, beta))
            stop = t
        self._fitted = True
        if self.cfg.verify:
            self.verify_fit()

    def verify_fit(self):
        tol = self.cfg.verify_tolerance
        for start, _, _ in self._fit_history:
            record = self._swaptions[start]
            value = self.calculate_swaption_value(start)
            if abs(value - record.value) > max(tol, record.accuracy):
                raise ConsistencyError(
                    f"swaption {start} reprices at {value:.10g}, market {record.value:.10g}"
                )
