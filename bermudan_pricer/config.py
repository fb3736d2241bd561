import logging
import warnings

from .instruments import DistributionType
from .utils import day_counter, default_day_count


class AppConfig:
    """Central configuration object.

    The lattice, the calibrator and the reports all read their numerical
    knobs from here, so a run is reproducible from one object.

    Parameters
    ----------
    val_date : QuantLib.Date
        Pricing date; tenor times are measured from it.
    distribution : DistributionType or str
        ``"lognormal"`` (default) or ``"normal"`` forward rates.
    day_count : QuantLib.DayCounter or str, optional
        Day counter for tenor times and the final accrual fraction.
        Names such as ``"ACT/360"`` are resolved with ``day_counter``.
        Defaults to Actual/365 Fixed.

    Notes
    -----
    - Step counts are resolved in this order: ``step_size_days`` when positive,
      then the swaption record's ``steps``, then ``initial_steps`` /
      ``middle_steps``, then ``tree_steps_year`` per year of the period.
    - ``calibration_tolerance`` is the accepted absolute error on each
      swaption value; a record's own ``accuracy`` overrides it.
    """

    def __init__(self, val_date, distribution=DistributionType.LOG_NORMAL, day_count=None):
        self.val_date = val_date
        self.distribution = DistributionType(distribution)
        self.day_count = day_counter(day_count) if day_count is not None else default_day_count()

        # ----------------
        # Lattice steps
        # ----------------
        self.initial_steps = 0  # steps to the first expiry (0 = unset)
        self.middle_steps = 0   # steps between later expiries (0 = unset)
        self.tree_steps_year = 12
        self.step_size_days = 0  # > 0 overrides everything above

        # ----------------
        # Calibration
        # ----------------
        self.calibration_tolerance = 1e-9
        self.lognormal_bracket = (0.3, 0.6)
        self.normal_bracket = (0.001, 0.01)
        self.bracket_expansions = 30
        self.solver_max_iter = 200
        self.solver_xtol = 1e-14

        # Floor on normal rates, keeps 1 + delta * L >= 0
        self.normal_lower_bound = -1.0

        # ----------------
        # Consistency checks
        # ----------------
        self.verify = False
        self.verify_tolerance = 1e-6

        # ----------------
        # Global flags
        # ----------------
        self.suppress_warnings = True
        self.log_level = logging.WARNING

    @property
    def bracket(self):
        """Initial beta bracket for the configured distribution."""
        if self.distribution is DistributionType.NORMAL:
            return tuple(self.normal_bracket)
        return tuple(self.lognormal_bracket)

    def apply_global_settings(self):
        """Apply global settings (warnings filter + package log level)."""
        if self.suppress_warnings:
            warnings.filterwarnings("ignore")
        logging.getLogger("bermudan_pricer").setLevel(self.log_level)
