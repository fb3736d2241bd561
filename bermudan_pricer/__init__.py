"""Bermudan swaption pricer package (binomial LMM lattice).

This package provides:
- A piecewise-constant-volatility binomial tree and its backward induction
- Forward rates as rate/annuity pairs under the terminal measure, with
  log-normal or normal distributions and no-arbitrage drifts
- Calibration of per-period volatility multipliers to co-terminal swaptions
- Bermudan swaption valuation on the calibrated lattice
- Market loaders and pandas reports
"""

from .config import AppConfig
from .instruments import DistributionType, OptionType, SwaptionInfo
from .market import MarketLoader, coterminal_swaptions
from .calibration import CalibrationError, ConsistencyError, CoTerminalSwaptionCalibrator
from .engines import DistributionError, LmmBinomialTree, PcvBinomialTree, RateAnnuity
