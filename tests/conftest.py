import os
import sys

import numpy as np
import pytest
import QuantLib as ql

# Allow running tests without installing the package.
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from bermudan_pricer import AppConfig, DistributionType, coterminal_swaptions  # noqa: E402
from bermudan_pricer.engines import LmmBinomialTree  # noqa: E402

FLAT_RATE = 0.03
LOGNORMAL_VOLS = [0.25, 0.22, 0.20, 0.18]
NORMAL_VOLS = [0.0090, 0.0088, 0.0085, 0.0082]


@pytest.fixture
def val_date():
    return ql.Date(15, 1, 2025)


@pytest.fixture
def curve(val_date):
    return ql.YieldTermStructureHandle(
        ql.FlatForward(val_date, FLAT_RATE, ql.Actual365Fixed(), ql.Continuous)
    )


@pytest.fixture
def strip(val_date, curve):
    """Factory for a co-terminal strip: expiries 1..n years, maturity n+1 years."""

    def make(kind=DistributionType.LOG_NORMAL, n=4, vols=None, coupons=None):
        if vols is None:
            vols = NORMAL_VOLS if DistributionType(kind) is DistributionType.NORMAL else LOGNORMAL_VOLS
            vols = vols[:n]
        expiries = [val_date + ql.Period(i, ql.Years) for i in range(1, n + 1)]
        maturity = val_date + ql.Period(n + 1, ql.Years)
        swaptions = coterminal_swaptions(
            curve, val_date, expiries, maturity, vols,
            coupons=coupons, distribution=kind,
        )
        return maturity, swaptions

    return make


@pytest.fixture
def make_cfg(val_date):
    def make(kind=DistributionType.LOG_NORMAL, **overrides):
        cfg = AppConfig(val_date, distribution=kind)
        for k, v in overrides.items():
            setattr(cfg, k, v)
        return cfg

    return make


@pytest.fixture
def lmm_tree():
    """Factory for a small three-rate lattice on a flat 3% curve."""

    def make(kind=DistributionType.LOG_NORMAL, beta=None, steps=8):
        times = np.array([1.0, 2.0, 3.0, 4.0])
        dfs = np.exp(-FLAT_RATE * times)
        if beta is None:
            beta = 0.01 if DistributionType(kind) is DistributionType.NORMAL else 0.2
        betas = np.full(3, beta)
        return LmmBinomialTree.create(times, dfs, [steps] * 3, kind, betas)

    return make
