import numpy as np
import pandas as pd
import pytest
import QuantLib as ql

from bermudan_pricer import AppConfig, MarketLoader, coterminal_swaptions
from bermudan_pricer.instruments import DistributionType, OptionType


def test_coterminal_swaptions_are_consistent(val_date, curve):
    expiries = [val_date + ql.Period(i, ql.Years) for i in (1, 2, 3)]
    maturity = val_date + ql.Period(4, ql.Years)
    records = coterminal_swaptions(curve, val_date, expiries, maturity, [0.2, 0.2, 0.2])

    dc = ql.Actual365Fixed()
    dfs = [curve.currentLink().discount(d) for d in expiries + [maturity]]
    assert records[-1].level == pytest.approx(dc.yearFraction(expiries[-1], maturity) * dfs[-1])
    for i, s in enumerate(records):
        assert s.floating_value == pytest.approx(dfs[i] - dfs[-1], rel=1e-12)
        assert s.coupon == s.rate
        assert s.value > 0.0
        assert s.option_type is OptionType.PAYER
    # levels shrink towards the common maturity
    assert np.all(np.diff([s.level for s in records]) < 0.0)


def test_coterminal_swaptions_parity(val_date, curve):
    expiries = [val_date + ql.Period(1, ql.Years)]
    maturity = val_date + ql.Period(3, ql.Years)
    kw = dict(coupons=[0.025], distribution=DistributionType.NORMAL)
    payer = coterminal_swaptions(curve, val_date, expiries, maturity, [0.01], **kw)[0]
    receiver = coterminal_swaptions(
        curve, val_date, expiries, maturity, [0.01], option_type="receiver", **kw)[0]
    assert payer.value - receiver.value == pytest.approx(
        payer.level * (payer.rate - 0.025), rel=1e-10)


def test_coterminal_swaptions_checks_lengths(val_date, curve):
    expiries = [val_date + ql.Period(1, ql.Years)]
    with pytest.raises(ValueError):
        coterminal_swaptions(curve, val_date, expiries, val_date + ql.Period(2, ql.Years), [0.2, 0.2])


def test_load_curve(tmp_path, val_date):
    path = tmp_path / "curve.csv"
    pd.DataFrame({
        "date": ["2026-01-15", "2027-01-15", "2030-01-15"],
        "discount_factor": [0.97, 0.94, 0.86],
    }).to_csv(path, index=False)

    handle = MarketLoader(AppConfig(val_date)).load_curve(path)
    assert handle.currentLink().discount(ql.Date(15, 1, 2027)) == pytest.approx(0.94)
    assert handle.currentLink().discount(val_date) == pytest.approx(1.0)

    handle = MarketLoader(AppConfig(val_date)).load_curve(path, day_count="ACT/360")
    assert handle.currentLink().dayCounter().name() == ql.Actual360().name()
    assert handle.currentLink().discount(ql.Date(15, 1, 2027)) == pytest.approx(0.94)


def test_load_curve_requires_columns(tmp_path, val_date):
    path = tmp_path / "curve.csv"
    pd.DataFrame({"when": ["2026-01-15"], "value": [0.97]}).to_csv(path, index=False)
    with pytest.raises(ValueError):
        MarketLoader(AppConfig(val_date)).load_curve(path)


def test_load_swaptions(tmp_path, val_date):
    path = tmp_path / "swaptions.csv"
    pd.DataFrame({
        "Date": ["2027-01-15", "2026-01-15"],
        "Level": [3.6, 4.5],
        "Rate": [0.031, 0.030],
        "Coupon": [0.031, 0.030],
        "Value": [0.008, 0.006],
        "Option_Type": ["receiver", "payer"],
        "Steps": [12, 10],
    }).to_csv(path, index=False)

    records = MarketLoader(AppConfig(val_date)).load_swaptions(path)
    assert [r.date for r in records] == [ql.Date(15, 1, 2026), ql.Date(15, 1, 2027)]
    assert records[0].option_type is OptionType.PAYER
    assert records[1].option_type is OptionType.RECEIVER
    assert records[0].steps == 10
    assert records[1].level == pytest.approx(3.6)


def test_load_swaptions_requires_columns(tmp_path, val_date):
    path = tmp_path / "swaptions.csv"
    pd.DataFrame({"date": ["2026-01-15"], "level": [4.5]}).to_csv(path, index=False)
    with pytest.raises(ValueError):
        MarketLoader(AppConfig(val_date)).load_swaptions(path)
