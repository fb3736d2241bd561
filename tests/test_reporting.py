import json

import pytest

from bermudan_pricer.calibration import CoTerminalSwaptionCalibrator
from bermudan_pricer.reporting import (
    calibration_report,
    maybe_plot_betas,
    save_calibration_params,
    save_config_snapshot,
    save_dataframe,
)


@pytest.fixture
def fitted(val_date, strip, make_cfg):
    maturity, swaptions = strip(n=3)
    cfg = make_cfg()
    calib = CoTerminalSwaptionCalibrator(val_date, maturity, swaptions, cfg)
    calib.fit()
    return calib


def test_calibration_report(fitted):
    df = calibration_report(fitted)
    assert len(df) == 3
    assert list(df.columns) == [
        "period", "expiry", "time", "steps", "beta", "fraction",
        "forward_rate", "market_value", "model_value", "error",
    ]
    assert df["error"].abs().max() < 1e-8
    assert (df["time"].diff().dropna() > 0).all()


def test_save_outputs(fitted, tmp_path):
    df = calibration_report(fitted)
    csv_path = save_dataframe(df, tmp_path / "out", "report.csv")
    assert csv_path.exists()

    params_path = save_calibration_params(fitted, tmp_path / "out", bermudan_value=0.1)
    params = json.loads(params_path.read_text(encoding="utf-8"))
    assert params["distribution"] == "lognormal"
    assert len(params["betas"]) == 3
    assert [h["start"] for h in params["fit_history"]] == [2, 1, 0]
    assert params["bermudan_value"] == pytest.approx(0.1)

    cfg_path = save_config_snapshot(fitted.cfg, tmp_path / "out")
    snapshot = json.loads(cfg_path.read_text(encoding="utf-8"))
    assert snapshot["calibration_tolerance"] == 1e-9
    assert snapshot["lognormal_bracket"] == [0.3, 0.6]
    assert snapshot["distribution"] == "lognormal"
    assert "day_count" in snapshot


def test_maybe_plot_betas(fitted, tmp_path):
    p = maybe_plot_betas(calibration_report(fitted), tmp_path)
    assert p is None or p.exists()
