from pathlib import Path

import QuantLib as ql

from bermudan_pricer.calibration import CalibrationError, CoTerminalSwaptionCalibrator
from bermudan_pricer.config import AppConfig
from bermudan_pricer.instruments import DistributionType
from bermudan_pricer.market import coterminal_swaptions
from bermudan_pricer.reporting import (
    calibration_report,
    maybe_plot_betas,
    save_calibration_params,
    save_config_snapshot,
    save_dataframe,
)


def main():
    # -------------------------------------------------------------------------
    # 0. Inputs (adjust these for your swaption strip)
    # -------------------------------------------------------------------------
    val_date = ql.Date(10, 9, 2025)
    maturity = val_date + ql.Period(10, ql.Years)
    expiries = [val_date + ql.Period(n, ql.Years) for n in range(1, 10)]

    # Black vols by expiry (log-normal) and normal vols for the second run
    black_vols = [0.24, 0.23, 0.22, 0.21, 0.205, 0.20, 0.195, 0.19, 0.185]
    normal_vols = [0.0095, 0.0094, 0.0092, 0.0090, 0.0088, 0.0086, 0.0085, 0.0084, 0.0083]

    project_root = Path(__file__).resolve().parent
    out_dir = project_root / "outputs"

    # -------------------------------------------------------------------------
    # 1. Market data
    # -------------------------------------------------------------------------
    print("--- 1. Market ---")
    ql.Settings.instance().evaluationDate = val_date
    curve = ql.YieldTermStructureHandle(
        ql.FlatForward(val_date, 0.035, ql.Actual365Fixed(), ql.Continuous)
    )

    for kind, vols in [
        (DistributionType.LOG_NORMAL, black_vols),
        (DistributionType.NORMAL, normal_vols),
    ]:
        cfg = AppConfig(val_date, distribution=kind)
        cfg.tree_steps_year = 24
        cfg.verify = True
        cfg.apply_global_settings()

        swaptions = coterminal_swaptions(
            curve, val_date, expiries, maturity, vols,
            distribution=kind, day_count=cfg.day_count,
        )

        # ---------------------------------------------------------------------
        # 2. Calibrate
        # ---------------------------------------------------------------------
        print(f"\n--- 2. Calibrating ({kind.value}) ---")
        calibrator = CoTerminalSwaptionCalibrator(val_date, maturity, swaptions, cfg)
        try:
            calibrator.fit()
        except CalibrationError as e:
            print(f"ERROR: {e}")
            continue

        report = calibration_report(calibrator)
        print(report.to_string(index=False, float_format=lambda x: f"{x:.6g}"))

        # ---------------------------------------------------------------------
        # 3. Bermudan value
        # ---------------------------------------------------------------------
        bermudan = calibrator.calculate_bermudan_value()
        european = max(s.value for s in swaptions)
        print(f"\nBermudan payer: {bermudan:.6f} (max European {european:.6f})")

        # ---------------------------------------------------------------------
        # 4. Outputs (CSV + JSON + figures)
        # ---------------------------------------------------------------------
        run_dir = out_dir / kind.value
        save_dataframe(report, run_dir, "calibration_report.csv")
        save_calibration_params(calibrator, run_dir, bermudan_value=bermudan)
        save_config_snapshot(cfg, run_dir)
        maybe_plot_betas(report, run_dir)

    print(f"\nOutputs written to: {out_dir}")


if __name__ == "__main__":
    main()
