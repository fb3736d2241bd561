import json
from pathlib import Path

import pandas as pd

from .utils import DateUtils


def ensure_dir(path):
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def calibration_report(calibrator):
    """One row per expiry: lattice inputs, fitted beta and pricing error."""
    times = calibrator.tenor_times
    betas = calibrator.betas
    fractions = calibrator.fractions
    forwards = calibrator.forward_rates
    steps = calibrator.step_counts

    rows = []
    for i, s in enumerate(calibrator.swaptions):
        model = calibrator.calculate_swaption_value(i)
        rows.append({
            "period": i,
            "expiry": DateUtils.to_py_date(s.date),
            "time": float(times[i]),
            "steps": int(steps[i]),
            "beta": float(betas[i]),
            "fraction": float(fractions[i]),
            "forward_rate": float(forwards[i]),
            "market_value": s.value,
            "model_value": float(model),
            "error": float(model - s.value),
        })
    return pd.DataFrame(rows)


def save_dataframe(df, output_dir, filename):
    """Save a DataFrame to CSV inside ``output_dir``."""
    out = ensure_dir(output_dir)
    p = out / filename
    df.to_csv(p, index=False)
    return p


def save_calibration_params(calibrator, output_dir, bermudan_value=None):
    """Save fitted betas and the solve history as JSON for auditability."""
    out = ensure_dir(output_dir)
    path = out / "calibration_params.json"
    params = {
        "distribution": calibrator.cfg.distribution.value,
        "betas": [float(b) for b in calibrator.betas],
        "fit_history": [
            {"start": int(t), "stop": int(stop), "beta": float(beta)}
            for t, stop, beta in calibrator.fit_history
        ],
        "first_expiry_discount_factor": calibrator.first_expiry_discount_factor,
    }
    if bermudan_value is not None:
        params["bermudan_value"] = float(bermudan_value)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(params, f, indent=2, sort_keys=True, default=float)
    return path


def save_config_snapshot(cfg, output_dir):
    """Persist a subset of config fields as JSON (reproducibility)."""
    out = ensure_dir(output_dir)
    path = out / "config_snapshot.json"
    d = {}
    for k, v in cfg.__dict__.items():
        # Skip non-serializable objects.
        if k == "val_date":
            d[k] = str(v)
        elif k == "distribution":
            d[k] = v.value
        elif k == "day_count":
            d[k] = v.name()
        elif isinstance(v, (int, float, str, bool)):
            d[k] = v
        elif isinstance(v, tuple):
            d[k] = list(v)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(d, f, indent=2, sort_keys=True)
    return path


def maybe_plot_betas(report_df, output_dir):
    """Plot fitted betas and pricing errors by expiry.

    If matplotlib is not available, this function does nothing.
    """
    try:
        import matplotlib.pyplot as plt
    except Exception:
        return None

    fig = plt.figure()
    ax = fig.add_subplot(211)
    ax.step(report_df["time"], report_df["beta"], where="post", marker="o")
    ax.set_ylabel("Beta")
    ax.grid(True, alpha=0.3)

    ax2 = fig.add_subplot(212, sharex=ax)
    ax2.bar(report_df["time"], report_df["error"], width=0.1)
    ax2.set_ylabel("Model - market")
    ax2.set_xlabel("Expiry (years)")
    fig.tight_layout()

    fig_dir = ensure_dir(Path(output_dir) / "figures")
    p = fig_dir / "betas.png"
    fig.savefig(p, dpi=200)
    plt.close(fig)
    return p
