import QuantLib as ql
import pandas as pd

from .instruments import DistributionType, OptionType, SwaptionInfo
from .utils import DateUtils, day_counter, default_day_count


class MarketLoader:
    """Load market inputs (discount curve + co-terminal swaption records).

    The loader is permissive regarding column names so that curve and
    swaption exports from different systems can be used unchanged.
    """

    def __init__(self, cfg):
        self.cfg = cfg
        ql.Settings.instance().evaluationDate = DateUtils.to_ql_date(cfg.val_date)

    def load_curve(self, path, day_count=None, allow_extrapolation=True):
        """Load a discount curve from a CSV and return a relinkable handle.

        The CSV must contain a date column and a discount factor column
        (e.g. ``date`` and ``discount_factor``). The pricing date is added
        with a discount factor of 1.0.
        """
        day_count = day_counter(day_count) if day_count is not None else self.cfg.day_count
        val_date = DateUtils.to_ql_date(self.cfg.val_date)

        df = pd.read_csv(path)
        col_date = next((c for c in df.columns if "date" in c.lower()), None)
        col_df = next(
            (c for c in df.columns if "discount" in c.lower() or c.lower() == "df"),
            None,
        )
        if col_date is None or col_df is None:
            raise ValueError(
                "curve CSV must contain a date column and a discount factor column"
            )

        df[col_date] = pd.to_datetime(df[col_date])
        df = df.sort_values(col_date)

        dates = [val_date]
        dfs = [1.0]
        for _, row in df.iterrows():
            d = DateUtils.to_ql_date(row[col_date])
            if d <= val_date:
                continue
            dates.append(d)
            dfs.append(float(row[col_df]))

        curve = ql.DiscountCurve(dates, dfs, day_count)
        if allow_extrapolation:
            curve.enableExtrapolation()
        return ql.RelinkableYieldTermStructureHandle(curve)

    def load_swaptions(self, path):
        """Load co-terminal swaption records from a CSV, sorted by expiry.

        Required columns: ``date``, ``level``, ``rate``, ``coupon``, ``value``.
        Optional: ``option_type`` (payer/receiver/none), ``steps``,
        ``volatility``, ``accuracy``.
        """
        df = pd.read_csv(path)
        df.columns = [c.strip().lower() for c in df.columns]
        missing = [c for c in ("date", "level", "rate", "coupon", "value") if c not in df.columns]
        if missing:
            raise ValueError(f"swaption CSV is missing columns: {missing}")

        df["date"] = pd.to_datetime(df["date"])
        df = df.sort_values("date")

        records = []
        for _, row in df.iterrows():
            kwargs = {}
            if "option_type" in df.columns and not pd.isna(row["option_type"]):
                kwargs["option_type"] = OptionType(row["option_type"])
            if "steps" in df.columns and not pd.isna(row["steps"]):
                kwargs["steps"] = int(row["steps"])
            if "volatility" in df.columns and not pd.isna(row["volatility"]):
                kwargs["volatility"] = float(row["volatility"])
            if "accuracy" in df.columns and not pd.isna(row["accuracy"]):
                kwargs["accuracy"] = float(row["accuracy"])
            records.append(
                SwaptionInfo(
                    date=DateUtils.to_ql_date(row["date"]),
                    level=row["level"],
                    rate=row["rate"],
                    coupon=row["coupon"],
                    value=row["value"],
                    **kwargs,
                )
            )
        return records


def coterminal_swaptions(curve, as_of, expiries, maturity, volatilities, coupons=None,
                         option_type=OptionType.PAYER,
                         distribution=DistributionType.LOG_NORMAL,
                         day_count=None):
    """Build co-terminal swaption records from a curve and quoted volatilities.

    Each swap accrues from one expiry to the next (the last one to
    ``maturity``) with ``day_count`` fractions. Values are Black
    (log-normal) or Bachelier (normal) prices times the swap level.

    Parameters
    ----------
    curve : QuantLib.YieldTermStructure or handle
    as_of, maturity : date-like
    expiries : sequence of date-like
    volatilities : sequence of float
        Black or normal volatility by expiry.
    coupons : sequence of float, optional
        Strikes; at-the-money when omitted.
    day_count : QuantLib.DayCounter or str, optional
        Accrual and volatility time basis (Actual/365 Fixed by default).

    Returns
    -------
    list of SwaptionInfo
    """
    if hasattr(curve, "currentLink"):
        curve = curve.currentLink()
    dc = day_counter(day_count) if day_count is not None else default_day_count()
    as_of = DateUtils.to_ql_date(as_of)
    dates = [DateUtils.to_ql_date(d) for d in expiries] + [DateUtils.to_ql_date(maturity)]
    n = len(dates) - 1
    if len(volatilities) != n:
        raise ValueError("one volatility per expiry is required")
    if coupons is not None and len(coupons) != n:
        raise ValueError("one coupon per expiry is required")

    dfs = [curve.discount(d) for d in dates]
    accruals = [dc.yearFraction(dates[i], dates[i + 1]) for i in range(n)]
    option_type = OptionType(option_type)
    ql_type = ql.Option.Put if option_type is OptionType.RECEIVER else ql.Option.Call
    distribution = DistributionType(distribution)

    records = []
    level = 0.0
    levels = [0.0] * n
    for i in range(n - 1, -1, -1):
        level += accruals[i] * dfs[i + 1]
        levels[i] = level

    for i in range(n):
        rate = (dfs[i] - dfs[n]) / levels[i]
        strike = rate if coupons is None else float(coupons[i])
        std_dev = float(volatilities[i]) * dc.yearFraction(as_of, dates[i]) ** 0.5
        if distribution is DistributionType.NORMAL:
            unit = ql.bachelierBlackFormula(ql_type, strike, rate, std_dev)
        else:
            unit = ql.blackFormula(ql_type, strike, rate, std_dev)
        records.append(
            SwaptionInfo(
                date=dates[i],
                level=levels[i],
                rate=rate,
                coupon=strike,
                value=levels[i] * unit,
                option_type=option_type,
                volatility=float(volatilities[i]),
            )
        )
    return records
