import datetime

import QuantLib as ql
import pandas as pd


def default_day_count():
    """Actual/365 Fixed, the day count of the lattice time axis."""
    return ql.Actual365Fixed()


def thirty360_usa():
    """30/360 US bond basis; builds without the convention enum get the default 30/360."""
    try:
        return ql.Thirty360(ql.Thirty360.USA)
    except (AttributeError, TypeError):
        return ql.Thirty360()


def day_counter(name):
    """Resolve a day count name such as 'ACT/365', 'ACT/360' or '30/360'."""
    if isinstance(name, ql.DayCounter):
        return name
    key = str(name).strip().upper().replace("ACTUAL", "ACT").replace(" ", "")
    if key in ("ACT/365", "ACT/365F", "ACT/365FIXED"):
        return ql.Actual365Fixed()
    if key == "ACT/360":
        return ql.Actual360()
    if key in ("ACT/ACT", "ACT/ACTISDA"):
        return ql.ActualActual(ql.ActualActual.ISDA)
    if key in ("30/360", "30/360US", "30/360USA"):
        return thirty360_usa()
    raise ValueError(f"Unknown day count: {name}")


class DateUtils:
    """Small helpers to keep date parsing and year fractions in one place."""

    @staticmethod
    def to_ql_date(d):
        """Convert common Python date representations into QuantLib.Date."""
        if isinstance(d, ql.Date):
            return d
        if isinstance(d, str):
            d = pd.to_datetime(d).date()
        elif isinstance(d, pd.Timestamp):
            d = d.date()
        if isinstance(d, datetime.datetime):
            d = d.date()
        return ql.Date(d.day, d.month, d.year)

    @staticmethod
    def to_py_date(d):
        """Convert a QuantLib.Date (or anything ``to_ql_date`` accepts) to ``datetime.date``."""
        d = DateUtils.to_ql_date(d)
        return datetime.date(d.year(), d.month(), d.dayOfMonth())

    @staticmethod
    def days_between(start, end):
        return int(DateUtils.to_ql_date(end) - DateUtils.to_ql_date(start))

    @staticmethod
    def year_fraction(start, end, day_count=None):
        """Year fraction from ``start`` to ``end`` (Actual/365 Fixed by default)."""
        dc = day_count if day_count is not None else default_day_count()
        return dc.yearFraction(DateUtils.to_ql_date(start), DateUtils.to_ql_date(end))

    @staticmethod
    def year_fractions(as_of, dates, day_count=None):
        """Year fractions from ``as_of`` to each date, as a list of floats."""
        return [DateUtils.year_fraction(as_of, d, day_count) for d in dates]
