"""Return metrics derived from an equity series and valued positions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, getcontext
from enum import Enum
from typing import List, Mapping, Optional, Protocol, Sequence

import pandas as pd

from .models import HUNDRED, ZERO, Position

getcontext().prec = 28


class ValuedPoint(Protocol):
    date: date
    value: Decimal


class Period(str, Enum):
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    YTD = "YTD"
    ONE_YEAR = "1Y"
    TWO_YEARS = "2Y"
    FIVE_YEARS = "5Y"
    ALL = "ALL"


_PERIOD_OFFSETS = {
    Period.ONE_MONTH: pd.DateOffset(months=1),
    Period.THREE_MONTHS: pd.DateOffset(months=3),
    Period.SIX_MONTHS: pd.DateOffset(months=6),
    Period.ONE_YEAR: pd.DateOffset(years=1),
    Period.TWO_YEARS: pd.DateOffset(years=2),
    Period.FIVE_YEARS: pd.DateOffset(years=5),
}


def period_start(period: Period | str, today: date) -> date | None:
    """First day inside ``period`` ending ``today``; ``None`` means unbounded."""

    if not isinstance(period, Period):
        period = Period(period.upper())
    if period is Period.ALL:
        return None
    if period is Period.YTD:
        return date(today.year, 1, 1)
    return (pd.Timestamp(today) - _PERIOD_OFFSETS[period]).date()


@dataclass(frozen=True)
class YTDResult:
    ytd_return: Decimal
    baseline_date: Optional[date]
    baseline_value: Decimal
    current_value: Decimal


def compute_ytd(series: Sequence[ValuedPoint], today: date | None = None) -> YTDResult:
    """Year-to-date return in percent.

    The baseline is the January 1 point of ``today``'s year, else the first
    point after January 1, else the first point of the series. A baseline
    that is not positive yields a return of zero.
    """

    if not series:
        return YTDResult(ytd_return=ZERO, baseline_date=None, baseline_value=ZERO, current_value=ZERO)
    today = today or date.today()
    jan_first = date(today.year, 1, 1)
    baseline = next((p for p in series if p.date >= jan_first), series[0])
    eligible = [p for p in series if p.date <= today]
    current = eligible[-1] if eligible else series[-1]
    if baseline.value <= 0:
        ytd = ZERO
    else:
        ytd = (current.value / baseline.value - 1) * HUNDRED
    return YTDResult(
        ytd_return=ytd,
        baseline_date=baseline.date,
        baseline_value=baseline.value,
        current_value=current.value,
    )


def compute_cagr(series: Sequence[ValuedPoint], years: int) -> Decimal | None:
    """Compound annual growth rate in percent over the trailing ``years``.

    Returns ``None`` unless the series spans at least ``years`` years and has
    a positive value at both ends of the window.
    """

    if years <= 0 or len(series) < 2:
        return None
    first, last = series[0], series[-1]
    anchor = (pd.Timestamp(last.date) - pd.DateOffset(years=years)).date()
    if first.date > anchor or last.value <= 0:
        return None
    base = next((p for p in series if p.date >= anchor and p.value > 0), None)
    if base is None or base.date >= last.date:
        return None
    growth = (last.value / base.value) ** (Decimal(1) / Decimal(years))
    return (growth - 1) * HUNDRED


@dataclass(frozen=True)
class RebasedPoint:
    date: date
    value: Decimal
    rebased_return: Decimal


def rebase_series(
    series: Sequence[ValuedPoint],
    period: Period | str = Period.ALL,
    today: date | None = None,
) -> List[RebasedPoint]:
    """Re-express the window as percent change from its first positive value.

    Leading points before that baseline are dropped so the window starts at
    0%. An empty list means the window has no valid base.
    """

    if not series:
        return []
    today = today or series[-1].date
    start = period_start(period, today)
    window = [p for p in series if p.date <= today and (start is None or p.date >= start)]
    base_index = next((i for i, p in enumerate(window) if p.value > 0), None)
    if base_index is None:
        return []
    base = window[base_index].value
    return [
        RebasedPoint(date=p.date, value=p.value, rebased_return=(p.value / base - 1) * HUNDRED)
        for p in window[base_index:]
    ]


@dataclass(frozen=True)
class SummaryMetrics:
    total_value: Decimal
    total_cost_basis: Decimal
    realized_gain: Decimal
    unrealized_gain: Decimal
    total_gain: Decimal
    total_gain_percent: Decimal
    ytd_return: Decimal
    cagr_1y: Optional[Decimal]
    cagr_3y: Optional[Decimal]
    cagr_5y: Optional[Decimal]


def compute_summary(
    positions: Mapping[str, Position],
    realized_gain: Decimal,
    series: Sequence[ValuedPoint],
    today: date | None = None,
) -> SummaryMetrics:
    total_value = sum((p.market_value for p in positions.values()), ZERO)
    total_cost = sum((p.cost_basis for p in positions.values()), ZERO)
    unrealized = total_value - total_cost
    total_gain = unrealized + realized_gain
    percent = total_gain / total_cost * HUNDRED if total_cost > 0 else ZERO
    return SummaryMetrics(
        total_value=total_value,
        total_cost_basis=total_cost,
        realized_gain=realized_gain,
        unrealized_gain=unrealized,
        total_gain=total_gain,
        total_gain_percent=percent,
        ytd_return=compute_ytd(series, today).ytd_return,
        cagr_1y=compute_cagr(series, 1),
        cagr_3y=compute_cagr(series, 3),
        cagr_5y=compute_cagr(series, 5),
    )


__all__ = [
    "Period",
    "RebasedPoint",
    "SummaryMetrics",
    "YTDResult",
    "compute_cagr",
    "compute_summary",
    "compute_ytd",
    "period_start",
    "rebase_series",
]
