from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from equity_engine.models import EquitySeriesPoint, Position
from equity_engine.returns import (
    Period,
    compute_cagr,
    compute_summary,
    compute_ytd,
    period_start,
    rebase_series,
)


def point(day: date, value: str) -> EquitySeriesPoint:
    return EquitySeriesPoint(date=day, value=Decimal(value))


def daily_series(start: date, end: date, first_value: int = 100) -> list[EquitySeriesPoint]:
    days = (end - start).days + 1
    return [point(start + timedelta(days=i), str(first_value + i)) for i in range(days)]


def test_ytd_uses_first_point_when_series_starts_mid_year():
    series = daily_series(date(2023, 6, 1), date(2023, 12, 1))

    result = compute_ytd(series, today=date(2023, 12, 1))

    assert result.baseline_date == date(2023, 6, 1)
    assert result.baseline_value == Decimal("100")
    expected = (series[-1].value / Decimal("100") - 1) * 100
    assert result.ytd_return == expected


def test_ytd_uses_january_first_when_present():
    series = daily_series(date(2023, 12, 30), date(2024, 1, 5))

    result = compute_ytd(series, today=date(2024, 1, 5))

    assert result.baseline_date == date(2024, 1, 1)
    assert result.baseline_value == Decimal("102")


def test_ytd_uses_first_point_after_january_first():
    series = [point(date(2023, 12, 29), "90"), point(date(2024, 1, 3), "100"), point(date(2024, 1, 10), "110")]

    result = compute_ytd(series, today=date(2024, 1, 10))

    assert result.baseline_date == date(2024, 1, 3)
    assert result.ytd_return == Decimal("10")


def test_ytd_with_zero_baseline_is_zero():
    series = [point(date(2024, 1, 1), "0"), point(date(2024, 1, 2), "100")]

    assert compute_ytd(series, today=date(2024, 1, 2)).ytd_return == Decimal("0")
    assert compute_ytd([], today=date(2024, 1, 2)).baseline_date is None


def test_cagr_requires_full_span():
    series = [point(date(2020, 1, 1), "100"), point(date(2022, 1, 1), "121")]

    assert float(compute_cagr(series, 2)) == pytest.approx(10.0)
    assert compute_cagr(series, 3) is None
    assert compute_cagr(series[:1], 1) is None


def test_cagr_over_one_year():
    series = [point(date(2023, 1, 1), "100"), point(date(2023, 7, 1), "105"), point(date(2024, 1, 1), "110")]

    assert compute_cagr(series, 1) == Decimal("10")


def test_period_start_boundaries():
    today = date(2024, 3, 31)

    assert period_start(Period.ALL, today) is None
    assert period_start(Period.YTD, today) == date(2024, 1, 1)
    assert period_start("1m", today) == date(2024, 2, 29)
    assert period_start(Period.ONE_YEAR, today) == date(2023, 3, 31)


def test_rebase_series_starts_window_at_zero():
    series = daily_series(date(2024, 1, 1), date(2024, 3, 31))

    rebased = rebase_series(series, Period.ONE_MONTH, today=date(2024, 3, 31))

    assert rebased[0].date == date(2024, 2, 29)
    assert rebased[0].rebased_return == Decimal("0")
    assert rebased[-1].date == date(2024, 3, 31)
    assert rebased[-1].value == series[-1].value


def test_rebase_series_drops_leading_zero_values():
    series = [point(date(2024, 1, 1), "0"), point(date(2024, 1, 2), "200"), point(date(2024, 1, 3), "250")]

    rebased = rebase_series(series)

    assert [p.date for p in rebased] == [date(2024, 1, 2), date(2024, 1, 3)]
    assert [p.rebased_return for p in rebased] == [Decimal("0"), Decimal("25")]
    assert rebase_series([point(date(2024, 1, 1), "0")]) == []


def test_summary_combines_realized_and_unrealized_gain():
    positions = {
        "AAPL": Position(
            ticker="AAPL",
            shares=Decimal("10"),
            cost_basis=Decimal("1000"),
            market_value=Decimal("1200"),
        )
    }
    series = [point(date(2024, 1, 2), "1000"), point(date(2024, 1, 3), "1200")]

    summary = compute_summary(positions, Decimal("50"), series, today=date(2024, 1, 3))

    assert summary.total_value == Decimal("1200")
    assert summary.unrealized_gain == Decimal("200")
    assert summary.total_gain == Decimal("250")
    assert summary.total_gain_percent == Decimal("25")
    assert summary.ytd_return == Decimal("20")
    assert summary.cagr_1y is None
