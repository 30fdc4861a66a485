"""Synthetic benchmark driven by the portfolio's own cash flows.

Every buy spends its cash (notional plus fees) on the reference instrument at
that day's close; every sell raises its cash (notional minus fees) by selling
reference shares. Trades on the same day are applied in input order.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, getcontext
from typing import Iterable, List, Sequence

from .models import (
    HUNDRED,
    ZERO,
    EngineStatus,
    EngineWarning,
    SkipReason,
    Transaction,
    TransactionType,
    WarningCode,
)
from .prices import BatchPriceCache, PriceSource, TickerNormalizer, normalize_ticker
from .returns import Period, ValuedPoint, period_start

getcontext().prec = 28

logger = logging.getLogger(__name__)

DEFAULT_BENCHMARK_TICKER = "SPY"


@dataclass(frozen=True)
class BenchmarkPoint:
    date: date
    value: Decimal
    shares: Decimal
    close: Decimal


@dataclass
class BenchmarkResult:
    ticker: str
    series: List[BenchmarkPoint]
    status: EngineStatus

    @property
    def skipped(self) -> bool:
        return self.status.skipped


class BenchmarkEngine:
    def __init__(
        self,
        prices: PriceSource | BatchPriceCache,
        ticker: str = DEFAULT_BENCHMARK_TICKER,
        *,
        normalizer: TickerNormalizer | None = None,
    ):
        self.cache = prices if isinstance(prices, BatchPriceCache) else BatchPriceCache(prices)
        self.ticker = (normalizer or normalize_ticker)(ticker)

    def build(
        self,
        transactions: Iterable[Transaction],
        reference_series: Sequence[ValuedPoint],
    ) -> BenchmarkResult:
        """Value a shadow position aligned one-for-one with ``reference_series``."""

        status = EngineStatus()
        trades = [tx for tx in transactions if TransactionType(tx.type).is_trade and tx.quantity > 0]
        status.total_trades = len(trades)
        if not trades:
            return self._skip(status, SkipReason.NO_TRADES)
        if not reference_series:
            return self._skip(status, SkipReason.NO_REFERENCE_SERIES)

        # Stable sort keeps input order for trades sharing a date.
        ordered = sorted(trades, key=lambda tx: tx.date)
        start = min(reference_series[0].date, ordered[0].date)
        end = reference_series[-1].date
        status.start_date, status.end_date = start, end

        self.cache.load({self.ticker}, start, end)
        if not self.cache.covers(self.ticker):
            return self._skip(status, SkipReason.NO_COVERAGE)

        shares = ZERO
        event_days: List[date] = []
        event_shares: List[Decimal] = []
        for tx in ordered:
            close = self._trade_close(tx, status)
            notional = tx.price * tx.quantity
            if TransactionType(tx.type) is TransactionType.BUY:
                shares += (notional + tx.fees) / close
            else:
                wanted = max(notional - tx.fees, ZERO) / close
                if wanted > shares:
                    message = f"Synthetic sell of {wanted} {self.ticker} capped at {shares} held"
                    logger.warning("%s on %s", message, tx.date.isoformat())
                    status.warn(
                        EngineWarning(
                            code=WarningCode.BENCHMARK_SELL_CAPPED,
                            message=message,
                            ticker=tx.ticker,
                            date=tx.date,
                        )
                    )
                    wanted = shares
                shares -= wanted
            event_days.append(tx.date)
            event_shares.append(shares)

        series: List[BenchmarkPoint] = []
        for point in reference_series:
            idx = bisect.bisect_right(event_days, point.date)
            held = event_shares[idx - 1] if idx else ZERO
            quote = self.cache.close(self.ticker, point.date)
            assert quote is not None
            close = quote[0]
            series.append(BenchmarkPoint(date=point.date, value=held * close, shares=held, close=close))

        status.valued_through = series[-1].date if series else None
        if status.backfill_count:
            logger.info(
                "Benchmark %s used %d filled closes for trade dates", self.ticker, status.backfill_count
            )
        return BenchmarkResult(ticker=self.ticker, series=series, status=status)

    def _trade_close(self, tx: Transaction, status: EngineStatus) -> Decimal:
        quote = self.cache.close(self.ticker, tx.date)
        assert quote is not None
        if not self.cache.has_close(self.ticker, tx.date):
            status.backfill_count += 1
        return quote[0]

    def _skip(self, status: EngineStatus, reason: SkipReason) -> BenchmarkResult:
        status.skip_reason = reason
        logger.info("Benchmark %s skipped: %s", self.ticker, reason.value)
        return BenchmarkResult(ticker=self.ticker, series=[], status=status)


@dataclass(frozen=True)
class RelativePoint:
    date: date
    portfolio_return: Decimal
    benchmark_return: Decimal

    @property
    def excess_return(self) -> Decimal:
        return self.portfolio_return - self.benchmark_return


@dataclass
class RelativeReturnResult:
    period: Period
    points: List[RelativePoint]
    status: EngineStatus


def compare_to_benchmark(
    portfolio_series: Sequence[ValuedPoint],
    benchmark: BenchmarkResult,
    period: Period | str = Period.ALL,
    today: date | None = None,
) -> RelativeReturnResult:
    """Rebase portfolio and benchmark on the same window start.

    The base is the first date in the window where both legs are positive,
    so both read 0% on the first point.
    """

    if not isinstance(period, Period):
        period = Period(period.upper())
    status = EngineStatus(
        backfill_count=benchmark.status.backfill_count,
        warnings=list(benchmark.status.warnings),
    )
    if benchmark.skipped:
        status.skip_reason = benchmark.status.skip_reason
        return RelativeReturnResult(period=period, points=[], status=status)

    if portfolio_series:
        today = today or portfolio_series[-1].date
    start = period_start(period, today) if today else None
    benchmark_by_day = {p.date: p for p in benchmark.series}
    paired = [
        (p, benchmark_by_day[p.date])
        for p in portfolio_series
        if p.date in benchmark_by_day
        and (start is None or p.date >= start)
        and (today is None or p.date <= today)
    ]
    base_index = next(
        (i for i, (p, b) in enumerate(paired) if p.value > 0 and b.value > 0), None
    )
    if base_index is None:
        status.skip_reason = SkipReason.NO_REBASE_BASE
        logger.info("Relative return skipped: %s", status.skip_reason.value)
        return RelativeReturnResult(period=period, points=[], status=status)

    base_portfolio, base_benchmark = paired[base_index]
    points = [
        RelativePoint(
            date=p.date,
            portfolio_return=(p.value / base_portfolio.value - 1) * HUNDRED,
            benchmark_return=(b.value / base_benchmark.value - 1) * HUNDRED,
        )
        for p, b in paired[base_index:]
    ]
    status.start_date = points[0].date
    status.end_date = points[-1].date
    return RelativeReturnResult(period=period, points=points, status=status)


__all__ = [
    "BenchmarkEngine",
    "BenchmarkPoint",
    "BenchmarkResult",
    "DEFAULT_BENCHMARK_TICKER",
    "RelativePoint",
    "RelativeReturnResult",
    "compare_to_benchmark",
]
