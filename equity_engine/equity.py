"""Daily equity curve built from a transaction list and resolved prices.

The curve has one point per calendar day from the first transaction through
``as_of``. Tickers with a dense close history move continuously; snapshot
priced tickers step between their own trade prices. A day on which holdings
exist but nothing can be priced carries the previous valuation forward.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal, getcontext
from typing import Iterable, List, Sequence

import pandas as pd

from .ledger import CostBasisLedger, LedgerResult
from .models import (
    HUNDRED,
    ZERO,
    CostBasisMethod,
    EngineStatus,
    EngineWarning,
    EquitySeriesPoint,
    PriceMode,
    SkipReason,
    Transaction,
    WarningCode,
)
from .prices import BatchPriceCache, PriceResolver, PriceSource, TickerNormalizer

getcontext().prec = 28

logger = logging.getLogger(__name__)


@dataclass
class EquityCurveResult:
    series: List[EquitySeriesPoint]
    status: EngineStatus
    ledger: LedgerResult | None = None

    @property
    def skipped(self) -> bool:
        return self.status.skipped

    @property
    def latest(self) -> EquitySeriesPoint | None:
        return self.series[-1] if self.series else None


def calendar_days(start: date, end: date) -> List[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def apply_cumulative_returns(points: Sequence[EquitySeriesPoint]) -> List[EquitySeriesPoint]:
    """Express each value as percent change from the first positive value.

    Points before that baseline get a cumulative return of zero.
    """

    baseline = next((p.value for p in points if p.value > 0), None)
    if baseline is None:
        return [replace(p, cumulative_return=ZERO) for p in points]
    seen_baseline = False
    rebased: List[EquitySeriesPoint] = []
    for point in points:
        if not seen_baseline and point.value > 0:
            seen_baseline = True
        if seen_baseline:
            change = (point.value / baseline - 1) * HUNDRED
        else:
            change = ZERO
        rebased.append(replace(point, cumulative_return=change))
    return rebased


class EquityCurveBuilder:
    """Walk calendar days and value live holdings against resolved prices."""

    def __init__(
        self,
        prices: PriceSource | BatchPriceCache,
        *,
        method: CostBasisMethod | str = CostBasisMethod.FIFO,
        ledger: CostBasisLedger | None = None,
        normalizer: TickerNormalizer | None = None,
    ):
        self.cache = prices if isinstance(prices, BatchPriceCache) else BatchPriceCache(prices)
        self.normalizer = normalizer
        self.ledger = ledger or CostBasisLedger(method, normalizer=normalizer)

    def build(self, transactions: Iterable[Transaction], as_of: date | None = None) -> EquityCurveResult:
        today = as_of or date.today()
        status = EngineStatus()
        ledger_result = self.ledger.apply_transactions(transactions, as_of=today)
        status.warnings.extend(ledger_result.warnings)
        status.total_trades = sum(1 for tx in ledger_result.transactions if tx.type.is_trade)

        first_day = ledger_result.first_date
        if first_day is None:
            status.skip_reason = SkipReason.NO_TRANSACTIONS
            logger.info("Equity curve skipped: %s", status.skip_reason.value)
            return EquityCurveResult(series=[], status=status, ledger=ledger_result)

        status.start_date = first_day
        status.end_date = today
        tickers = [t for t in ledger_result.tickers if any(s.shares > 0 for s in ledger_result.timeline[t])]
        self.cache.load(tickers, first_day, today)
        resolver = PriceResolver(
            self.cache,
            today=today,
            transactions=ledger_result.transactions,
            normalizer=self.normalizer,
        )

        # Resolvability depends on the source tier, not on the day.
        missing = sorted(t for t in tickers if not resolver.resolve(t, today).resolved)
        priced_tickers = [t for t in tickers if t not in missing]
        bridged: set[str] = set()
        spot: set[str] = set()
        carried: List[date] = []
        points: List[EquitySeriesPoint] = []
        last_value: Decimal | None = None

        for day in calendar_days(first_day, today):
            holdings = {t: s for t, s in ledger_result.holdings_as_of(day).items() if t not in missing}
            value = ZERO
            priced = False
            for ticker, shares in holdings.items():
                resolution = resolver.resolve(ticker, day)
                if not resolution.resolved:
                    continue
                if resolution.clamped:
                    bridged.add(ticker)
                if resolution.mode is PriceMode.SPOT:
                    spot.add(ticker)
                value += shares * resolution.price
                priced = True
            if holdings and not priced:
                value = last_value if last_value is not None else ZERO
                carried.append(day)
            last_value = value
            cost_basis = sum(
                (ledger_result.cost_basis_as_of(t, day) for t in priced_tickers),
                ZERO,
            )
            points.append(
                EquitySeriesPoint(
                    date=day,
                    value=value,
                    cost_basis=cost_basis,
                    realized_gain=ledger_result.realized_as_of(day),
                )
            )

        for ticker in missing:
            status.warn(
                EngineWarning(
                    code=WarningCode.MISSING_PRICE,
                    message=f"No price source for {ticker}; excluded from valuation",
                    ticker=ticker,
                )
            )
            logger.warning("No price source resolved %s in window; excluded from valuation", ticker)
        if carried:
            status.warn(
                EngineWarning(
                    code=WarningCode.NO_PRICED_HOLDINGS,
                    message=f"{len(carried)} day(s) carried forward without a priced holding",
                    date=carried[0],
                )
            )

        status.missing_prices = missing
        status.bridged_tickers = sorted(bridged)
        status.spot_valued_tickers = sorted(spot)
        series = apply_cumulative_returns(points)
        positive = [p.date for p in series if p.value > 0]
        status.valued_through = positive[-1] if positive else None
        if missing and not priced_tickers:
            status.skip_reason = SkipReason.NO_PRICED_HOLDINGS
            logger.warning("Equity curve skipped: %s", status.skip_reason.value)
            return EquityCurveResult(series=[], status=status, ledger=ledger_result)

        logger.info(
            "Built equity curve with %d points from %s to %s (%d missing, %d spot)",
            len(series),
            first_day.isoformat(),
            today.isoformat(),
            len(missing),
            len(spot),
        )
        return EquityCurveResult(series=series, status=status, ledger=ledger_result)


def to_frame(series: Sequence[EquitySeriesPoint]) -> pd.DataFrame:
    """Return ``series`` as a date-indexed frame of floats."""

    if not series:
        return pd.DataFrame(columns=["value", "cumulative_return", "cost_basis", "realized_gain", "unrealized_gain"])
    frame = pd.DataFrame(
        {
            "value": [float(p.value) for p in series],
            "cumulative_return": [float(p.cumulative_return) for p in series],
            "cost_basis": [float(p.cost_basis) for p in series],
            "realized_gain": [float(p.realized_gain) for p in series],
            "unrealized_gain": [float(p.unrealized_gain) for p in series],
        },
        index=pd.DatetimeIndex([pd.Timestamp(p.date) for p in series], name="date"),
    )
    return frame


__all__ = [
    "EquityCurveBuilder",
    "EquityCurveResult",
    "apply_cumulative_returns",
    "calendar_days",
    "to_frame",
]
