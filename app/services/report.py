"""Assemble a portfolio report from transactions and a price source.

``compute_report`` is synchronous and works on already materialized prices.
``build_report`` first fetches every needed price from the price service in a
single batch, then delegates to ``compute_report``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List

import httpx

from app.config import AppSettings, get_settings
from app.core.telemetry import get_tracer
from app.providers.price_service import PriceServiceClient
from app.services.prices import load_price_source
from equity_engine.benchmark import BenchmarkEngine, BenchmarkResult, RelativeReturnResult, compare_to_benchmark
from equity_engine.equity import EquityCurveBuilder, EquityCurveResult
from equity_engine.fx import FXRateProvider
from equity_engine.ledger import AllocationSlice, CostBasisLedger, asset_allocation, mark_to_market
from equity_engine.models import CostBasisMethod, Position, Transaction
from equity_engine.prices import (
    BatchPriceCache,
    InMemoryPriceSource,
    PriceResolver,
    PriceSource,
    TickerNormalizer,
)
from equity_engine.returns import Period, SummaryMetrics, YTDResult, compute_summary, compute_ytd

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


@dataclass
class PortfolioReport:
    as_of: date
    method: CostBasisMethod
    period: Period
    positions: List[Position]
    allocation: List[AllocationSlice]
    equity: EquityCurveResult
    benchmark: BenchmarkResult
    relative: RelativeReturnResult
    ytd: YTDResult
    summary: SummaryMetrics


def _normalizer(settings: AppSettings) -> TickerNormalizer:
    return TickerNormalizer(aliases=settings.ticker_aliases, suffixes=tuple(settings.exchange_suffixes))


def _ledger(settings: AppSettings, fx_provider: FXRateProvider | None) -> CostBasisLedger:
    return CostBasisLedger(
        settings.cost_basis_method,
        collapse_same_day=settings.collapse_same_day_trades,
        capitalize_buy_fees=settings.capitalize_buy_fees,
        fx_provider=fx_provider or FXRateProvider(base_currency=settings.base_currency),
        normalizer=_normalizer(settings),
    )


def compute_report(
    transactions: Iterable[Transaction],
    price_source: PriceSource,
    *,
    as_of: date | None = None,
    period: Period | str = Period.ALL,
    settings: AppSettings | None = None,
    fx_provider: FXRateProvider | None = None,
) -> PortfolioReport:
    settings = settings or get_settings()
    today = as_of or settings.local_today()
    period = period if isinstance(period, Period) else Period(period.upper())
    normalizer = _normalizer(settings)
    ledger = _ledger(settings, fx_provider)
    cache = BatchPriceCache(price_source)

    with tracer.start_as_current_span("portfolio.compute_report") as span:
        equity = EquityCurveBuilder(cache, ledger=ledger, normalizer=normalizer).build(transactions, as_of=today)
        ledger_result = equity.ledger
        assert ledger_result is not None

        prices = {}
        if ledger_result.positions:
            resolver = PriceResolver(
                cache,
                today=today,
                transactions=ledger_result.transactions,
                normalizer=normalizer,
            )
            prices = {ticker: resolver.resolve(ticker, today).price for ticker in ledger_result.positions}
        valued = mark_to_market(ledger_result.positions, prices)

        benchmark = BenchmarkEngine(cache, settings.benchmark_ticker, normalizer=normalizer).build(
            ledger_result.transactions, equity.series
        )
        relative = compare_to_benchmark(equity.series, benchmark, period, today)
        summary = compute_summary(valued, ledger_result.realized_gain, equity.series, today)

        span.set_attribute("portfolio.transactions", len(ledger_result.transactions))
        span.set_attribute("portfolio.positions", len(valued))
        span.set_attribute("portfolio.series_points", len(equity.series))
        span.set_attribute("portfolio.missing_prices", len(equity.status.missing_prices))
        span.set_attribute("portfolio.benchmark_skipped", benchmark.skipped)

    logger.info(
        "Computed report as of %s: %d positions, %d series points, %d warnings",
        today.isoformat(),
        len(valued),
        len(equity.series),
        len(equity.status.warnings),
    )
    return PortfolioReport(
        as_of=today,
        method=ledger.method,
        period=period,
        positions=sorted(valued.values(), key=lambda p: p.ticker),
        allocation=asset_allocation(valued),
        equity=equity,
        benchmark=benchmark,
        relative=relative,
        ytd=compute_ytd(equity.series, today),
        summary=summary,
    )


async def build_report(
    transactions: Iterable[Transaction],
    *,
    as_of: date | None = None,
    period: Period | str = Period.ALL,
    settings: AppSettings | None = None,
    fx_provider: FXRateProvider | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> PortfolioReport:
    """Fetch prices once for the whole window, then compute the report."""

    settings = settings or get_settings()
    today = as_of or settings.local_today()
    transactions = list(transactions)
    normalizer = _normalizer(settings)
    in_window = [tx for tx in transactions if tx.date <= today]
    if not in_window:
        return compute_report(
            transactions,
            InMemoryPriceSource(),
            as_of=today,
            period=period,
            settings=settings,
            fx_provider=fx_provider,
        )

    tickers = {normalizer(tx.ticker) for tx in in_window} | {normalizer(settings.benchmark_ticker)}
    start = min(tx.date for tx in in_window)

    with tracer.start_as_current_span("portfolio.load_prices") as span:
        span.set_attribute("portfolio.tickers", len(tickers))
        async with PriceServiceClient.from_settings(settings, client=http_client) as client:
            source = await load_price_source(
                client,
                tickers,
                start,
                today,
                concurrency=settings.price_service_concurrency,
            )

    return compute_report(
        transactions,
        source,
        as_of=today,
        period=period,
        settings=settings,
        fx_provider=fx_provider,
    )


__all__ = ["PortfolioReport", "build_report", "compute_report"]
