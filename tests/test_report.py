from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest
from pydantic import ValidationError

from app.config import AppSettings
from app.schemas.report import PortfolioReportSchema, TransactionRecord
from app.services.report import build_report, compute_report
from equity_engine.fx import FXRateProvider
from equity_engine.models import SkipReason, TransactionType, WarningCode
from equity_engine.prices import InMemoryPriceSource
from equity_engine.returns import Period

AAPL_CLOSES = {
    date(2024, 1, 2): "100",
    date(2024, 1, 3): "110",
    date(2024, 1, 4): "120",
    date(2024, 1, 5): "130",
}
SPY_CLOSES = {
    date(2024, 1, 2): "400",
    date(2024, 1, 3): "404",
    date(2024, 1, 4): "408",
    date(2024, 1, 5): "412",
}


def build_transactions():
    record = TransactionRecord.model_validate(
        {"date": "2024-01-02", "ticker": "aapl", "type": "buy", "quantity": "10", "price": "100"}
    )
    return [record.to_domain()]


def build_settings(**overrides) -> AppSettings:
    return AppSettings(price_service_url="http://prices.test", **overrides)


def test_transaction_record_normalizes_input():
    record = TransactionRecord.model_validate(
        {"date": "2024-01-02", "ticker": " msft ", "type": "sell", "quantity": 3, "price": 410.5, "currency": "usd"}
    )

    assert record.ticker == "MSFT"
    assert record.type is TransactionType.SELL
    assert record.currency == "USD"
    assert record.to_domain().price == Decimal("410.5")

    with pytest.raises(ValidationError):
        TransactionRecord.model_validate({"date": "2024-01-02", "ticker": "MSFT", "type": "BUY", "fees": "-1"})


def test_compute_report_end_to_end():
    source = InMemoryPriceSource(closes={"AAPL": AAPL_CLOSES, "SPY": SPY_CLOSES})

    report = compute_report(
        build_transactions(),
        source,
        as_of=date(2024, 1, 5),
        settings=build_settings(),
    )

    assert [p.value for p in report.equity.series] == [
        Decimal("1000"),
        Decimal("1100"),
        Decimal("1200"),
        Decimal("1300"),
    ]
    position = report.positions[0]
    assert position.ticker == "AAPL"
    assert position.market_value == Decimal("1300")
    assert position.unrealized_gain == Decimal("300")
    assert position.weight == Decimal("100")
    assert [p.value for p in report.benchmark.series] == [
        Decimal("1000"),
        Decimal("1010"),
        Decimal("1020"),
        Decimal("1030"),
    ]
    last = report.relative.points[-1]
    assert last.portfolio_return == Decimal("30")
    assert last.benchmark_return == Decimal("3")
    assert report.summary.total_gain == Decimal("300")
    assert report.summary.total_gain_percent == Decimal("30")
    assert report.ytd.baseline_date == date(2024, 1, 2)
    assert report.period is Period.ALL


def test_report_schema_serializes():
    source = InMemoryPriceSource(closes={"AAPL": AAPL_CLOSES, "SPY": SPY_CLOSES})
    report = compute_report(
        build_transactions(), source, as_of=date(2024, 1, 5), period="ytd", settings=build_settings()
    )

    payload = json.loads(PortfolioReportSchema.from_report(report).model_dump_json())

    assert payload["period"] == "YTD"
    assert payload["cost_basis_method"] == "FIFO"
    assert payload["benchmark_ticker"] == "SPY"
    assert len(payload["series"]) == 4
    assert payload["status"]["skipped"] is False
    assert payload["summary"]["ytd_baseline_date"] == "2024-01-02"


def test_compute_report_without_transactions_skips_everything():
    report = compute_report([], InMemoryPriceSource(), as_of=date(2024, 1, 5), settings=build_settings())

    assert report.equity.status.skip_reason is SkipReason.NO_TRANSACTIONS
    assert report.benchmark.status.skip_reason is SkipReason.NO_TRADES
    assert report.relative.points == []
    assert report.summary.total_value == Decimal("0")


def test_benchmark_is_skipped_when_no_holding_can_be_priced():
    source = InMemoryPriceSource(closes={"SPY": SPY_CLOSES})

    report = compute_report(build_transactions(), source, as_of=date(2024, 1, 5), settings=build_settings())

    assert report.equity.status.skip_reason is SkipReason.NO_PRICED_HOLDINGS
    assert report.benchmark.status.skip_reason is SkipReason.NO_REFERENCE_SERIES
    assert report.benchmark.status.total_trades == 1
    assert report.relative.points == []


def test_compute_report_converts_into_configured_base_currency():
    source = InMemoryPriceSource(closes={"AAPL": AAPL_CLOSES, "SPY": SPY_CLOSES})
    settings = build_settings(base_currency="EUR")

    unconverted = compute_report(build_transactions(), source, as_of=date(2024, 1, 5), settings=settings)

    assert unconverted.positions == []
    assert [w.code for w in unconverted.equity.status.warnings] == [WarningCode.FX_RATE_MISSING]

    fx = FXRateProvider(rates={(date(2024, 1, 2), "USD", "EUR"): Decimal("0.9")}, base_currency="EUR")
    converted = compute_report(build_transactions(), source, as_of=date(2024, 1, 5), settings=settings, fx_provider=fx)

    assert converted.positions[0].cost_basis == Decimal("900.0")
    assert converted.equity.status.warnings == []


def price_service_handler(request: httpx.Request) -> httpx.Response:
    history = {"/prices/AAPL": AAPL_CLOSES, "/prices/SPY": SPY_CLOSES}
    if request.url.path == "/prices/ZZZ":
        return httpx.Response(500, text="upstream failure")
    closes = history.get(request.url.path)
    if closes is None:
        return httpx.Response(404, json={"detail": "not found"})
    return httpx.Response(
        200,
        json={"prices": [{"date": d.isoformat(), "close": float(v)} for d, v in closes.items()]},
    )


@pytest.mark.asyncio
async def test_build_report_fetches_prices_over_http():
    async with httpx.AsyncClient(transport=httpx.MockTransport(price_service_handler)) as http_client:
        report = await build_report(
            build_transactions(),
            as_of=date(2024, 1, 5),
            settings=build_settings(),
            http_client=http_client,
        )

    assert report.equity.latest.value == Decimal("1300")
    assert report.benchmark.series[-1].value == Decimal("1030")
    assert report.equity.status.missing_prices == []


@pytest.mark.asyncio
async def test_build_report_survives_failing_ticker():
    transactions = build_transactions() + [
        TransactionRecord.model_validate(
            {"date": "2024-01-03", "ticker": "ZZZ", "type": "BUY", "quantity": 1, "price": 5}
        ).to_domain()
    ]
    async with httpx.AsyncClient(transport=httpx.MockTransport(price_service_handler)) as http_client:
        report = await build_report(
            transactions,
            as_of=date(2024, 1, 5),
            settings=build_settings(),
            http_client=http_client,
        )

    assert report.equity.status.missing_prices == ["ZZZ"]
    assert report.equity.latest.value == Decimal("1300")


@pytest.mark.asyncio
async def test_build_report_survives_malformed_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path in ("/prices/BAD", "/snapshots/BAD"):
            return httpx.Response(
                200,
                json={"prices": [{"date": "2024-01-03", "close": "n/a"}], "price": "n/a"},
            )
        return price_service_handler(request)

    transactions = build_transactions() + [
        TransactionRecord.model_validate(
            {"date": "2024-01-03", "ticker": "BAD", "type": "BUY", "quantity": 1, "price": 5}
        ).to_domain()
    ]
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        report = await build_report(
            transactions,
            as_of=date(2024, 1, 5),
            settings=build_settings(),
            http_client=http_client,
        )

    assert report.equity.status.missing_prices == ["BAD"]
    assert report.equity.latest.value == Decimal("1300")


@pytest.mark.asyncio
async def test_build_report_without_transactions_makes_no_requests():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected request to {request.url}")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        report = await build_report([], as_of=date(2024, 1, 5), settings=build_settings(), http_client=http_client)

    assert report.equity.skipped
    assert report.benchmark.skipped
