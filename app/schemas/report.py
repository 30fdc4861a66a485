"""Pydantic schemas for transaction input and portfolio report output."""

from __future__ import annotations

import datetime as dt
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field, field_validator

from equity_engine.models import EngineStatus, Transaction, TransactionType

if TYPE_CHECKING:
    from app.services.report import PortfolioReport


class TransactionRecord(BaseModel):
    """A validated transaction row handed over by the import pipeline."""

    date: dt.date
    ticker: str = Field(..., min_length=1, examples=["AAPL"])
    type: TransactionType
    quantity: Decimal = Decimal("0")
    price: Decimal = Decimal("0")
    fees: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    notes: str | None = None
    id: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("ticker", "currency")
    @classmethod
    def _upper_code(cls, value: str) -> str:
        return value.strip().upper()

    def to_domain(self) -> Transaction:
        return Transaction(
            date=self.date,
            ticker=self.ticker,
            type=self.type,
            quantity=self.quantity,
            price=self.price,
            fees=self.fees,
            currency=self.currency,
            notes=self.notes,
            id=self.id,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "date": "2023-01-15",
                "ticker": "AAPL",
                "type": "BUY",
                "quantity": 10,
                "price": 150,
                "fees": 9.99,
                "currency": "USD",
            }
        }


class PositionSchema(BaseModel):
    ticker: str
    shares: Decimal
    cost_basis: Decimal
    price: Optional[Decimal] = None
    market_value: Decimal
    unrealized_gain: Decimal
    realized_gain: Decimal
    weight: Decimal


class AllocationSchema(BaseModel):
    ticker: str
    value: Decimal
    weight: Decimal


class SeriesPointSchema(BaseModel):
    date: dt.date
    value: Decimal
    cumulative_return: Decimal
    cost_basis: Decimal
    realized_gain: Decimal
    unrealized_gain: Decimal


class BenchmarkPointSchema(BaseModel):
    date: dt.date
    value: Decimal
    shares: Decimal
    close: Decimal


class RelativePointSchema(BaseModel):
    date: dt.date
    portfolio_return: Decimal
    benchmark_return: Decimal
    excess_return: Decimal


class WarningSchema(BaseModel):
    code: str
    message: str
    ticker: str | None = None
    date: Optional[dt.date] = None


class StatusSchema(BaseModel):
    valued_through: Optional[date] = None
    bridged_tickers: list[str] = Field(default_factory=list)
    missing_prices: list[str] = Field(default_factory=list)
    spot_valued_tickers: list[str] = Field(default_factory=list)
    warnings: list[WarningSchema] = Field(default_factory=list)
    total_trades: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    skipped: bool = False
    skip_reason: str | None = None
    backfill_count: int = 0

    @classmethod
    def from_status(cls, status: EngineStatus) -> "StatusSchema":
        return cls(
            valued_through=status.valued_through,
            bridged_tickers=status.bridged_tickers,
            missing_prices=status.missing_prices,
            spot_valued_tickers=status.spot_valued_tickers,
            warnings=[
                WarningSchema(code=w.code.value, message=w.message, ticker=w.ticker, date=w.date)
                for w in status.warnings
            ],
            total_trades=status.total_trades,
            start_date=status.start_date,
            end_date=status.end_date,
            skipped=status.skipped,
            skip_reason=status.skip_reason.value if status.skip_reason else None,
            backfill_count=status.backfill_count,
        )


class SummarySchema(BaseModel):
    total_value: Decimal
    total_cost_basis: Decimal
    realized_gain: Decimal
    unrealized_gain: Decimal
    total_gain: Decimal
    total_gain_percent: Decimal
    ytd_return: Decimal
    ytd_baseline_date: Optional[date] = None
    cagr_1y: Optional[Decimal] = None
    cagr_3y: Optional[Decimal] = None
    cagr_5y: Optional[Decimal] = None


class PortfolioReportSchema(BaseModel):
    as_of: date
    cost_basis_method: str
    period: str
    benchmark_ticker: str
    positions: list[PositionSchema]
    allocation: list[AllocationSchema]
    series: list[SeriesPointSchema]
    benchmark: list[BenchmarkPointSchema]
    relative: list[RelativePointSchema]
    summary: SummarySchema
    status: StatusSchema
    benchmark_status: StatusSchema
    relative_status: StatusSchema

    @classmethod
    def from_report(cls, report: "PortfolioReport") -> "PortfolioReportSchema":
        summary = report.summary
        return cls(
            as_of=report.as_of,
            cost_basis_method=report.method.value,
            period=report.period.value,
            benchmark_ticker=report.benchmark.ticker,
            positions=[
                PositionSchema(
                    ticker=p.ticker,
                    shares=p.shares,
                    cost_basis=p.cost_basis,
                    price=p.price,
                    market_value=p.market_value,
                    unrealized_gain=p.unrealized_gain,
                    realized_gain=p.realized_gain,
                    weight=p.weight,
                )
                for p in report.positions
            ],
            allocation=[AllocationSchema(ticker=s.ticker, value=s.value, weight=s.weight) for s in report.allocation],
            series=[
                SeriesPointSchema(
                    date=p.date,
                    value=p.value,
                    cumulative_return=p.cumulative_return,
                    cost_basis=p.cost_basis,
                    realized_gain=p.realized_gain,
                    unrealized_gain=p.unrealized_gain,
                )
                for p in report.equity.series
            ],
            benchmark=[
                BenchmarkPointSchema(date=p.date, value=p.value, shares=p.shares, close=p.close)
                for p in report.benchmark.series
            ],
            relative=[
                RelativePointSchema(
                    date=p.date,
                    portfolio_return=p.portfolio_return,
                    benchmark_return=p.benchmark_return,
                    excess_return=p.excess_return,
                )
                for p in report.relative.points
            ],
            summary=SummarySchema(
                total_value=summary.total_value,
                total_cost_basis=summary.total_cost_basis,
                realized_gain=summary.realized_gain,
                unrealized_gain=summary.unrealized_gain,
                total_gain=summary.total_gain,
                total_gain_percent=summary.total_gain_percent,
                ytd_return=summary.ytd_return,
                ytd_baseline_date=report.ytd.baseline_date,
                cagr_1y=summary.cagr_1y,
                cagr_3y=summary.cagr_3y,
                cagr_5y=summary.cagr_5y,
            ),
            status=StatusSchema.from_status(report.equity.status),
            benchmark_status=StatusSchema.from_status(report.benchmark.status),
            relative_status=StatusSchema.from_status(report.relative.status),
        )


__all__ = [
    "AllocationSchema",
    "BenchmarkPointSchema",
    "PortfolioReportSchema",
    "PositionSchema",
    "RelativePointSchema",
    "SeriesPointSchema",
    "StatusSchema",
    "SummarySchema",
    "TransactionRecord",
    "WarningSchema",
]
