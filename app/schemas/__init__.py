"""Pydantic schema exports."""

from .report import (
    AllocationSchema,
    BenchmarkPointSchema,
    PortfolioReportSchema,
    PositionSchema,
    RelativePointSchema,
    SeriesPointSchema,
    StatusSchema,
    SummarySchema,
    TransactionRecord,
    WarningSchema,
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
