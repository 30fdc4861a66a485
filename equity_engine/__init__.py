"""Core package for the portfolio equity engine."""

from .benchmark import BenchmarkEngine, BenchmarkResult, compare_to_benchmark
from .equity import EquityCurveBuilder, EquityCurveResult
from .fx import FXRateProvider
from .ledger import CostBasisLedger, LedgerResult, mark_to_market
from .models import (
    CostBasisMethod,
    EngineStatus,
    EquitySeriesPoint,
    Position,
    PriceMode,
    PriceResolution,
    SkipReason,
    Transaction,
    TransactionType,
    WarningCode,
)
from .prices import BatchPriceCache, InMemoryPriceSource, PriceResolver, normalize_ticker
from .returns import Period, compute_cagr, compute_summary, compute_ytd, rebase_series

__all__ = [
    "BatchPriceCache",
    "BenchmarkEngine",
    "BenchmarkResult",
    "CostBasisLedger",
    "CostBasisMethod",
    "EngineStatus",
    "EquityCurveBuilder",
    "EquityCurveResult",
    "EquitySeriesPoint",
    "FXRateProvider",
    "InMemoryPriceSource",
    "LedgerResult",
    "Period",
    "Position",
    "PriceMode",
    "PriceResolution",
    "PriceResolver",
    "SkipReason",
    "Transaction",
    "TransactionType",
    "WarningCode",
    "compare_to_benchmark",
    "compute_cagr",
    "compute_summary",
    "compute_ytd",
    "mark_to_market",
    "normalize_ticker",
    "rebase_series",
]
