"""Domain models used by the portfolio equity engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class TransactionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    SPLIT = "SPLIT"
    CASH_IN = "CASH_IN"
    CASH_OUT = "CASH_OUT"

    @property
    def is_trade(self) -> bool:
        return self in (TransactionType.BUY, TransactionType.SELL)


class CostBasisMethod(str, Enum):
    FIFO = "FIFO"
    LIFO = "LIFO"
    AVERAGE = "AVERAGE"


class PriceMode(str, Enum):
    TIMESERIES = "timeseries"
    SPOT = "spot"
    MISSING = "missing"


class WarningCode(str, Enum):
    OVERSELL_CAPPED = "OVERSELL_CAPPED"
    SPLIT_UNPARSABLE = "SPLIT_UNPARSABLE"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    FUTURE_DATED = "FUTURE_DATED"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    FX_RATE_MISSING = "FX_RATE_MISSING"
    MISSING_PRICE = "MISSING_PRICE"
    NO_PRICED_HOLDINGS = "NO_PRICED_HOLDINGS"
    BENCHMARK_SELL_CAPPED = "BENCHMARK_SELL_CAPPED"


class SkipReason(str, Enum):
    """Why a computation produced an empty result instead of a series."""

    NO_TRANSACTIONS = "no transactions provided"
    NO_TRADES = "no trades provided"
    NO_COVERAGE = "no reference price coverage in window"
    NO_REBASE_BASE = "no valid rebasing base in window"
    NO_PRICED_HOLDINGS = "no holdings could be priced in window"
    NO_REFERENCE_SERIES = "no portfolio series to align with"


@dataclass(frozen=True)
class Transaction:
    """A normalized trade, corporate action, or cash flow event."""

    date: date
    ticker: str
    type: TransactionType
    quantity: Decimal
    price: Decimal = ZERO
    fees: Decimal = ZERO
    currency: str = "USD"
    notes: Optional[str] = None
    id: Optional[str] = None

    @property
    def gross_amount(self) -> Decimal:
        return self.price * self.quantity

    def duplicate_key(self) -> tuple:
        """Economic fields shared by rows that look like the same entry twice."""

        return (self.date, self.ticker, self.type, self.quantity, self.price)


@dataclass
class Lot:
    """An open acquisition batch; cost basis includes the buy fees."""

    ticker: str
    shares: Decimal
    cost_basis: Decimal
    acquisition_date: date

    @property
    def cost_per_share(self) -> Decimal:
        if self.shares == 0:
            return ZERO
        return self.cost_basis / self.shares


@dataclass(frozen=True)
class ClosedLot:
    """A slice of a lot consumed by a sell."""

    ticker: str
    shares: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    acquisition_date: date
    close_date: date

    @property
    def realized_gain(self) -> Decimal:
        return self.proceeds - self.cost_basis


@dataclass
class Position:
    ticker: str
    shares: Decimal
    cost_basis: Decimal
    realized_gain: Decimal = ZERO
    market_value: Decimal = ZERO
    unrealized_gain: Decimal = ZERO
    weight: Decimal = ZERO
    price: Optional[Decimal] = None

    @property
    def average_cost(self) -> Decimal:
        if self.shares == 0:
            return ZERO
        return self.cost_basis / self.shares


@dataclass(frozen=True)
class EquitySeriesPoint:
    """Portfolio valuation for a single calendar day."""

    date: date
    value: Decimal
    cumulative_return: Decimal = ZERO
    cost_basis: Decimal = ZERO
    realized_gain: Decimal = ZERO

    @property
    def unrealized_gain(self) -> Decimal:
        return self.value - self.cost_basis


@dataclass(frozen=True)
class SpotQuote:
    ticker: str
    price: Decimal
    as_of: Optional[date] = None


@dataclass(frozen=True)
class PriceResolution:
    ticker: str
    date: date
    price: Optional[Decimal]
    mode: PriceMode
    clamped: bool = False

    @property
    def resolved(self) -> bool:
        return self.mode is not PriceMode.MISSING and self.price is not None


@dataclass(frozen=True)
class EngineWarning:
    code: WarningCode
    message: str
    ticker: Optional[str] = None
    date: Optional[date] = None


@dataclass
class EngineStatus:
    """Diagnostics describing how completely a series could be valued."""

    valued_through: Optional[date] = None
    bridged_tickers: List[str] = field(default_factory=list)
    missing_prices: List[str] = field(default_factory=list)
    spot_valued_tickers: List[str] = field(default_factory=list)
    warnings: List[EngineWarning] = field(default_factory=list)
    total_trades: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    skip_reason: Optional[SkipReason] = None
    backfill_count: int = 0

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    def warn(self, warning: EngineWarning) -> None:
        self.warnings.append(warning)

    def codes(self) -> List[WarningCode]:
        return [warning.code for warning in self.warnings]


def parse_date(value: date | str) -> date:
    """Coerce an ISO ``YYYY-MM-DD`` string (or datetime prefix) to a date.

    Raises ``ValueError`` when the value cannot be interpreted at all.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValueError(f"Unparsable date: {value!r}") from exc
