"""Cost basis ledger: replay transactions into open lots per ticker."""
from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal, getcontext
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .fx import FXRateProvider
from .models import (
    HUNDRED,
    ZERO,
    ClosedLot,
    CostBasisMethod,
    EngineWarning,
    Lot,
    Position,
    Transaction,
    TransactionType,
    WarningCode,
)
from .prices import TickerNormalizer, normalize_ticker

getcontext().prec = 28

logger = logging.getLogger(__name__)

_SPLIT_PATTERNS = (
    re.compile(r"(\d+(?:\.\d+)?)\s*:\s*(\d+(?:\.\d+)?)"),
    re.compile(r"(\d+(?:\.\d+)?)\s+for\s+(\d+(?:\.\d+)?)", re.IGNORECASE),
)


def parse_split_ratio(notes: str | None) -> Decimal | None:
    """Return the share multiplier described by ``"N:M"`` or ``"N for M"``."""

    if not notes:
        return None
    for pattern in _SPLIT_PATTERNS:
        match = pattern.search(notes)
        if match:
            numerator, denominator = Decimal(match.group(1)), Decimal(match.group(2))
            if numerator <= 0 or denominator <= 0:
                return None
            return numerator / denominator
    return None


def collapse_same_day_trades(transactions: Sequence[Transaction]) -> List[Transaction]:
    """Merge consecutive same-ticker, same-day, same-direction trades into one VWAP trade.

    Only an uninterrupted run is merged: any other event for the ticker on
    that day (a trade the other way, a split, a dividend) closes the run, so
    BUY, SELL, BUY stays three trades and replay order is unchanged. The
    merged trade sums the fees. Non-trade events pass through untouched.
    """

    collapsed: List[Transaction] = []
    runs: Dict[tuple, tuple] = {}
    for tx in transactions:
        day_key = (tx.date, tx.ticker)
        if not tx.type.is_trade:
            runs.pop(day_key, None)
            collapsed.append(tx)
            continue
        side = (tx.type, tx.currency)
        run = runs.get(day_key)
        if run is None or run[0] != side:
            runs[day_key] = (side, len(collapsed))
            collapsed.append(tx)
            continue
        index = run[1]
        current = collapsed[index]
        quantity = current.quantity + tx.quantity
        notional = current.gross_amount + tx.gross_amount
        collapsed[index] = replace(
            current,
            quantity=quantity,
            price=notional / quantity if quantity else current.price,
            fees=current.fees + tx.fees,
        )
    return collapsed


@dataclass(frozen=True)
class HoldingState:
    """Shares, open cost and realized gain of a ticker after an event."""

    date: date
    shares: Decimal
    cost_basis: Decimal
    realized_gain: Decimal


@dataclass
class LedgerResult:
    positions: Dict[str, Position]
    realized_gain: Decimal
    warnings: List[EngineWarning]
    lots: Dict[str, List[Lot]] = field(default_factory=dict)
    closed_lots: List[ClosedLot] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    timeline: Dict[str, List[HoldingState]] = field(default_factory=dict)
    net_contributions: Decimal = ZERO
    _state_dates: Dict[str, List[date]] = field(default_factory=dict, init=False, repr=False, compare=False)

    @property
    def tickers(self) -> List[str]:
        """Every ticker that was ever held, including closed ones."""

        return sorted(self.timeline)

    @property
    def first_date(self) -> date | None:
        if not self.transactions:
            return None
        return self.transactions[0].date

    def _state_as_of(self, ticker: str, day: date) -> HoldingState | None:
        states = self.timeline.get(ticker)
        if not states:
            return None
        dates = self._state_dates.get(ticker)
        if dates is None:
            dates = self._state_dates[ticker] = [s.date for s in states]
        idx = bisect.bisect_right(dates, day)
        if idx == 0:
            return None
        return states[idx - 1]

    def shares_as_of(self, ticker: str, day: date) -> Decimal:
        state = self._state_as_of(ticker, day)
        return state.shares if state else ZERO

    def cost_basis_as_of(self, ticker: str, day: date) -> Decimal:
        state = self._state_as_of(ticker, day)
        return state.cost_basis if state else ZERO

    def realized_as_of(self, day: date) -> Decimal:
        total = ZERO
        for ticker in self.timeline:
            state = self._state_as_of(ticker, day)
            if state:
                total += state.realized_gain
        return total

    def holdings_as_of(self, day: date) -> Dict[str, Decimal]:
        holdings: Dict[str, Decimal] = {}
        for ticker in self.timeline:
            shares = self.shares_as_of(ticker, day)
            if shares > 0:
                holdings[ticker] = shares
        return holdings

    def total_cost_basis(self) -> Decimal:
        return sum((p.cost_basis for p in self.positions.values()), ZERO)


class CostBasisLedger:
    """Replay transactions into lots under FIFO, LIFO or AVERAGE.

    Replays are idempotent: every call starts from empty lots. Bad rows are
    skipped with a warning, and sells larger than the holding are capped.
    """

    def __init__(
        self,
        method: CostBasisMethod | str = CostBasisMethod.FIFO,
        *,
        collapse_same_day: bool = True,
        capitalize_buy_fees: bool = True,
        fx_provider: FXRateProvider | None = None,
        normalizer: TickerNormalizer | None = None,
    ):
        self.method = CostBasisMethod(method)
        self.collapse_same_day = collapse_same_day
        self.capitalize_buy_fees = capitalize_buy_fees
        self.fx_provider = fx_provider
        self.normalizer = normalizer or normalize_ticker

    def prepare(
        self,
        transactions: Iterable[Transaction],
        as_of: date | None = None,
        warnings: List[EngineWarning] | None = None,
    ) -> List[Transaction]:
        """Normalize, validate and order transactions for replay."""

        sink = warnings if warnings is not None else []
        cleaned: List[Transaction] = []
        seen_ids: set = set()
        seen_keys: set = set()
        for tx in transactions:
            tx = replace(tx, ticker=self.normalizer(tx.ticker), type=TransactionType(tx.type))
            if as_of is not None and tx.date > as_of:
                _warn(sink, WarningCode.FUTURE_DATED, f"Future-dated {tx.type.value} ignored", tx)
                continue
            if tx.id:
                if tx.id in seen_ids:
                    _warn(sink, WarningCode.DUPLICATE_TRANSACTION, f"Duplicate {tx.type.value} id {tx.id!r} ignored", tx)
                    continue
                seen_ids.add(tx.id)
            elif tx.duplicate_key() in seen_keys:
                _warn(sink, WarningCode.DUPLICATE_TRANSACTION, f"Possible duplicate {tx.type.value} kept", tx)
            seen_keys.add(tx.duplicate_key())
            if tx.type.is_trade and tx.quantity <= 0:
                _warn(sink, WarningCode.INVALID_QUANTITY, f"Trade with quantity {tx.quantity} ignored", tx)
                continue
            converted = self._convert(tx, sink)
            if converted is not None:
                cleaned.append(converted)
        ordered = sorted(cleaned, key=lambda item: item.date)
        if self.collapse_same_day:
            ordered = collapse_same_day_trades(ordered)
        return ordered

    def _convert(self, tx: Transaction, sink: List[EngineWarning]) -> Transaction | None:
        if self.fx_provider is None:
            return tx
        if tx.currency.upper() == self.fx_provider.base_currency.upper():
            return tx
        try:
            rate = self.fx_provider.rate(tx.date, tx.currency)
        except KeyError as exc:
            _warn(sink, WarningCode.FX_RATE_MISSING, str(exc.args[0]), tx)
            return None
        return replace(
            tx,
            price=tx.price * rate,
            fees=tx.fees * rate,
            currency=self.fx_provider.base_currency,
        )

    def apply_transactions(
        self, transactions: Iterable[Transaction], as_of: date | None = None
    ) -> LedgerResult:
        warnings: List[EngineWarning] = []
        ordered = self.prepare(transactions, as_of, warnings)
        replay = _Replay(self.method, self.capitalize_buy_fees, warnings)
        for tx in ordered:
            replay.apply(tx)
        return replay.result(ordered)


class _Replay:
    def __init__(self, method: CostBasisMethod, capitalize_buy_fees: bool, warnings: List[EngineWarning]):
        self.method = method
        self.capitalize_buy_fees = capitalize_buy_fees
        self.warnings = warnings
        self.lots: Dict[str, List[Lot]] = {}
        self.realized: Dict[str, Decimal] = {}
        self.closed: List[ClosedLot] = []
        self.timeline: Dict[str, List[HoldingState]] = {}
        self.contributions = ZERO

    def apply(self, tx: Transaction) -> None:
        if tx.type is TransactionType.BUY:
            self._buy(tx)
        elif tx.type is TransactionType.SELL:
            self._sell(tx)
        elif tx.type is TransactionType.DIVIDEND:
            amount = tx.gross_amount if tx.quantity else tx.price
            self.realized[tx.ticker] = self.realized.get(tx.ticker, ZERO) + amount - tx.fees
        elif tx.type is TransactionType.SPLIT:
            self._split(tx)
        elif tx.type is TransactionType.CASH_IN:
            self.contributions += tx.gross_amount if tx.quantity else tx.price
            return
        elif tx.type is TransactionType.CASH_OUT:
            self.contributions -= tx.gross_amount if tx.quantity else tx.price
            return
        self._record(tx)

    def _buy(self, tx: Transaction) -> None:
        cost = tx.gross_amount + (tx.fees if self.capitalize_buy_fees else ZERO)
        self.lots.setdefault(tx.ticker, []).append(
            Lot(ticker=tx.ticker, shares=tx.quantity, cost_basis=cost, acquisition_date=tx.date)
        )

    def _sell(self, tx: Transaction) -> None:
        lots = self.lots.setdefault(tx.ticker, [])
        held = sum((lot.shares for lot in lots), ZERO)
        quantity = tx.quantity
        if quantity > held:
            _warn(
                self.warnings,
                WarningCode.OVERSELL_CAPPED,
                f"Sell of {quantity} capped at {held} held shares",
                tx,
            )
            quantity = held
        if quantity <= 0:
            return
        if self.method is CostBasisMethod.AVERAGE and len(lots) > 1:
            lots[:] = [
                Lot(
                    ticker=tx.ticker,
                    shares=held,
                    cost_basis=sum((lot.cost_basis for lot in lots), ZERO),
                    acquisition_date=lots[0].acquisition_date,
                )
            ]
        proceeds = tx.price * quantity - tx.fees
        remaining = quantity
        consumed = ZERO
        while remaining > 0 and lots:
            index = -1 if self.method is CostBasisMethod.LIFO else 0
            lot = lots[index]
            take = min(remaining, lot.shares)
            if take == lot.shares:
                cost_piece = lot.cost_basis
                lots.pop(index)
            else:
                cost_piece = lot.cost_basis * take / lot.shares
                lot.shares -= take
                lot.cost_basis -= cost_piece
            self.closed.append(
                ClosedLot(
                    ticker=tx.ticker,
                    shares=take,
                    cost_basis=cost_piece,
                    proceeds=proceeds * take / quantity,
                    acquisition_date=lot.acquisition_date,
                    close_date=tx.date,
                )
            )
            consumed += cost_piece
            remaining -= take
        self.realized[tx.ticker] = self.realized.get(tx.ticker, ZERO) + proceeds - consumed

    def _split(self, tx: Transaction) -> None:
        factor = parse_split_ratio(tx.notes)
        if factor is None:
            _warn(self.warnings, WarningCode.SPLIT_UNPARSABLE, f"Split note {tx.notes!r} not understood", tx)
            return
        # Total cost is preserved; per-share cost divides by the factor.
        for lot in self.lots.get(tx.ticker, []):
            lot.shares *= factor

    def _record(self, tx: Transaction) -> None:
        lots = self.lots.get(tx.ticker, [])
        self.timeline.setdefault(tx.ticker, []).append(
            HoldingState(
                date=tx.date,
                shares=sum((lot.shares for lot in lots), ZERO),
                cost_basis=sum((lot.cost_basis for lot in lots), ZERO),
                realized_gain=self.realized.get(tx.ticker, ZERO),
            )
        )

    def result(self, ordered: List[Transaction]) -> LedgerResult:
        positions: Dict[str, Position] = {}
        for ticker, lots in self.lots.items():
            shares = sum((lot.shares for lot in lots), ZERO)
            if shares <= 0:
                continue
            positions[ticker] = Position(
                ticker=ticker,
                shares=shares,
                cost_basis=sum((lot.cost_basis for lot in lots), ZERO),
                realized_gain=self.realized.get(ticker, ZERO),
            )
        return LedgerResult(
            positions=positions,
            realized_gain=sum(self.realized.values(), ZERO),
            warnings=self.warnings,
            lots={ticker: [replace(lot) for lot in lots] for ticker, lots in self.lots.items() if lots},
            closed_lots=self.closed,
            transactions=ordered,
            timeline=self.timeline,
            net_contributions=self.contributions,
        )


def _warn(sink: List[EngineWarning], code: WarningCode, message: str, tx: Transaction) -> None:
    logger.warning("%s for %s on %s: %s", code.value, tx.ticker, tx.date.isoformat(), message)
    sink.append(EngineWarning(code=code, message=message, ticker=tx.ticker, date=tx.date))


def mark_to_market(
    positions: Mapping[str, Position], prices: Mapping[str, Optional[Decimal]]
) -> Dict[str, Position]:
    """Return copies of ``positions`` valued at ``prices`` with percent weights.

    Positions without a price keep a zero market value.
    """

    valued: Dict[str, Position] = {}
    for ticker, position in positions.items():
        price = prices.get(ticker)
        market_value = position.shares * price if price is not None else ZERO
        valued[ticker] = replace(
            position,
            price=price,
            market_value=market_value,
            unrealized_gain=market_value - position.cost_basis if price is not None else ZERO,
        )
    total = sum((p.market_value for p in valued.values()), ZERO)
    for position in valued.values():
        position.weight = position.market_value / total * HUNDRED if total > 0 else ZERO
    return valued


@dataclass(frozen=True)
class AllocationSlice:
    ticker: str
    value: Decimal
    weight: Decimal


def asset_allocation(positions: Mapping[str, Position]) -> List[AllocationSlice]:
    slices = [
        AllocationSlice(ticker=p.ticker, value=p.market_value, weight=p.weight)
        for p in positions.values()
    ]
    return sorted(slices, key=lambda s: (-s.weight, s.ticker))


__all__ = [
    "AllocationSlice",
    "CostBasisLedger",
    "HoldingState",
    "LedgerResult",
    "asset_allocation",
    "collapse_same_day_trades",
    "mark_to_market",
    "parse_split_ratio",
]
