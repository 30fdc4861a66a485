"""Price resolution for portfolio valuation.

Prices come from two tiers: a dense daily close history for well covered
instruments, and a single point-in-time snapshot for everything else. The
``BatchPriceCache`` materializes the dense tier once per reporting request as
a calendar-day by ticker table so the valuation loop never goes back to the
source. ``PriceResolver`` walks an ordered list of strategies and returns the
first tagged ``PriceResolution``.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, getcontext
from typing import Dict, Iterable, List, Mapping, Protocol, Sequence, Tuple

import pandas as pd

from .models import PriceMode, PriceResolution, SpotQuote, Transaction, ZERO

getcontext().prec = 28

logger = logging.getLogger(__name__)

# Friday close through a Tuesday market holiday.
MAX_STALE_DAYS = 4

DEFAULT_TICKER_ALIASES: Dict[str, str] = {"GOOG": "GOOGL"}
DEFAULT_EXCHANGE_SUFFIXES: Tuple[str, ...] = (".US",)


@dataclass
class TickerNormalizer:
    """Collapse listing aliases and exchange suffixes to one canonical symbol."""

    aliases: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_TICKER_ALIASES))
    suffixes: Sequence[str] = DEFAULT_EXCHANGE_SUFFIXES

    def __call__(self, ticker: str) -> str:
        normalized = ticker.strip().upper()
        for suffix in self.suffixes:
            marker = suffix.upper()
            if normalized.endswith(marker) and len(normalized) > len(marker):
                normalized = normalized[: -len(marker)]
                break
        aliases = {k.upper(): v.upper() for k, v in self.aliases.items()}
        return aliases.get(normalized, normalized)


_DEFAULT_NORMALIZER = TickerNormalizer()


def normalize_ticker(ticker: str) -> str:
    """Normalize ``ticker`` with the default alias and suffix rules."""

    return _DEFAULT_NORMALIZER(ticker)


class PriceSource(Protocol):
    """External price lookup capability."""

    def coverage(self, ticker: str) -> Tuple[date, date] | None:
        ...

    def daily_closes(self, ticker: str, start: date, end: date) -> Dict[date, Decimal]:
        ...

    def daily_close(self, ticker: str, day: date) -> Decimal | None:
        ...

    def snapshot(self, ticker: str) -> SpotQuote | None:
        ...


def _to_decimal(value: Decimal | float | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


class InMemoryPriceSource:
    """Price source backed by already-fetched data; used by tests and reports."""

    def __init__(
        self,
        closes: Mapping[str, Mapping[date, Decimal | float | str]] | None = None,
        snapshots: Mapping[str, SpotQuote | Decimal | float | str] | None = None,
    ):
        self._closes: dict[str, dict[date, Decimal]] = {}
        for ticker, date_map in (closes or {}).items():
            series = {d: _to_decimal(v) for d, v in date_map.items() if v is not None}
            if series:
                self._closes[ticker.strip().upper()] = dict(sorted(series.items()))
        self._snapshots: dict[str, SpotQuote] = {}
        for ticker, quote in (snapshots or {}).items():
            symbol = ticker.strip().upper()
            if isinstance(quote, SpotQuote):
                self._snapshots[symbol] = quote
            else:
                self._snapshots[symbol] = SpotQuote(ticker=symbol, price=_to_decimal(quote))

    def tickers(self) -> List[str]:
        return sorted(set(self._closes) | set(self._snapshots))

    def coverage(self, ticker: str) -> Tuple[date, date] | None:
        series = self._closes.get(ticker)
        if not series:
            return None
        days = list(series.keys())
        return days[0], days[-1]

    def daily_closes(self, ticker: str, start: date, end: date) -> Dict[date, Decimal]:
        series = self._closes.get(ticker, {})
        return {d: v for d, v in series.items() if start <= d <= end}

    def daily_close(self, ticker: str, day: date) -> Decimal | None:
        return self._closes.get(ticker, {}).get(day)

    def snapshot(self, ticker: str) -> SpotQuote | None:
        return self._snapshots.get(ticker)


class BatchPriceCache:
    """Request-scoped, read-only table of forward-filled daily closes.

    ``load`` is a no-op when the requested range and tickers are already
    materialized. Any other request rebuilds the whole table; entries are
    never patched individually.

    A forward-filled close up to ``max_stale_days`` past the last published
    close counts as covered, so weekends and market holidays are not
    reported as clamped.
    """

    def __init__(self, source: PriceSource, max_stale_days: int = MAX_STALE_DAYS):
        self.source = source
        self.max_stale_days = max_stale_days
        self._range: Tuple[date, date] | None = None
        self._tickers: frozenset[str] = frozenset()
        self._closes: dict[str, dict[date, Decimal]] = {}
        self._coverage: dict[str, Tuple[date, date]] = {}
        self._raw_days: dict[str, set[date]] = {}
        self._snapshots: dict[str, SpotQuote] = {}
        self.load_count = 0

    @property
    def range(self) -> Tuple[date, date] | None:
        return self._range

    def load(self, tickers: Iterable[str], start: date, end: date) -> None:
        requested = frozenset(tickers)
        if self._range == (start, end) and requested <= self._tickers:
            return
        if self._range == (start, end):
            requested = requested | self._tickers
        self.invalidate()
        for ticker in sorted(requested):
            self._load_ticker(ticker, start, end)
        self._range = (start, end)
        self._tickers = requested
        self.load_count += 1
        logger.info(
            "Materialized price table for %d tickers from %s to %s",
            len(requested),
            start.isoformat(),
            end.isoformat(),
        )

    def invalidate(self) -> None:
        self._range = None
        self._tickers = frozenset()
        self._closes.clear()
        self._coverage.clear()
        self._raw_days.clear()
        self._snapshots.clear()

    def _load_ticker(self, ticker: str, start: date, end: date) -> None:
        quote = self.source.snapshot(ticker)
        if quote is not None and quote.price > 0:
            self._snapshots[ticker] = quote
        coverage = self.source.coverage(ticker)
        if coverage is None:
            return
        first, last = coverage
        # Closes before the window seed the forward fill and clamping.
        raw = self.source.daily_closes(ticker, first, max(end, first))
        raw = {d: v for d, v in raw.items() if v is not None and v > 0}
        if not raw:
            return
        self._coverage[ticker] = (min(raw), max(last, max(raw)))
        self._raw_days[ticker] = set(raw)
        self._closes[ticker] = _fill_calendar(raw, start, end)

    def covers(self, ticker: str) -> bool:
        return ticker in self._closes

    def coverage(self, ticker: str) -> Tuple[date, date] | None:
        return self._coverage.get(ticker)

    def close(self, ticker: str, day: date) -> Tuple[Decimal, bool] | None:
        """Return ``(close, clamped)`` for ``ticker`` on ``day``."""

        coverage = self._coverage.get(ticker)
        if coverage is None:
            return None
        clamped = day < coverage[0] or (day - coverage[1]).days > self.max_stale_days
        series = self._closes[ticker]
        if day in series:
            return series[day], clamped
        return self._direct_close(ticker, day, coverage), clamped

    def _direct_close(self, ticker: str, day: date, coverage: Tuple[date, date]) -> Decimal:
        logger.debug("Price lookup for %s on %s outside materialized range", ticker, day)
        first, last = coverage
        if day <= first:
            return self.source.daily_closes(ticker, first, first)[first]
        found = self.source.daily_closes(ticker, first, min(day, last))
        return found[max(found)]

    def has_close(self, ticker: str, day: date) -> bool:
        """True when the source published a close for exactly ``day``."""

        return day in self._raw_days.get(ticker, ())

    def snapshot(self, ticker: str) -> SpotQuote | None:
        if ticker in self._snapshots:
            return self._snapshots[ticker]
        if self._range is not None and ticker in self._tickers:
            return None
        quote = self.source.snapshot(ticker)
        if quote is None or quote.price <= 0:
            return None
        return quote

    def series(self, ticker: str) -> Dict[date, Decimal]:
        return dict(self._closes.get(ticker, {}))

    def to_frame(self) -> pd.DataFrame:
        """Return the materialized table as a date-indexed float frame."""

        if self._range is None:
            return pd.DataFrame()
        index = pd.DatetimeIndex(pd.date_range(self._range[0], self._range[1], freq="D"))
        columns = {
            ticker: [float(series[d.date()]) for d in index]
            for ticker, series in sorted(self._closes.items())
        }
        return pd.DataFrame(columns, index=index)


def _fill_calendar(raw: Mapping[date, Decimal], start: date, end: date) -> dict[date, Decimal]:
    """Forward-fill closes across every calendar day in ``[start, end]``.

    Days before the first close take the first close; days after the last
    close keep the last close. Positions are filled rather than values so the
    Decimal closes never pass through float.
    """

    days = sorted(raw)
    values = [raw[d] for d in days]
    positions = pd.Series(range(len(days)), index=pd.to_datetime(days), dtype="float64")
    full_index = pd.date_range(min(start, days[0]), max(end, days[-1]), freq="D")
    filled = positions.reindex(full_index).ffill().bfill()
    window = filled.loc[pd.Timestamp(start) : pd.Timestamp(end)]
    return {stamp.date(): values[int(pos)] for stamp, pos in window.items()}


class ResolutionStrategy(Protocol):
    def resolve(self, ticker: str, day: date) -> PriceResolution | None:
        ...


class TimeseriesStrategy:
    """Dense history: forward-filled close, clamped outside coverage."""

    def __init__(self, cache: BatchPriceCache):
        self.cache = cache

    def resolve(self, ticker: str, day: date) -> PriceResolution | None:
        quote = self.cache.close(ticker, day)
        if quote is None:
            return None
        price, clamped = quote
        return PriceResolution(ticker=ticker, date=day, price=price, mode=PriceMode.TIMESERIES, clamped=clamped)


class SpotStrategy:
    """Snapshot pricing that steps between the holder's own trade prices."""

    def __init__(
        self,
        cache: BatchPriceCache,
        today: date,
        trade_prices: Mapping[str, Sequence[Tuple[date, Decimal]]] | None = None,
    ):
        self.cache = cache
        self.today = today
        self._trade_days: dict[str, list[date]] = {}
        self._trade_values: dict[str, list[Decimal]] = {}
        for ticker, history in (trade_prices or {}).items():
            ordered = sorted(history, key=lambda item: item[0])
            self._trade_days[ticker] = [d for d, _ in ordered]
            self._trade_values[ticker] = [p for _, p in ordered]

    @classmethod
    def from_transactions(
        cls,
        cache: BatchPriceCache,
        today: date,
        transactions: Iterable[Transaction],
        normalizer: TickerNormalizer | None = None,
    ) -> "SpotStrategy":
        normalize = normalizer or _DEFAULT_NORMALIZER
        history: dict[str, list[Tuple[date, Decimal]]] = {}
        for tx in transactions:
            if tx.type.is_trade and tx.price > 0:
                history.setdefault(normalize(tx.ticker), []).append((tx.date, tx.price))
        return cls(cache, today, history)

    def trade_price(self, ticker: str, day: date) -> Decimal | None:
        days = self._trade_days.get(ticker)
        if not days:
            return None
        idx = bisect.bisect_right(days, day)
        if idx == 0:
            return None
        return self._trade_values[ticker][idx - 1]

    def resolve(self, ticker: str, day: date) -> PriceResolution | None:
        quote = self.cache.snapshot(ticker)
        if quote is None:
            return None
        price = quote.price
        if day < self.today:
            price = self.trade_price(ticker, day) or quote.price
        return PriceResolution(ticker=ticker, date=day, price=price, mode=PriceMode.SPOT)


class PriceResolver:
    """Resolve a price per ticker and day by trying strategies in order."""

    def __init__(
        self,
        cache: BatchPriceCache,
        *,
        today: date,
        transactions: Iterable[Transaction] = (),
        normalizer: TickerNormalizer | None = None,
        strategies: Sequence[ResolutionStrategy] | None = None,
    ):
        self.cache = cache
        self.today = today
        self.normalizer = normalizer or _DEFAULT_NORMALIZER
        if strategies is None:
            strategies = [
                TimeseriesStrategy(cache),
                SpotStrategy.from_transactions(cache, today, transactions, self.normalizer),
            ]
        self.strategies: List[ResolutionStrategy] = list(strategies)

    def resolve(self, ticker: str, day: date) -> PriceResolution:
        symbol = self.normalizer(ticker)
        for strategy in self.strategies:
            resolution = strategy.resolve(symbol, day)
            if resolution is not None and resolution.price is not None and resolution.price > ZERO:
                return resolution
        return PriceResolution(ticker=symbol, date=day, price=None, mode=PriceMode.MISSING)

    def resolve_many(self, tickers: Iterable[str], day: date) -> Dict[str, PriceResolution]:
        return {self.normalizer(t): self.resolve(t, day) for t in tickers}


__all__ = [
    "BatchPriceCache",
    "DEFAULT_EXCHANGE_SUFFIXES",
    "DEFAULT_TICKER_ALIASES",
    "MAX_STALE_DAYS",
    "InMemoryPriceSource",
    "PriceResolver",
    "PriceSource",
    "ResolutionStrategy",
    "SpotStrategy",
    "TickerNormalizer",
    "TimeseriesStrategy",
    "normalize_ticker",
]
