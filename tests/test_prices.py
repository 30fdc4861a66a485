from __future__ import annotations

from datetime import date
from decimal import Decimal

import pandas as pd

from equity_engine.models import PriceMode, SpotQuote, Transaction, TransactionType
from equity_engine.prices import (
    BatchPriceCache,
    InMemoryPriceSource,
    PriceResolver,
    TickerNormalizer,
    normalize_ticker,
)


class CountingSource(InMemoryPriceSource):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.history_calls: list[str] = []

    def daily_closes(self, ticker, start, end):
        self.history_calls.append(ticker)
        return super().daily_closes(ticker, start, end)


def build_source() -> CountingSource:
    return CountingSource(
        closes={
            "AAPL": {
                date(2024, 1, 3): "100",
                date(2024, 1, 5): "102",
                date(2024, 1, 8): "104",
            },
            "MSFT": {date(2024, 1, 3): "370"},
        },
        snapshots={"XYZ": "50"},
    )


def test_normalize_ticker_rules():
    assert normalize_ticker("goog") == "GOOGL"
    assert normalize_ticker(" aapl.us ") == "AAPL"
    assert normalize_ticker(".US") == ".US"
    custom = TickerNormalizer(aliases={"BRK.B": "BRK-B"}, suffixes=(".L",))
    assert custom("brk.b") == "BRK-B"
    assert custom("VOD.L") == "VOD"


def test_cache_forward_fills_calendar_days():
    cache = BatchPriceCache(build_source())
    cache.load(["AAPL"], date(2024, 1, 3), date(2024, 1, 8))

    assert cache.close("AAPL", date(2024, 1, 4)) == (Decimal("100"), False)
    assert cache.close("AAPL", date(2024, 1, 6)) == (Decimal("102"), False)
    assert cache.close("AAPL", date(2024, 1, 7)) == (Decimal("102"), False)
    assert len(cache.series("AAPL")) == 6
    assert cache.has_close("AAPL", date(2024, 1, 5))
    assert not cache.has_close("AAPL", date(2024, 1, 6))


def test_cache_clamps_outside_coverage():
    cache = BatchPriceCache(build_source())
    cache.load(["AAPL"], date(2024, 1, 1), date(2024, 1, 15))

    assert cache.coverage("AAPL") == (date(2024, 1, 3), date(2024, 1, 8))
    assert cache.close("AAPL", date(2024, 1, 1)) == (Decimal("100"), True)
    assert cache.close("AAPL", date(2024, 1, 13)) == (Decimal("104"), True)


def test_cache_tolerates_short_gaps_after_last_close():
    cache = BatchPriceCache(build_source())
    cache.load(["AAPL"], date(2024, 1, 1), date(2024, 1, 15))

    assert cache.close("AAPL", date(2024, 1, 10)) == (Decimal("104"), False)
    assert cache.close("AAPL", date(2024, 1, 12)) == (Decimal("104"), False)
    assert cache.close("AAPL", date(2024, 1, 13))[1] is True

    strict = BatchPriceCache(build_source(), max_stale_days=0)
    strict.load(["AAPL"], date(2024, 1, 1), date(2024, 1, 15))
    assert strict.close("AAPL", date(2024, 1, 9)) == (Decimal("104"), True)


def test_window_inside_history_uses_earlier_close():
    cache = BatchPriceCache(build_source())
    cache.load(["AAPL"], date(2024, 1, 6), date(2024, 1, 7))

    assert cache.close("AAPL", date(2024, 1, 6)) == (Decimal("102"), False)


def test_cache_loads_once_per_request():
    source = build_source()
    cache = BatchPriceCache(source)

    cache.load(["AAPL", "MSFT"], date(2024, 1, 3), date(2024, 1, 8))
    cache.load(["AAPL"], date(2024, 1, 3), date(2024, 1, 8))
    assert cache.load_count == 1
    assert sorted(source.history_calls) == ["AAPL", "MSFT"]

    cache.load(["AAPL"], date(2024, 1, 3), date(2024, 1, 9))
    assert cache.load_count == 2
    assert not cache.covers("MSFT")


def test_cache_widens_tickers_for_same_range():
    cache = BatchPriceCache(build_source())
    cache.load(["AAPL"], date(2024, 1, 3), date(2024, 1, 8))
    cache.load(["MSFT"], date(2024, 1, 3), date(2024, 1, 8))

    assert cache.covers("AAPL")
    assert cache.covers("MSFT")
    assert cache.load_count == 2


def test_to_frame_has_one_row_per_day():
    cache = BatchPriceCache(build_source())
    cache.load(["AAPL", "MSFT"], date(2024, 1, 3), date(2024, 1, 8))

    frame = cache.to_frame()
    assert list(frame.columns) == ["AAPL", "MSFT"]
    assert len(frame) == 6
    assert frame.loc[pd.Timestamp("2024-01-07"), "AAPL"] == 102.0


def test_resolver_prefers_timeseries():
    cache = BatchPriceCache(build_source())
    cache.load(["AAPL"], date(2024, 1, 3), date(2024, 1, 8))
    resolver = PriceResolver(cache, today=date(2024, 1, 8))

    resolution = resolver.resolve("aapl.us", date(2024, 1, 6))
    assert resolution.mode is PriceMode.TIMESERIES
    assert resolution.ticker == "AAPL"
    assert resolution.price == Decimal("102")
    assert not resolution.clamped


def test_spot_steps_between_trade_prices():
    source = InMemoryPriceSource(snapshots={"XYZ": SpotQuote(ticker="XYZ", price=Decimal("100"))})
    cache = BatchPriceCache(source)
    cache.load(["XYZ"], date(2024, 3, 1), date(2024, 3, 30))
    transactions = [
        Transaction(date(2024, 3, 5), "XYZ", TransactionType.BUY, Decimal("10"), Decimal("90")),
        Transaction(date(2024, 3, 20), "XYZ", TransactionType.BUY, Decimal("5"), Decimal("95")),
    ]
    resolver = PriceResolver(cache, today=date(2024, 3, 30), transactions=transactions)

    assert resolver.resolve("XYZ", date(2024, 3, 1)).price == Decimal("100")
    assert resolver.resolve("XYZ", date(2024, 3, 5)).price == Decimal("90")
    assert resolver.resolve("XYZ", date(2024, 3, 25)).price == Decimal("95")
    today = resolver.resolve("XYZ", date(2024, 3, 30))
    assert today.price == Decimal("100")
    assert today.mode is PriceMode.SPOT


def test_unpriced_ticker_is_missing():
    cache = BatchPriceCache(build_source())
    cache.load(["ZZZ"], date(2024, 1, 3), date(2024, 1, 8))
    resolver = PriceResolver(cache, today=date(2024, 1, 8))

    resolution = resolver.resolve("ZZZ", date(2024, 1, 5))
    assert resolution.mode is PriceMode.MISSING
    assert resolution.price is None
    assert not resolution.resolved


def test_resolve_many_keys_by_normalized_ticker():
    cache = BatchPriceCache(build_source())
    cache.load(["AAPL", "XYZ"], date(2024, 1, 3), date(2024, 1, 8))
    resolver = PriceResolver(cache, today=date(2024, 1, 8))

    resolved = resolver.resolve_many(["AAPL.US", "xyz"], date(2024, 1, 8))
    assert resolved["AAPL"].price == Decimal("104")
    assert resolved["XYZ"].mode is PriceMode.SPOT
    assert resolved["XYZ"].price == Decimal("50")
