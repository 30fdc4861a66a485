"""Fetch all prices a report needs in one batch before any valuation runs."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from decimal import Decimal
from typing import Iterable

from app.providers.price_service import PriceServiceClient, PriceServiceError
from equity_engine.models import SpotQuote
from equity_engine.prices import InMemoryPriceSource

logger = logging.getLogger(__name__)


async def _fetch_one(
    client: PriceServiceClient,
    ticker: str,
    start: date,
    end: date,
    semaphore: asyncio.Semaphore,
) -> tuple[str, dict[date, Decimal], SpotQuote | None]:
    async with semaphore:
        try:
            closes = await client.fetch_history(ticker, start, end)
        except PriceServiceError as exc:
            logger.warning("Price history unavailable for %s: %s", ticker, exc)
            closes = {}
        try:
            snapshot = await client.fetch_snapshot(ticker)
        except PriceServiceError as exc:
            logger.warning("Price snapshot unavailable for %s: %s", ticker, exc)
            snapshot = None
    return ticker, closes, snapshot


async def load_price_source(
    client: PriceServiceClient,
    tickers: Iterable[str],
    start: date,
    end: date,
    *,
    concurrency: int = 8,
) -> InMemoryPriceSource:
    """Fetch history and snapshots for every ticker concurrently.

    A ticker whose fetch fails is returned without data so the engine records
    it as missing instead of failing the whole report.
    """

    symbols = sorted(set(tickers))
    semaphore = asyncio.Semaphore(max(1, concurrency))
    results = await asyncio.gather(
        *(_fetch_one(client, ticker, start, end, semaphore) for ticker in symbols)
    )
    closes = {ticker: history for ticker, history, _ in results if history}
    snapshots = {ticker: quote for ticker, _, quote in results if quote is not None}
    logger.info(
        "Loaded prices for %d tickers (%d with history, %d with snapshots)",
        len(symbols),
        len(closes),
        len(snapshots),
    )
    return InMemoryPriceSource(closes=closes, snapshots=snapshots)


__all__ = ["load_price_source"]
