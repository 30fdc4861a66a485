"""HTTP client for the external price history and snapshot service."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
import pandas as pd
from opentelemetry.propagate import inject

from app.config import AppSettings
from equity_engine.models import SpotQuote, parse_date

logger = logging.getLogger(__name__)


class PriceServiceError(RuntimeError):
    """Raised when the price service cannot be reached or answers with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _parse_history(payload: dict[str, Any]) -> pd.DataFrame:
    rows: list[dict[str, Any]] = []
    items = payload.get("prices")
    if not isinstance(items, list):
        return pd.DataFrame()
    for item in items:
        if not isinstance(item, dict):
            continue
        raw_date = item.get("date")
        close_value = item.get("adjusted_close") or item.get("close")
        if raw_date is None or close_value is None:
            continue
        try:
            day = pd.to_datetime(raw_date)
        except (TypeError, ValueError):
            continue
        try:
            close = Decimal(str(close_value))
        except InvalidOperation:
            logger.debug("Skipping unparsable close %r on %s", close_value, raw_date)
            continue
        if not close.is_finite():
            continue
        rows.append({"Date": day, "Close": close})
    if not rows:
        return pd.DataFrame()
    df = pd.DataFrame(rows).set_index("Date").sort_index()
    df.index = pd.to_datetime(df.index)
    return df[~df.index.duplicated(keep="last")]


class PriceServiceClient:
    """Async client; use as ``async with`` or pass an existing ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: AppSettings, client: httpx.AsyncClient | None = None) -> "PriceServiceClient":
        return cls(
            settings.price_service_url,
            token=settings.price_service_token,
            timeout=settings.price_service_timeout_seconds,
            client=client,
        )

    async def __aenter__(self) -> "PriceServiceClient":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any | None:
        if self._client is None:
            raise RuntimeError("PriceServiceClient must be used as an async context manager")
        url = f"{self.base_url}{path}"
        headers: dict[str, str] = {}
        if self.token:
            headers["X-Internal-Token"] = self.token
        # Inject current trace context so downstream spans link to this request
        inject(headers)
        try:
            response = await self._client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise PriceServiceError(f"Price service error: {exc}") from exc
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning("Price service error %s for %s", response.status_code, url)
            raise PriceServiceError(
                f"Price service error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise PriceServiceError(f"Price service returned invalid JSON for {url}") from exc
        if not isinstance(payload, dict):
            raise PriceServiceError(f"Price service returned unexpected payload for {url}")
        return payload

    async def fetch_history(self, ticker: str, start: date, end: date) -> dict[date, Decimal]:
        payload = await self._get(
            f"/prices/{ticker}",
            params={"start": start.isoformat(), "end": end.isoformat()},
        )
        if not payload:
            return {}
        df = _parse_history(payload)
        if df.empty:
            return {}
        df = df.loc[pd.Timestamp(start) : pd.Timestamp(end)]
        return {stamp.date(): value for stamp, value in df["Close"].items()}

    async def fetch_snapshot(self, ticker: str) -> SpotQuote | None:
        payload = await self._get(f"/snapshots/{ticker}")
        if not payload or payload.get("price") is None:
            return None
        try:
            price = Decimal(str(payload["price"]))
            as_of = parse_date(payload["as_of"]) if payload.get("as_of") else None
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise PriceServiceError(f"Malformed snapshot for {ticker}: {payload!r}") from exc
        if not price.is_finite() or price <= 0:
            return None
        return SpotQuote(ticker=ticker, price=price, as_of=as_of)


__all__ = ["PriceServiceClient", "PriceServiceError"]
