"""Application configuration and environment helpers."""

from __future__ import annotations

from datetime import date, datetime
from functools import lru_cache
from typing import Any, Literal
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TIMEZONE = "UTC"
DEFAULT_BASE_CURRENCY = "USD"
DEFAULT_BENCHMARK_TICKER = "SPY"


class AppSettings(BaseSettings):
    """Configuration options for the portfolio equity service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="Portfolio Equity Engine")
    timezone: str = Field(default=DEFAULT_TIMEZONE)
    base_currency: str = Field(default=DEFAULT_BASE_CURRENCY)
    log_level: str = Field(default="INFO")

    cost_basis_method: Literal["FIFO", "LIFO", "AVERAGE"] = Field(default="FIFO")
    collapse_same_day_trades: bool = Field(
        default=True,
        description="Merge same-ticker, same-day, same-side trades into one VWAP trade.",
    )
    capitalize_buy_fees: bool = Field(
        default=True,
        description="Include buy commissions in lot cost basis.",
    )
    benchmark_ticker: str = Field(default=DEFAULT_BENCHMARK_TICKER)
    ticker_aliases: dict[str, str] = Field(default_factory=lambda: {"GOOG": "GOOGL"})
    exchange_suffixes: list[str] = Field(default_factory=lambda: [".US"])

    price_service_url: str = Field(
        default="http://localhost:8300",
        description="Base URL for the price history and snapshot service",
    )
    price_service_token: str | None = Field(
        default=None,
        description="Optional shared secret for price service authentication",
    )
    price_service_timeout_seconds: float = Field(default=15.0)
    price_service_concurrency: int = Field(default=8, ge=1)

    telemetry_enabled: bool = Field(default=False)
    telemetry_service_name: str = Field(default="portfolio-equity-engine")
    telemetry_otlp_endpoint: str | None = Field(default=None)
    telemetry_otlp_insecure: bool = Field(default=True)
    telemetry_sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)

    def local_today(self, now: datetime | None = None) -> date:
        """Return the calendar date in the configured timezone."""

        tz = ZoneInfo(self.timezone)
        return (now.astimezone(tz) if now else datetime.now(tz)).date()

    def dict_for_logging(self) -> dict[str, Any]:
        """Return a sanitized dict for logging purposes."""

        hidden = {"price_service_token"}
        return {k: ("***" if k in hidden else v) for k, v in self.model_dump().items()}


@lru_cache(maxsize=1)
def get_settings(**overrides: Any) -> AppSettings:
    """Return cached application settings with optional overrides."""

    if overrides:
        return AppSettings(**overrides)
    return AppSettings()


__all__ = [
    "AppSettings",
    "DEFAULT_BASE_CURRENCY",
    "DEFAULT_BENCHMARK_TICKER",
    "DEFAULT_TIMEZONE",
    "get_settings",
]
