from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone

import pytest

from app.config import AppSettings, get_settings
from app.core.logging import setup_logging
from app.core.telemetry import setup_telemetry


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("COST_BASIS_METHOD", "LIFO")
    monkeypatch.setenv("BENCHMARK_TICKER", "QQQ")
    monkeypatch.setenv("PRICE_SERVICE_TOKEN", "secret")

    settings = AppSettings()

    assert settings.cost_basis_method == "LIFO"
    assert settings.benchmark_ticker == "QQQ"
    assert settings.dict_for_logging()["price_service_token"] == "***"


def test_get_settings_is_cached_and_accepts_overrides():
    assert get_settings() is get_settings()
    assert get_settings(capitalize_buy_fees=False).capitalize_buy_fees is False


def test_setup_logging_installs_single_handler():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        setup_logging("debug")
        setup_logging("warning")
        added = [h for h in root.handlers if h not in before]
        assert len(added) == 1
        assert root.level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
        root.setLevel(level)


def test_telemetry_disabled_by_default():
    assert setup_telemetry(AppSettings(telemetry_enabled=False)) is False


def test_local_today_follows_configured_timezone():
    now = datetime(2024, 1, 2, 3, 0, tzinfo=timezone.utc)

    assert AppSettings(timezone="UTC").local_today(now) == date(2024, 1, 2)
    assert AppSettings(timezone="America/New_York").local_today(now) == date(2024, 1, 1)
    assert AppSettings(timezone="Asia/Tokyo").local_today(datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)) == date(
        2024, 1, 2
    )


@pytest.mark.asyncio
async def test_async_test_receives_requested_fixtures(monkeypatch):
    monkeypatch.setenv("BENCHMARK_TICKER", "QQQ")
    await asyncio.sleep(0)

    assert get_settings().benchmark_ticker == "QQQ"
