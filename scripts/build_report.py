"""Build a portfolio report from a JSON file of transaction records."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import pathlib

from pydantic import TypeAdapter

from app.config import get_settings
from app.core.logging import setup_logging
from app.core.telemetry import setup_telemetry
from app.schemas.report import PortfolioReportSchema, TransactionRecord
from app.services.report import build_report
from equity_engine.models import parse_date
from equity_engine.returns import Period

logger = logging.getLogger(__name__)


async def _run(path: pathlib.Path, as_of: str | None, period: str, method: str | None) -> str:
    overrides = {"cost_basis_method": method} if method else {}
    settings = get_settings(**overrides)
    setup_logging(settings.log_level)
    setup_telemetry(settings)
    logger.info("Settings: %s", settings.dict_for_logging())

    payload = json.loads(path.read_text(encoding="utf-8"))
    records = TypeAdapter(list[TransactionRecord]).validate_python(payload)
    report = await build_report(
        [record.to_domain() for record in records],
        as_of=parse_date(as_of) if as_of else None,
        period=period,
        settings=settings,
    )
    return PortfolioReportSchema.from_report(report).model_dump_json(indent=2)


def main() -> None:
    parser = argparse.ArgumentParser(description="Compute equity curve, benchmark and returns for a portfolio")
    parser.add_argument("transactions", type=pathlib.Path, help="JSON array of transaction records")
    parser.add_argument("--as-of", default=None, help="Valuation date (YYYY-MM-DD); defaults to today")
    parser.add_argument("--period", default="ALL", choices=[p.value for p in Period])
    parser.add_argument("--method", default=None, choices=["FIFO", "LIFO", "AVERAGE"])
    args = parser.parse_args()
    print(asyncio.run(_run(args.transactions, args.as_of, args.period, args.method)))


if __name__ == "__main__":
    main()
