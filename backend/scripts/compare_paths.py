#!/usr/bin/env python3
"""Print SOA vs serverless notification metrics from the audit log as JSON.

Examples:
  python backend/scripts/compare_paths.py
  python backend/scripts/compare_paths.py --hours 6 --pretty
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from audit.comparison import compare_paths
from core.config import get_settings
from core.logging import configure_logging
from db.session import create_engine_from_settings, create_session_factory, init_models
from db.store import SupplyStore


async def _compare(hours: float) -> dict:
    settings = get_settings()
    engine = create_engine_from_settings(settings)
    try:
        await init_models(engine)
        store = SupplyStore(
            create_session_factory(engine),
            facility_id=settings.facility_id,
            product_code=settings.product_code,
        )
        return await compare_paths(store, hours=hours)
    finally:
        await engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Compare delivery paths over the audit log")
    parser.add_argument("--hours", type=float, default=24.0, help="Trailing window in hours")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging("WARNING", json_output=settings.log_json)

    try:
        report = asyncio.run(_compare(args.hours))
        report["status"] = "success"
    except Exception as exc:  # noqa: BLE001
        report = {"status": "failed", "error": str(exc), "window_hours": args.hours}

    if args.pretty:
        print(json.dumps(report, indent=2, sort_keys=True))
    else:
        print(json.dumps(report))
    return 0 if report["status"] == "success" else 1


if __name__ == "__main__":
    raise SystemExit(main())
