#!/usr/bin/env python3
"""Run the stock monitor: evaluation loop plus (optionally) the order consumer.

Examples:
  python backend/scripts/run_monitor.py
  python backend/scripts/run_monitor.py --once
  NOTIFICATION_PATH=SOA python backend/scripts/run_monitor.py --no-consumer
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import get_settings
from core.logging import configure_logging
from workers.runtime import MonitorRuntime


async def _run(*, once: bool, consume: bool) -> dict:
    settings = get_settings()
    runtime = MonitorRuntime(settings, consume=consume and not once)
    runtime.install_signal_handlers()
    outcome = await runtime.run(once=once)

    if not once:
        return {"status": "stopped"}
    if outcome is None:
        return {"status": "no_alert"}
    return {
        "status": "delivered" if outcome.success else "failed",
        "path": outcome.path.value if outcome.path else None,
        "latency_ms": outcome.latency_ms,
        "attempts": outcome.attempts,
        "stock_status": outcome.stock_status,
        "recommended_quantity": outcome.recommended_quantity,
        "alert_id": outcome.alert_id,
        "order_id": outcome.order_id,
        "error": outcome.error_message,
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the perishable stock monitor")
    parser.add_argument("--once", action="store_true", help="Run a single evaluation cycle and exit")
    parser.add_argument("--no-consumer", action="store_true", help="Do not consume inbound order commands")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    summary = asyncio.run(_run(once=bool(args.once), consume=not args.no_consumer))
    print(json.dumps(summary))
    return 0 if summary["status"] != "failed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
