#!/usr/bin/env python3
"""Validate runtime configuration for pre-production/production deploys.

Examples:
  python backend/scripts/validate_runtime_config.py
  python backend/scripts/validate_runtime_config.py --require-consumer --pretty
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import DEFAULT_SOAP_ENDPOINT, get_settings

KNOWN_PATHS = {"SOA", "SERVERLESS", "MOCK"}


def _is_local_env(raw_env: str) -> bool:
    env = raw_env.strip().lower()
    return env in {"", "local", "dev", "development", "test"}


def _validate_settings(*, require_consumer: bool) -> tuple[list[str], dict[str, Any]]:
    settings = get_settings()
    env = settings.app_env.strip().lower()
    local_env = _is_local_env(env)
    path = settings.notification_path.strip().upper()
    failures: list[str] = []

    if path not in KNOWN_PATHS:
        failures.append(f"NOTIFICATION_PATH={settings.notification_path!r} is unknown; the monitor would fall back to MOCK")

    if not local_env:
        if path == "MOCK":
            failures.append("NOTIFICATION_PATH=MOCK is not allowed outside local/dev/test")
        if path == "SOA":
            if settings.soap_endpoint == DEFAULT_SOAP_ENDPOINT:
                failures.append("SOAP_ENDPOINT must not use the default value outside local/dev/test")
            if not settings.soap_username.strip() or not settings.soap_password.strip():
                failures.append("SOAP_USERNAME and SOAP_PASSWORD are required for the SOA path")
        if path == "SERVERLESS" and settings.kafka_bootstrap_servers.startswith("localhost"):
            failures.append("KAFKA_BOOTSTRAP_SERVERS must not point at localhost outside local/dev/test")

    if require_consumer and not settings.order_consumer_enabled:
        failures.append("ORDER_CONSUMER_ENABLED must be true when --require-consumer is set")

    summary = {
        "status": "success" if not failures else "failed",
        "app_env": settings.app_env,
        "local_env": local_env,
        "notification_path": path,
        "require_consumer": bool(require_consumer),
        "failures": failures,
    }
    return failures, summary


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate deployment runtime config")
    parser.add_argument(
        "--require-consumer",
        action="store_true",
        help="Require the inbound order consumer to be enabled for this deploy target",
    )
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    args = parser.parse_args()

    try:
        failures, summary = _validate_settings(require_consumer=bool(args.require_consumer))
    except Exception as exc:  # noqa: BLE001
        summary = {
            "status": "failed",
            "error": str(exc),
            "require_consumer": bool(args.require_consumer),
        }
        failures = [str(exc)]

    if args.pretty:
        print(json.dumps(summary, indent=2, sort_keys=True))
    else:
        print(json.dumps(summary))

    return 0 if not failures else 1


if __name__ == "__main__":
    raise SystemExit(main())
