from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path


def _parse_json_output(stdout: str) -> dict:
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    return json.loads(lines[-1])


def _run(env_overrides: dict[str, str], *args: str) -> tuple[int, dict]:
    repo_root = Path(__file__).resolve().parents[2]
    script_path = repo_root / "backend" / "scripts" / "validate_runtime_config.py"

    env = os.environ.copy()
    env.update(env_overrides)
    completed = subprocess.run(
        [sys.executable, str(script_path), *args],
        cwd=str(repo_root),
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )
    return completed.returncode, _parse_json_output(completed.stdout)


def test_validate_runtime_config_fails_for_mock_path_in_production():
    returncode, payload = _run({"APP_ENV": "production", "DEBUG": "false", "NOTIFICATION_PATH": "MOCK"})

    assert returncode == 1
    assert payload["status"] == "failed"
    assert any("NOTIFICATION_PATH=MOCK" in message for message in payload["failures"])


def test_validate_runtime_config_fails_for_soa_without_credentials():
    returncode, payload = _run(
        {
            "APP_ENV": "production",
            "DEBUG": "false",
            "NOTIFICATION_PATH": "SOA",
            "SOAP_ENDPOINT": "https://supply.example.org/StockUpdateService",
            "SOAP_USERNAME": "",
            "SOAP_PASSWORD": "",
        }
    )

    assert returncode == 1
    assert any("SOAP_USERNAME" in message for message in payload["failures"])


def test_validate_runtime_config_flags_unknown_path():
    returncode, payload = _run({"APP_ENV": "test", "NOTIFICATION_PATH": "CARRIER_PIGEON"})

    assert returncode == 1
    assert any("fall back to MOCK" in message for message in payload["failures"])


def test_validate_runtime_config_passes_with_serverless_settings():
    returncode, payload = _run(
        {
            "APP_ENV": "production",
            "DEBUG": "false",
            "NOTIFICATION_PATH": "SERVERLESS",
            "KAFKA_BOOTSTRAP_SERVERS": "hub.servicebus.example.net:9093",
            "ORDER_CONSUMER_ENABLED": "true",
        },
        "--require-consumer",
    )

    assert returncode == 0
    assert payload["status"] == "success"
    assert payload["notification_path"] == "SERVERLESS"
    assert payload["failures"] == []
