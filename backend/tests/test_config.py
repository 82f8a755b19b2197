"""
Tests for settings loading and startup guardrails.
"""

import pytest

from core.config import DEFAULT_SOAP_ENDPOINT, Settings, _enforce_runtime_guardrails, get_settings


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


def test_defaults():
    settings = _settings()
    assert settings.notification_path == "MOCK"
    assert settings.reorder_threshold == 2.0
    assert settings.soa_retry_schedule_ms == [5000, 15000, 30000]
    assert settings.serverless_max_attempts == 5


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("NOTIFICATION_PATH", "SERVERLESS")
    monkeypatch.setenv("REORDER_THRESHOLD", "3.5")
    monkeypatch.setenv("SOA_RETRY_SCHEDULE_MS", "[100, 200]")

    settings = _settings()

    assert settings.notification_path == "SERVERLESS"
    assert settings.reorder_threshold == 3.5
    assert settings.soa_retry_schedule_ms == [100, 200]


def test_get_settings_is_cached(monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()


def test_retry_policy_for_each_path():
    settings = _settings()

    assert settings.retry_policy_for("SOA").max_attempts == 3
    assert settings.retry_policy_for("SOA").schedule_ms == (5000, 15000, 30000)
    assert settings.retry_policy_for("SERVERLESS").schedule_ms == (2000, 4000, 8000, 16000)
    assert settings.retry_policy_for("MOCK").max_attempts == 1


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"reorder_threshold": 0}, "REORDER_THRESHOLD"),
        ({"serverless_max_attempts": 0}, "SERVERLESS_MAX_ATTEMPTS"),
        ({"soa_max_attempts": 0}, "SOA_MAX_ATTEMPTS"),
        ({"soa_retry_schedule_ms": [1000, -1]}, "SOA_RETRY_SCHEDULE_MS"),
        ({"facility_id": "  "}, "FACILITY_ID"),
    ],
)
def test_guardrails_apply_everywhere(overrides, message):
    with pytest.raises(ValueError, match=message):
        _enforce_runtime_guardrails(_settings(app_env="test", **overrides))


def test_production_refuses_debug():
    with pytest.raises(ValueError, match="debug"):
        _enforce_runtime_guardrails(_settings(app_env="production", debug=True))


def test_production_refuses_default_soap_endpoint():
    settings = _settings(app_env="production", notification_path="SOA", soap_endpoint=DEFAULT_SOAP_ENDPOINT)
    with pytest.raises(ValueError, match="SOAP endpoint"):
        _enforce_runtime_guardrails(settings)


def test_local_env_allows_defaults():
    _enforce_runtime_guardrails(_settings(app_env="local", notification_path="SOA", debug=True))
