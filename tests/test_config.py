"""
Tests for environment-driven settings and the logger.
"""

from __future__ import annotations

from datetime import timedelta

from riskcheck_agent.config import DEFAULT_GATEWAY_MODELS, Settings
from riskcheck_agent.engine import build_engine, build_judges


def _clear(monkeypatch):
    for name in (
        "VIRUSTOTAL_API_KEY", "AI_GATEWAY_API_KEY", "LOVABLE_API_KEY", "GEMINI_API_KEY",
        "RISKCHECK_GATEWAY_MODELS", "RISKCHECK_DEFAULT_SCAN_LIMIT", "RISKCHECK_TZ_OFFSET_HOURS",
        "RISKCHECK_PENALTY_PER_FINDING", "RISKCHECK_CORS_ORIGINS", "RISKCHECK_BULK_JOBS",
        "RISKCHECK_BULK_ACQUIRE_TIMEOUT_S",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    _clear(monkeypatch)
    settings = Settings.from_env()
    assert settings.virustotal_api_key is None
    assert settings.gateway_models == DEFAULT_GATEWAY_MODELS
    assert settings.default_scan_limit == 3
    assert settings.operational_tz.utcoffset(None) == timedelta(hours=3)
    assert settings.policy.per_finding == 15
    assert settings.cors_origins == ("http://localhost:3000",)
    assert settings.bulk_jobs == 2
    assert settings.bulk_acquire_timeout_s == 0.25


def test_overrides(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("RISKCHECK_GATEWAY_MODELS", "a/one, b/two,")
    monkeypatch.setenv("RISKCHECK_DEFAULT_SCAN_LIMIT", "5")
    monkeypatch.setenv("RISKCHECK_PENALTY_PER_FINDING", "12")
    monkeypatch.setenv("RISKCHECK_TZ_OFFSET_HOURS", "not-a-number")
    monkeypatch.setenv("RISKCHECK_CORS_ORIGINS", "https://app.example.com,https://admin.example.com")
    settings = Settings.from_env()
    assert settings.gateway_models == ("a/one", "b/two")
    assert settings.default_scan_limit == 5
    assert settings.policy.per_finding == 12
    assert settings.tz_offset_hours == 3.0
    assert settings.cors_origins == ("https://app.example.com", "https://admin.example.com")


def test_bulk_job_settings_come_from_env(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("RISKCHECK_BULK_JOBS", "5")
    monkeypatch.setenv("RISKCHECK_BULK_ACQUIRE_TIMEOUT_S", "1.5")
    settings = Settings.from_env()
    assert settings.bulk_jobs == 5
    assert settings.bulk_acquire_timeout_s == 1.5

    monkeypatch.setenv("RISKCHECK_BULK_JOBS", "lots")
    monkeypatch.setenv("RISKCHECK_BULK_ACQUIRE_TIMEOUT_S", "soon")
    fallback = Settings.from_env()
    assert fallback.bulk_jobs == 2
    assert fallback.bulk_acquire_timeout_s == 0.25
    monkeypatch.setenv("RISKCHECK_BULK_JOBS", "0")
    assert Settings.from_env().bulk_jobs == 1


def test_judges_follow_configured_keys():
    assert build_judges(Settings()) == []
    judges = build_judges(Settings(gateway_api_key="k", gateway_models=("a/one", "b/two")))
    assert [j.name for j in judges] == ["a/one", "b/two"]


def test_build_engine_without_keys():
    engine = build_engine(Settings(default_scan_limit=7))
    assert engine.judges == []
    assert engine.reputation.configured is False
    assert engine.quota.default_limit == 7


def test_logger_smoke():
    """get_logger returns a bound structlog logger that accepts context kwargs."""
    from riskcheck_agent.logger import get_logger

    logger = get_logger("test")
    assert hasattr(logger, "info")
    assert hasattr(logger, "exception")
    logger.info("test_event", key="value")
