"""Service configuration, read from the environment (and .env files) once at startup."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta, timezone, tzinfo
from pathlib import Path

from dotenv import load_dotenv

from .scoring import ScoringPolicy

_HERE = Path(__file__).resolve()
_PACKAGE_ROOT = _HERE.parents[1]

DEFAULT_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1"
DEFAULT_GATEWAY_MODELS = ("google/gemini-3-flash-preview", "openai/gpt-5-mini")


def load_env() -> None:
    """Load the repo-root .env without overriding variables already set."""
    load_dotenv(_PACKAGE_ROOT / ".env", override=False)


def _env_str(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _env_str(name)
    if raw is None:
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def policy_from_env() -> ScoringPolicy:
    base = ScoringPolicy()
    return ScoringPolicy(
        per_finding=_env_int("RISKCHECK_PENALTY_PER_FINDING", base.per_finding),
        shortened_url=_env_int("RISKCHECK_PENALTY_SHORTENED_URL", base.shortened_url),
        suspicious_tld=_env_int("RISKCHECK_PENALTY_SUSPICIOUS_TLD", base.suspicious_tld),
        untrusted_domain=_env_int("RISKCHECK_PENALTY_UNTRUSTED_DOMAIN", base.untrusted_domain),
        contextual_warning=_env_int("RISKCHECK_PENALTY_CONTEXT_WARNING", base.contextual_warning),
        contextual_critical=_env_int("RISKCHECK_PENALTY_CONTEXT_CRITICAL", base.contextual_critical),
        per_reputation_positive=_env_int("RISKCHECK_PENALTY_PER_DETECTION", base.per_reputation_positive),
        clean_reputation_bonus=_env_int("RISKCHECK_BONUS_CLEAN_REPUTATION", base.clean_reputation_bonus),
        trusted_domain_bonus=_env_int("RISKCHECK_BONUS_TRUSTED_DOMAIN", base.trusted_domain_bonus),
    )


@dataclass(frozen=True)
class Settings:
    virustotal_api_key: str | None = None
    virustotal_timeout_s: float = 6.0

    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_api_key: str | None = None
    gateway_models: tuple[str, ...] = DEFAULT_GATEWAY_MODELS
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-3-flash-preview"
    judge_timeout_s: float = 20.0

    default_scan_limit: int = 3
    tz_offset_hours: float = 3.0

    bulk_max_products: int = 50
    bulk_concurrency: int = 4
    bulk_jobs: int = 2
    bulk_acquire_timeout_s: float = 0.25

    cors_origins: tuple[str, ...] = ("http://localhost:3000",)
    policy: ScoringPolicy = field(default_factory=ScoringPolicy)

    @property
    def operational_tz(self) -> tzinfo:
        return timezone(timedelta(hours=self.tz_offset_hours))

    @classmethod
    def from_env(cls) -> "Settings":
        load_env()
        return cls(
            virustotal_api_key=_env_str("VIRUSTOTAL_API_KEY"),
            virustotal_timeout_s=_env_float("VIRUSTOTAL_TIMEOUT_S", 6.0),
            gateway_url=_env_str("AI_GATEWAY_URL", DEFAULT_GATEWAY_URL) or DEFAULT_GATEWAY_URL,
            gateway_api_key=_env_str("AI_GATEWAY_API_KEY") or _env_str("LOVABLE_API_KEY"),
            gateway_models=_env_list("RISKCHECK_GATEWAY_MODELS", DEFAULT_GATEWAY_MODELS),
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-3-flash-preview") or "gemini-3-flash-preview",
            judge_timeout_s=_env_float("RISKCHECK_JUDGE_TIMEOUT_S", 20.0),
            default_scan_limit=max(0, _env_int("RISKCHECK_DEFAULT_SCAN_LIMIT", 3)),
            tz_offset_hours=_env_float("RISKCHECK_TZ_OFFSET_HOURS", 3.0),
            bulk_max_products=max(1, _env_int("RISKCHECK_BULK_MAX_PRODUCTS", 50)),
            bulk_concurrency=max(1, _env_int("RISKCHECK_BULK_CONCURRENCY", 4)),
            bulk_jobs=max(1, _env_int("RISKCHECK_BULK_JOBS", 2)),
            bulk_acquire_timeout_s=max(0.0, _env_float("RISKCHECK_BULK_ACQUIRE_TIMEOUT_S", 0.25)),
            cors_origins=_env_list("RISKCHECK_CORS_ORIGINS", ("http://localhost:3000",)),
            policy=policy_from_env(),
        )
