"""
Pytest fixtures for the risk-check agent: fake judges, stub reputation, in-memory
stores and a FastAPI TestClient wired to them through dependency overrides.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from riskcheck_agent.ai_judge import Judge, JudgePrompt
from riskcheck_agent.collaborators import InMemoryCallerDirectory, InMemoryQuotaStore, InMemoryScanHistory
from riskcheck_agent.engine import RiskEngine
from riskcheck_agent.models import CallerIdentity, CallerProfile, ReputationResult
from riskcheck_agent.quota import QuotaGate
from riskcheck_agent.reputation import ReputationClient

# 12:00 in Nairobi.
FIXED_NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

CLEAN_REPLY = json.dumps(
    {
        "link_type": "unknown",
        "analysis": "Nothing beyond the detected patterns.",
        "additional_threats": [],
        "recommendations": [],
    }
)


class FakeJudge(Judge):
    """Returns a canned reply, raises a canned error, or stalls."""

    def __init__(self, name: str = "fake-model", reply: str = CLEAN_REPLY, *, error: Exception | None = None,
                 delay_s: float = 0.0):
        self.name = name
        self.reply = reply
        self.error = error
        self.delay_s = delay_s
        self.prompts: list[JudgePrompt] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: JudgePrompt) -> str:
        self.prompts.append(prompt)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.reply


class StubReputation(ReputationClient):
    def __init__(self, result: ReputationResult | None = None, *, configured: bool = False):
        super().__init__("test-key" if configured or result is not None else None)
        self.result = result
        self.calls = 0

    async def lookup(self, url):
        self.calls += 1
        return self.result


class BrokenQuotaStore:
    async def get(self, user_id):
        raise RuntimeError("quota store down")

    async def try_consume(self, user_id, *, now, period_start, default_limit):
        raise RuntimeError("quota store down")


class BrokenHistory:
    async def append(self, record):
        raise RuntimeError("history store down")


def profile(user_id: str = "u-free", **kwargs) -> CallerProfile:
    return CallerProfile(user_id=user_id, **kwargs)


def caller(user_id: str = "u-free", **kwargs) -> CallerIdentity:
    return CallerIdentity(profile=profile(user_id, **kwargs))


@pytest.fixture
def quota_store():
    return InMemoryQuotaStore()


@pytest.fixture
def history():
    return InMemoryScanHistory()


@pytest.fixture
def judge():
    return FakeJudge()


@pytest.fixture
def make_engine(quota_store, history):
    """Factory: RiskEngine over in-memory stores and a frozen clock."""

    def _make(judges=(), reputation=None, store=None, scan_history=None, clock=lambda: FIXED_NOW,
              judge_timeout_s=1.0, **kwargs):
        gate = QuotaGate(store or quota_store, default_limit=3, clock=clock)
        return RiskEngine(
            quota=gate,
            reputation=reputation or StubReputation(),
            judges=list(judges),
            history=scan_history or history,
            judge_timeout_s=judge_timeout_s,
            **kwargs,
        )

    return _make


@pytest.fixture
def engine(make_engine, judge):
    return make_engine(judges=[judge])


@pytest.fixture
def directory():
    far = FIXED_NOW + timedelta(days=365)
    return InMemoryCallerDirectory(
        {
            "free-token": profile("u-free"),
            "premium-token": profile("u-premium", subscription_tier="premium", premium_expires_at=far),
            "seller-token": profile("u-seller", subscription_tier="premium_seller", premium_expires_at=far),
            "expired-token": profile(
                "u-expired", subscription_tier="premium", premium_expires_at=FIXED_NOW - timedelta(days=1)
            ),
            "admin-token": profile("u-admin", is_admin=True),
        },
        auto_register=False,
    )


@pytest.fixture
def client(engine, directory):
    """FastAPI TestClient with the engine and caller directory overridden."""
    from fastapi.testclient import TestClient

    from riskcheck_agent.main import app, get_directory, get_engine

    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_directory] = lambda: directory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
