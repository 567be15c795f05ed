"""
Interfaces to the systems the engine talks to but does not own: the caller
directory, the quota store and the scan history store.

In-memory implementations back the default app and the tests; a deployment
swaps in its own objects with the same async methods.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, Field

from .models import ArtifactKind, CallerProfile, QuotaState


def as_aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# -- caller directory ---------------------------------------------------------


class CallerDirectory(Protocol):
    async def resolve(self, token: str) -> CallerProfile | None: ...


class InMemoryCallerDirectory:
    """Token -> profile map.

    With auto_register, an unknown token is taken to be the user id of a
    free-tier caller (authentication happens upstream of this service).
    """

    def __init__(self, profiles: dict[str, CallerProfile] | None = None, *, auto_register: bool = True):
        self._profiles = dict(profiles or {})
        self.auto_register = auto_register

    def add(self, token: str, profile: CallerProfile) -> None:
        self._profiles[token] = profile

    async def resolve(self, token: str) -> CallerProfile | None:
        token = (token or "").strip()
        if not token:
            return None
        profile = self._profiles.get(token)
        if profile is None and self.auto_register:
            profile = CallerProfile(user_id=token)
            self._profiles[token] = profile
        return profile


# -- quota store --------------------------------------------------------------


class QuotaStore(Protocol):
    async def get(self, user_id: str) -> QuotaState | None: ...

    async def try_consume(
        self, user_id: str, *, now: datetime, period_start: datetime, default_limit: int
    ) -> tuple[bool, QuotaState]:
        """
        Atomically reset a counter left over from an earlier period, then add one
        if the caller is under the effective limit. Returns (consumed, state).
        Unlimited states are never incremented and always report True.
        """
        ...


class InMemoryQuotaStore:
    def __init__(self, states: dict[str, QuotaState] | None = None):
        self._states = dict(states or {})
        self._lock = asyncio.Lock()
        self.increments = 0

    def seed(self, user_id: str, state: QuotaState) -> None:
        self._states[user_id] = state

    async def get(self, user_id: str) -> QuotaState | None:
        return self._states.get(user_id)

    async def try_consume(
        self, user_id: str, *, now: datetime, period_start: datetime, default_limit: int
    ) -> tuple[bool, QuotaState]:
        async with self._lock:
            state = self._states.get(user_id) or QuotaState(scan_limit=default_limit)
            last = as_aware(state.last_reset)
            if last is None or last < period_start:
                state = state.model_copy(update={"scans_used": 0, "last_reset": now})
            if state.unlimited:
                return True, state
            if state.scans_used >= state.effective_limit:
                self._states[user_id] = state
                return False, state
            state = state.model_copy(update={"scans_used": state.scans_used + 1})
            self._states[user_id] = state
            self.increments += 1
            return True, state


# -- scan history -------------------------------------------------------------


class ScanRecord(BaseModel):
    user_id: str | None
    is_guest: bool
    kind: ArtifactKind
    artifact: str
    overall_score: int
    verdict: str
    risk_level: str
    risk_breakdown: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ScanHistoryStore(Protocol):
    async def append(self, record: ScanRecord) -> None: ...


class InMemoryScanHistory:
    def __init__(self) -> None:
        self.records: list[ScanRecord] = []

    async def append(self, record: ScanRecord) -> None:
        self.records.append(record)
