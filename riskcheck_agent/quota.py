"""
Admission control: may this caller start one more evidence-gathering cycle today?

The store checks and consumes in a single atomic call on admission.
Store failures never block a scan; they are logged and the caller is admitted.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any

from .collaborators import QuotaStore, as_aware
from .logger import get_logger
from .models import CallerIdentity, CallerProfile, QuotaExceeded, QuotaState

logger = get_logger(__name__)

EAST_AFRICA_TIME = timezone(timedelta(hours=3))
UNLIMITED = -1


@dataclass(frozen=True)
class Admission:
    admitted: bool
    metered: bool
    state: QuotaState | None = None
    exceeded: QuotaExceeded | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuotaGate:
    def __init__(
        self,
        store: QuotaStore,
        *,
        default_limit: int = 3,
        tz: tzinfo = EAST_AFRICA_TIME,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.default_limit = default_limit
        self.tz = tz
        self.clock = clock

    # -- periods

    def period_start(self, now: datetime) -> datetime:
        local = now.astimezone(self.tz)
        return datetime.combine(local.date(), time.min, tzinfo=self.tz)

    def next_reset(self, now: datetime) -> datetime:
        return self.period_start(now) + timedelta(days=1)

    def current_state(self, state: QuotaState | None, now: datetime) -> QuotaState:
        """The state as it stands in the current period (stale counters read as zero)."""
        if state is None:
            return QuotaState(scan_limit=self.default_limit)
        last = as_aware(state.last_reset)
        if last is None or last < self.period_start(now):
            return state.model_copy(update={"scans_used": 0})
        return state

    # -- callers

    @staticmethod
    def is_privileged(profile: CallerProfile | None, now: datetime) -> bool:
        if profile is None:
            return False
        if profile.is_admin or profile.admin_bypass_limits:
            return True
        if profile.subscription_tier in ("premium", "premium_seller"):
            expires = as_aware(profile.premium_expires_at)
            return expires is None or expires >= now
        return False

    async def _read(self, user_id: str) -> tuple[QuotaState | None, bool]:
        try:
            return await self.store.get(user_id), True
        except Exception as e:
            logger.error("quota_store_failed", op="get", user_id=user_id, error=str(e))
            return None, False

    async def admit(self, caller: CallerIdentity) -> Admission:
        """Check the limit and consume one scan in a single store call."""
        now = self.clock()
        profile = caller.profile
        if profile is None:
            return Admission(admitted=True, metered=False)
        if self.is_privileged(profile, now):
            return Admission(admitted=True, metered=False)

        try:
            consumed, state = await self.store.try_consume(
                profile.user_id,
                now=now,
                period_start=self.period_start(now),
                default_limit=self.default_limit,
            )
        except Exception as e:
            logger.error("quota_store_failed", op="try_consume", user_id=profile.user_id, error=str(e))
            return Admission(admitted=True, metered=True)

        if state.unlimited:
            return Admission(admitted=True, metered=False, state=state)
        if consumed:
            return Admission(admitted=True, metered=True, state=state)

        exceeded = QuotaExceeded(
            scans_used=state.scans_used,
            scan_limit=state.effective_limit,
            next_reset_time=self.next_reset(now),
        )
        logger.info(
            "quota_exceeded",
            user_id=profile.user_id,
            scans_used=state.scans_used,
            scan_limit=state.effective_limit,
        )
        return Admission(admitted=False, metered=True, state=state, exceeded=exceeded)

    async def describe(self, caller: CallerIdentity) -> dict[str, Any]:
        now = self.clock()
        profile = caller.profile
        tier = profile.subscription_tier if profile else "guest"
        if profile is None or self.is_privileged(profile, now):
            return {
                "canScan": True,
                "subscriptionTier": tier,
                "scansRemaining": UNLIMITED,
                "scansUsed": None,
                "scanLimit": None,
                "nextResetTime": None,
            }

        raw, _ = await self._read(profile.user_id)
        state = self.current_state(raw, now)
        if state.unlimited:
            remaining = UNLIMITED
        else:
            remaining = max(0, state.effective_limit - state.scans_used)
        if profile.subscription_tier != "free":
            # Premium lapsed: metered like a free caller.
            tier = "free"
        return {
            "canScan": remaining != 0,
            "subscriptionTier": tier,
            "scansRemaining": remaining,
            "scansUsed": state.scans_used,
            "scanLimit": state.effective_limit,
            "nextResetTime": self.next_reset(now).isoformat(),
        }
