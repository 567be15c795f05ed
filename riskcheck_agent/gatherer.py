"""
Concurrent fan-out to every configured AI judge.

Each judge runs under its own timeout and its outcome is captured as a tagged
JudgeOutcome, so one slow or broken judge never affects the others.
"""
from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field

from .ai_judge import Judge, JudgeError, JudgePrompt, parse_opinion
from .logger import get_logger
from .models import ModelOpinion

logger = get_logger(__name__)


@dataclass(frozen=True)
class JudgeOutcome:
    model: str
    opinion: ModelOpinion | None = None
    error: str | None = None
    # True when the judge was never heard from (timeout, network, HTTP status).
    transport_failed: bool = False

    @property
    def ok(self) -> bool:
        return self.opinion is not None


@dataclass(frozen=True)
class GatherResult:
    outcomes: list[JudgeOutcome] = field(default_factory=list)

    @property
    def opinions(self) -> list[ModelOpinion]:
        return [o.opinion for o in self.outcomes if o.opinion is not None]

    @property
    def transport_unavailable(self) -> bool:
        """No judge configured, or every judge failed before answering."""
        return all(o.transport_failed for o in self.outcomes)

    @property
    def errors(self) -> list[str]:
        return [f"{o.model}: {o.error}" for o in self.outcomes if o.error]


async def consult_judge(judge: Judge, prompt: JudgePrompt, timeout_s: float) -> JudgeOutcome:
    try:
        text = await asyncio.wait_for(judge.complete(prompt), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning("judge_failed", model=judge.name, reason="timeout", timeout_s=timeout_s)
        return JudgeOutcome(model=judge.name, error="timed out", transport_failed=True)
    except JudgeError as e:
        logger.warning("judge_failed", model=judge.name, reason="transport", error=str(e))
        return JudgeOutcome(model=judge.name, error=str(e), transport_failed=True)
    except Exception as e:
        logger.exception("judge_failed", model=judge.name, reason="unexpected")
        return JudgeOutcome(model=judge.name, error=f"{type(e).__name__}: {e}", transport_failed=True)

    opinion = parse_opinion(judge.name, text)
    if opinion is None:
        logger.warning("judge_failed", model=judge.name, reason="empty_response")
        return JudgeOutcome(model=judge.name, error="empty response")
    return JudgeOutcome(model=judge.name, opinion=opinion)


async def gather_opinions(judges: Sequence[Judge], prompt: JudgePrompt, timeout_s: float) -> GatherResult:
    if not judges:
        return GatherResult()
    outcomes = await asyncio.gather(*(consult_judge(j, prompt, timeout_s) for j in judges))
    result = GatherResult(outcomes=list(outcomes))
    logger.info(
        "judges_settled",
        judges=len(judges),
        opinions=len(result.opinions),
        failed=[o.model for o in result.outcomes if not o.ok],
    )
    return result
