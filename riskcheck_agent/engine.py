"""
The scan pipeline.

    quota gate -> static heuristics -> (reputation || AI judges) -> score -> verdict

A request that passes the quota gate always ends with an Assessment: when no
external evidence could be gathered at all, the fixed fallback result is used.
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar

from .ai_judge import GatewayJudge, GeminiJudge, Judge, build_link_prompt, build_product_prompt
from .collaborators import (
    CallerDirectory,
    InMemoryCallerDirectory,
    InMemoryQuotaStore,
    InMemoryScanHistory,
    QuotaStore,
    ScanHistoryStore,
    ScanRecord,
)
from .config import Settings
from .fallback import fallback_assessment
from .gatherer import GatherResult, gather_opinions
from .heuristics import StaticAnalysis, analyze_product, analyze_url
from .logger import get_logger
from .models import Assessment, ModelOpinion, QuotaExceeded, QuotaState, ReputationResult, ScanRequest
from .quota import QuotaGate
from .reputation import ReputationClient
from .scoring import DEFAULT_POLICY, ScoringPolicy, build_recommendations, classify, compute_score, merge_findings

logger = get_logger(__name__)

T = TypeVar("T")

NO_AI_ANALYSIS = "AI analysis not available. Showing pattern-based results."


def _elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


async def _timed(name: str, timings: dict[str, int], aw: Awaitable[T]) -> T:
    t0 = time.perf_counter()
    try:
        return await aw
    finally:
        timings[name] = _elapsed_ms(t0)


def _summarize_analysis(opinions: Sequence[ModelOpinion]) -> str:
    with_text = [op for op in opinions if op.analysis]
    if not with_text:
        return NO_AI_ANALYSIS
    if len(with_text) == 1:
        return with_text[0].analysis
    return "\n\n".join(f"{op.model}: {op.analysis}" for op in with_text)


def _link_type(opinions: Sequence[ModelOpinion]) -> str:
    for op in opinions:
        if op.link_type and op.link_type != "unknown":
            return op.link_type
    return "unknown"


@dataclass(frozen=True)
class ScanOutcome:
    """A scan result plus the quota usage it was charged against."""

    result: Assessment | QuotaExceeded
    metered: bool = False
    # Counter after this scan; None for unmetered callers or when the store failed.
    usage: QuotaState | None = None


def _artifact_label(request: ScanRequest) -> str:
    if request.kind == "link":
        return request.url or ""
    meta = request.metadata
    if meta and (meta.name or meta.listing_url):
        return meta.name or meta.listing_url or ""
    ref = request.image_ref or ""
    return ref if not ref.startswith("data:") else "uploaded image"


class RiskEngine:
    def __init__(
        self,
        *,
        quota: QuotaGate,
        reputation: ReputationClient,
        judges: Sequence[Judge],
        history: ScanHistoryStore,
        policy: ScoringPolicy = DEFAULT_POLICY,
        judge_timeout_s: float = 20.0,
    ):
        self.quota = quota
        self.reputation = reputation
        self.judges = list(judges)
        self.history = history
        self.policy = policy
        self.judge_timeout_s = judge_timeout_s

    async def run(self, request: ScanRequest) -> ScanOutcome:
        admission = await self.quota.admit(request.caller)
        if admission.exceeded is not None:
            return ScanOutcome(admission.exceeded, metered=True, usage=admission.state)

        usage = admission.state if admission.metered else None
        logger.info("scan_admitted", kind=request.kind, user_id=request.caller.user_id, metered=admission.metered)

        assessment = await self.assess(request)
        await self.record(request, assessment)
        return ScanOutcome(assessment, metered=admission.metered, usage=usage)

    async def scan(self, request: ScanRequest) -> Assessment | QuotaExceeded:
        return (await self.run(request)).result

    def analyze_static(self, request: ScanRequest) -> StaticAnalysis:
        if request.kind == "link":
            return analyze_url(request.url or "")
        return analyze_product(request.metadata, request.image_ref)

    async def _lookup_reputation(self, request: ScanRequest) -> ReputationResult | None:
        if request.kind == "link":
            target = request.url
        else:
            target = request.metadata.listing_url if request.metadata else None
        return await self.reputation.lookup(target)

    async def assess(self, request: ScanRequest) -> Assessment:
        """Gather evidence and score it. No quota accounting, no persistence."""
        t0 = time.perf_counter()
        timings: dict[str, int] = {}
        warnings: list[str] = []

        t_static = time.perf_counter()
        static = self.analyze_static(request)
        timings["static"] = _elapsed_ms(t_static)

        reputation: ReputationResult | None = None
        gathered = GatherResult()
        if request.sources == "all":
            if request.kind == "link":
                prompt = build_link_prompt(request.url or "", static.domain, static.findings)
            else:
                prompt = build_product_prompt(request.metadata, request.image_ref, static.domain, static.findings)

            rep_out, gather_out = await asyncio.gather(
                _timed("reputation", timings, self._lookup_reputation(request)),
                _timed("judges", timings, gather_opinions(self.judges, prompt, self.judge_timeout_s)),
                return_exceptions=True,
            )
            if isinstance(rep_out, BaseException):
                logger.error("reputation_unavailable", reason="unexpected", error=repr(rep_out))
            else:
                reputation = rep_out
            if isinstance(gather_out, BaseException):
                logger.error("judges_unavailable", error=repr(gather_out))
            else:
                gathered = gather_out

            warnings.extend(gathered.errors)
            if reputation is None and self.reputation.configured:
                warnings.append("Reputation lookup unavailable")

            if reputation is None and not gathered.opinions and gathered.transport_unavailable:
                timings["total"] = _elapsed_ms(t0)
                logger.warning("fallback_assessment", kind=request.kind, judges=len(self.judges))
                return fallback_assessment(static.domain, timings_ms=timings, warnings=warnings)

        opinions = gathered.opinions
        findings = merge_findings(static.findings, opinions)
        score = compute_score(static.findings, reputation, opinions, static.domain, static.context, self.policy)
        verdict, risk_level = classify(score)
        recommendations = build_recommendations(verdict, findings, static.domain, opinions, kind=request.kind)

        timings["total"] = _elapsed_ms(t0)
        logger.info(
            "scan_completed",
            kind=request.kind,
            score=score,
            verdict=verdict,
            findings=len(findings),
            opinions=len(opinions),
            reputation=reputation is not None,
        )
        return Assessment(
            score=score,
            verdict=verdict,
            risk_level=risk_level,
            findings=findings,
            contextual_warnings=static.context,
            recommendations=recommendations,
            domain_info=static.domain,
            reputation=reputation,
            model_opinions=opinions,
            ai_analysis=_summarize_analysis(opinions),
            link_type=_link_type(opinions),
            analyzed_at=datetime.now(timezone.utc).isoformat(),
            timings_ms=timings,
            warnings=warnings,
        )

    async def assess_many(
        self, requests: Sequence[ScanRequest], *, concurrency: int = 4
    ) -> list[Assessment | BaseException]:
        """Assess a batch without quota accounting. Failures are returned in place."""
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _one(req: ScanRequest) -> Assessment:
            async with semaphore:
                assessment = await self.assess(req)
            await self.record(req, assessment)
            return assessment

        return list(await asyncio.gather(*(_one(r) for r in requests), return_exceptions=True))

    async def record(self, request: ScanRequest, assessment: Assessment) -> None:
        breakdown: dict[str, Any] = {
            "type": "link_analysis" if request.kind == "link" else "product_assessment",
            "threats_detected": [f.description for f in assessment.findings],
            "contextual_warnings": [f.description for f in assessment.contextual_warnings],
            "domain_info": assessment.domain_info.model_dump() if assessment.domain_info else None,
            "fallback": assessment.fallback,
        }
        record = ScanRecord(
            user_id=request.caller.user_id,
            is_guest=request.caller.is_guest,
            kind=request.kind,
            artifact=_artifact_label(request),
            overall_score=assessment.score,
            verdict=assessment.verdict,
            risk_level=assessment.risk_level,
            risk_breakdown=breakdown,
        )
        try:
            await self.history.append(record)
        except Exception as e:
            logger.error("history_write_failed", kind=request.kind, error=str(e))


def build_judges(settings: Settings) -> list[Judge]:
    judges: list[Judge] = []
    if settings.gateway_api_key:
        for model in settings.gateway_models:
            judges.append(
                GatewayJudge(
                    model,
                    base_url=settings.gateway_url,
                    api_key=settings.gateway_api_key,
                    timeout_s=settings.judge_timeout_s,
                )
            )
    elif settings.gateway_models:
        logger.warning("judge_skipped", provider="gateway", reason="AI_GATEWAY_API_KEY not set")

    if settings.gemini_api_key:
        judges.append(GeminiJudge(settings.gemini_model, api_key=settings.gemini_api_key))
    else:
        logger.warning("judge_skipped", provider="gemini", reason="GEMINI_API_KEY not set")
    return judges


def build_engine(
    settings: Settings,
    *,
    quota_store: QuotaStore | None = None,
    history: ScanHistoryStore | None = None,
) -> RiskEngine:
    gate = QuotaGate(
        quota_store or InMemoryQuotaStore(),
        default_limit=settings.default_scan_limit,
        tz=settings.operational_tz,
    )
    return RiskEngine(
        quota=gate,
        reputation=ReputationClient(settings.virustotal_api_key, timeout_s=settings.virustotal_timeout_s),
        judges=build_judges(settings),
        history=history or InMemoryScanHistory(),
        policy=settings.policy,
        judge_timeout_s=settings.judge_timeout_s,
    )


def build_directory() -> CallerDirectory:
    return InMemoryCallerDirectory()
