"""
Score aggregation and verdict classification.

Everything here is a pure function of its arguments: identical evidence always
produces the identical score, verdict and recommendation list.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .heuristics import CONTEXT_SOURCE
from .models import DomainInfo, Finding, ModelOpinion, ReputationResult, RiskLevel, Verdict


@dataclass(frozen=True)
class ScoringPolicy:
    """Deductions and bonuses applied by compute_score, in score points."""

    per_finding: int = 15
    shortened_url: int = 20
    suspicious_tld: int = 25
    untrusted_domain: int = 10
    contextual_warning: int = 15
    contextual_critical: int = 25
    per_reputation_positive: int = 10
    clean_reputation_bonus: int = 5
    trusted_domain_bonus: int = 20


DEFAULT_POLICY = ScoringPolicy()


def _clamp_score(score: int) -> int:
    return max(0, min(100, int(score)))


def _finding_key(description: str) -> str:
    return " ".join(description.split()).casefold()


def merge_findings(static_findings: Iterable[Finding], opinions: Iterable[ModelOpinion] = ()) -> list[Finding]:
    """Static findings first, then each opinion's, coalesced by description.

    Contextual findings are not threats and are left out; they are weighted by
    tier in compute_score instead.
    """
    merged: list[Finding] = []
    seen: set[str] = set()

    def _add(f: Finding) -> None:
        key = _finding_key(f.description)
        if not key or key in seen:
            return
        seen.add(key)
        merged.append(f)

    for f in static_findings:
        if f.source != CONTEXT_SOURCE:
            _add(f)
    for op in opinions:
        for f in op.findings:
            _add(f)
    return merged


def compute_score(
    static_findings: Sequence[Finding],
    reputation: ReputationResult | None,
    opinions: Sequence[ModelOpinion],
    domain: DomainInfo | None,
    context: Sequence[Finding] = (),
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> int:
    score = 100

    score -= len(merge_findings(static_findings, opinions)) * policy.per_finding

    if reputation is not None:
        score -= reputation.positives * policy.per_reputation_positive
        if reputation.positives == 0 and reputation.total > 0:
            score += policy.clean_reputation_bonus

    context = list(context) + [f for f in static_findings if f.source == CONTEXT_SOURCE]
    if any(f.severity == "warning" for f in context):
        score -= policy.contextual_warning
    if any(f.severity == "critical" for f in context):
        score -= policy.contextual_critical

    if domain is not None:
        if domain.is_shortened:
            score -= policy.shortened_url
        if domain.suspicious_tld:
            score -= policy.suspicious_tld
        if domain.is_trusted:
            score += policy.trusted_domain_bonus
        else:
            score -= policy.untrusted_domain

    return _clamp_score(score)


def classify(score: int) -> tuple[Verdict, RiskLevel]:
    score = _clamp_score(score)
    if score >= 80:
        return "safe", "low"
    if score >= 60:
        return "caution", "medium"
    if score >= 40:
        return "caution", "high"
    return "dangerous", "critical"


_LINK_ADVICE: dict[str, tuple[str, ...]] = {
    "threats": ("Avoid clicking this link or providing any personal information",),
    "dangerous": (
        "Report this link to relevant authorities if received via SMS or email",
        "Block the sender if this was sent to you directly",
    ),
    "caution": (
        "Verify the link through official channels before clicking",
        "Never enter passwords or M-Pesa PINs on unfamiliar sites",
    ),
    "safe": ("Always double-check the URL before entering sensitive information",),
}

_PRODUCT_ADVICE: dict[str, tuple[str, ...]] = {
    "threats": ("Do not send money to this seller until the concerns above are resolved",),
    "dangerous": (
        "Report this listing to the marketplace and avoid any advance payment",
        "Block the seller if they contacted you directly",
    ),
    "caution": (
        "Request more product photos and verify the seller through official channels",
        "Pay on delivery or through the marketplace's protected checkout, never by direct M-Pesa transfer",
    ),
    "safe": ("Inspect the item on delivery before confirming payment",),
}


def build_recommendations(
    verdict: Verdict,
    findings: Sequence[Finding],
    domain: DomainInfo | None,
    opinions: Sequence[ModelOpinion] = (),
    kind: str = "link",
) -> list[str]:
    advice = _PRODUCT_ADVICE if kind == "product" else _LINK_ADVICE
    recs: list[str] = []
    if findings:
        recs.extend(advice["threats"])
    if domain is not None and domain.is_shortened:
        recs.append("Use a URL expander service to reveal the actual destination")
    recs.extend(advice[verdict])

    seen = {_finding_key(r) for r in recs}
    for op in opinions:
        for rec in op.recommendations:
            key = _finding_key(rec)
            if key and key not in seen:
                seen.add(key)
                recs.append(rec)
    return recs
