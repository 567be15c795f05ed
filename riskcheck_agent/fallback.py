"""The fixed degraded result used when no external evidence could be gathered."""
from __future__ import annotations

from datetime import datetime, timezone

from .models import Assessment, DomainInfo, Finding
from .scoring import classify

FALLBACK_SCORE = 45
FALLBACK_SOURCE = "fallback"

FALLBACK_FINDINGS = (
    "Verification could not be completed: threat intelligence services were unavailable",
    "Verification could not be completed: AI analysis was unavailable",
    "Limited history available for this item. Proceed with caution.",
)

FALLBACK_RECOMMENDATIONS = (
    "Treat this item as unverified until you can confirm it through official channels",
    "Never send money or share M-Pesa PINs before verifying the recipient",
    "Try the scan again later for a full assessment",
)

FALLBACK_ANALYSIS = "AI analysis not available. Showing a conservative default result."


def fallback_assessment(
    domain: DomainInfo | None = None,
    *,
    timings_ms: dict[str, int] | None = None,
    warnings: list[str] | None = None,
) -> Assessment:
    verdict, risk_level = classify(FALLBACK_SCORE)
    return Assessment(
        score=FALLBACK_SCORE,
        verdict=verdict,
        risk_level=risk_level,
        findings=[Finding(source=FALLBACK_SOURCE, description=d, severity="warning") for d in FALLBACK_FINDINGS],
        recommendations=list(FALLBACK_RECOMMENDATIONS),
        domain_info=domain,
        ai_analysis=FALLBACK_ANALYSIS,
        fallback=True,
        analyzed_at=datetime.now(timezone.utc).isoformat(),
        timings_ms=timings_ms or {},
        warnings=warnings or [],
    )
