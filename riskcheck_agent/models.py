from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Verdict = Literal["safe", "caution", "dangerous"]
RiskLevel = Literal["low", "medium", "high", "critical"]
Severity = Literal["info", "warning", "critical"]
DomainTrust = Literal["trusted", "untrusted", "unknown"]
ArtifactKind = Literal["link", "product"]
SourcePreference = Literal["all", "static_only"]
SubscriptionTier = Literal["free", "premium", "premium_seller"]

# Ordered least to most severe.
VERDICT_ORDER: tuple[Verdict, ...] = ("safe", "caution", "dangerous")
RISK_LEVEL_ORDER: tuple[RiskLevel, ...] = ("low", "medium", "high", "critical")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# -- evidence -----------------------------------------------------------------


class Finding(_Frozen):
    source: str
    description: str
    severity: Severity | None = None


class DomainInfo(_Frozen):
    domain: str
    trust: DomainTrust = "unknown"
    is_trusted: bool = False
    is_shortened: bool = False
    suspicious_tld: bool = False
    age_indicator: str = "Unknown"


class ReputationResult(_Frozen):
    positives: int = Field(0, ge=0)
    total: int = Field(0, ge=0)
    vendors: list[str] = Field(default_factory=list)
    permalink: str | None = None


class ModelOpinion(_Frozen):
    model: str
    analysis: str = ""
    link_type: str | None = None
    findings: list[Finding] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


# -- callers and quota --------------------------------------------------------


class CallerProfile(_Frozen):
    user_id: str
    subscription_tier: SubscriptionTier = "free"
    premium_expires_at: datetime | None = None
    is_admin: bool = False
    admin_bypass_limits: bool = False


class CallerIdentity(_Frozen):
    """Who is scanning. A missing profile means an anonymous guest."""

    profile: CallerProfile | None = None

    @property
    def is_guest(self) -> bool:
        return self.profile is None

    @property
    def user_id(self) -> str | None:
        return self.profile.user_id if self.profile else None


GUEST = CallerIdentity()


class QuotaState(_Frozen):
    scans_used: int = Field(0, ge=0)
    scan_limit: int = Field(3, ge=0)
    bonus_scans: int = Field(0, ge=0)
    unlimited: bool = False
    last_reset: datetime | None = None

    @property
    def effective_limit(self) -> int:
        return self.scan_limit + self.bonus_scans


class QuotaExceeded(_Frozen):
    scans_used: int
    scan_limit: int
    next_reset_time: datetime

    def to_response(self) -> dict[str, Any]:
        return {
            "error": "Scan limit reached. Upgrade to premium for unlimited scans!",
            "limitReached": True,
            "scansUsed": self.scans_used,
            "scanLimit": self.scan_limit,
            "nextResetTime": self.next_reset_time.isoformat(),
        }


# -- scan request / result ----------------------------------------------------


class ProductMetadata(_Frozen):
    name: str | None = None
    price: str | None = None
    vendor: str | None = None
    platform: str | None = None
    description: str | None = None
    listing_url: str | None = None

    def text(self) -> str:
        parts = [self.name, self.vendor, self.platform, self.price, self.description]
        return "\n".join(p for p in parts if p)


class ScanRequest(_Frozen):
    kind: ArtifactKind
    url: str | None = None
    image_ref: str | None = None
    metadata: ProductMetadata | None = None
    caller: CallerIdentity = GUEST
    sources: SourcePreference = "all"


class Assessment(_Frozen):
    score: int = Field(..., ge=0, le=100)
    verdict: Verdict
    risk_level: RiskLevel
    findings: list[Finding]
    contextual_warnings: list[Finding] = Field(default_factory=list)
    recommendations: list[str]
    domain_info: DomainInfo | None = None
    reputation: ReputationResult | None = None
    model_opinions: list[ModelOpinion] = Field(default_factory=list)
    ai_analysis: str = ""
    link_type: str = "unknown"
    fallback: bool = False
    analyzed_at: str
    timings_ms: dict[str, int] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """Wire shape: findings and recommendations flattened to strings."""
        body = self.model_dump(mode="json", exclude={"findings", "contextual_warnings"})
        body["findings"] = [f.description for f in self.findings]
        body["contextual_warnings"] = [f.description for f in self.contextual_warnings]
        return body


# -- HTTP request bodies ------------------------------------------------------


class AnalyzeLinkRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    sources: SourcePreference = "all"


class ProductInfo(BaseModel):
    name: str | None = Field(None, max_length=300)
    price: str | float | None = None
    vendor: str | None = Field(None, max_length=300)
    platform: str | None = Field(None, max_length=120)
    description: str | None = Field(None, max_length=5000)
    listing_url: str | None = Field(None, max_length=2048)

    def to_metadata(self) -> ProductMetadata:
        return ProductMetadata(
            name=self.name,
            price=str(self.price) if self.price is not None else None,
            vendor=self.vendor,
            platform=self.platform,
            description=self.description,
            listing_url=self.listing_url,
        )


class AssessProductRequest(BaseModel):
    image_url: str | None = Field(None, max_length=2048)
    image_data: str | None = None
    product_info: ProductInfo | None = None
    sources: SourcePreference = "all"


class BulkProduct(BaseModel):
    name: str | None = Field(None, max_length=300)
    price: str | float | None = None
    description: str | None = Field(None, max_length=5000)
    image_url: str | None = Field(None, max_length=2048)
    vendor: str | None = Field(None, max_length=300)
    listing_url: str | None = Field(None, max_length=2048)


class BulkScanRequest(BaseModel):
    products: list[BulkProduct] = Field(..., min_length=1)


class BulkScanItem(BaseModel):
    product: dict[str, Any]
    success: bool
    assessment: dict[str, Any] | None = None
    error: str | None = None


class BulkScanSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BulkScanResponse(BaseModel):
    success: bool = True
    results: list[BulkScanItem]
    summary: BulkScanSummary
