"""
Static heuristics over a URL or product text.

No network access and no exceptions: every public function returns a result for
any input, including garbage.
"""
from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field
from urllib.parse import urlparse, urlunparse

from .models import DomainInfo, Finding, ProductMetadata, Severity

STATIC_SOURCE = "static"
CONTEXT_SOURCE = "context"

UNPARSABLE_URL = "Could not parse URL - destination cannot be verified"

SHORTENER_DOMAINS = frozenset({
    "bit.ly", "tinyurl.com", "goo.gl", "t.co", "ow.ly",
    "is.gd", "buff.ly", "adf.ly", "clck.ru",
})

SUSPICIOUS_KEYWORDS = (
    "free-money", "claim-prize", "winner", "lottery", "bitcoin-giveaway",
    "password-reset", "account-suspended", "verify-now", "urgent-action",
    "limited-time", "act-now", "congratulations", "selected-winner",
)

PRODUCT_KEYWORDS = (
    "send money first", "send the money first",
    "pay before delivery", "deposit to reserve", "100% original", "guaranteed profit",
    "too good to miss", "only today", "whatsapp only",
)

TYPOSQUAT_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"faceb00k", r"gooogle", r"amaz0n", r"paypa1", r"netf1ix",
        r"micros0ft", r"app1e", r"twltter", r"1nstagram", r"wh4tsapp",
    )
)

SUSPICIOUS_TLDS = (".tk", ".ml", ".ga", ".cf", ".gq", ".xyz", ".top", ".work", ".click", ".loan")

TRUSTED_DOMAINS = frozenset({
    "safaricom.co.ke", "mpesa.co.ke", "jumia.co.ke", "kilimall.co.ke",
    "nation.co.ke", "standardmedia.co.ke", "kra.go.ke", "ecitizen.go.ke",
    "google.com", "microsoft.com", "apple.com", "amazon.com", "facebook.com",
    "twitter.com", "instagram.com", "linkedin.com", "youtube.com", "github.com",
    "whatsapp.com", "telegram.org", "netflix.com", "spotify.com",
})

# Second-level public suffixes; the registrable domain is one label below these.
_TWO_LEVEL_SUFFIXES = frozenset({
    "co.ke", "go.ke", "ac.ke", "or.ke", "ne.ke", "sc.ke", "me.ke", "info.ke",
    "co.uk", "org.uk", "ac.uk", "gov.uk",
    "com.au", "co.za", "co.tz", "co.ug", "com.ng", "co.in", "com.br",
})

_MAX_SUBDOMAIN_LABELS = 2

# Digits commonly swapped in for look-alike letters.
_LOOKALIKE_DIGIT_RE = re.compile(r"[a-z][013457890]|[013457890][a-z]", re.IGNORECASE)


@dataclass(frozen=True)
class ContextRule:
    """A brand or wording rule that only applies in the regional context.

    The rule fires when `trigger` matches the artifact text. Brand rules also
    carry `official_domains`; they only fire when the host is not one of them.
    """

    key: str
    trigger: re.Pattern[str]
    severity: Severity
    messages: tuple[str, ...]
    official_domains: tuple[str, ...] = ()
    needs_host: bool = False


def _word(pattern: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![a-z0-9]){pattern}(?![a-z0-9])", re.IGNORECASE)


CONTEXT_RULES: tuple[ContextRule, ...] = (
    ContextRule(
        key="mpesa",
        trigger=re.compile(r"m-?pesa", re.IGNORECASE),
        severity="warning",
        messages=(
            "Claims to be M-Pesa but not from official Safaricom domain",
            "Official M-Pesa links only come from safaricom.co.ke or mpesa.co.ke",
        ),
        official_domains=("safaricom.co.ke", "mpesa.co.ke"),
        needs_host=True,
    ),
    ContextRule(
        key="kra",
        trigger=re.compile(r"(?<![a-z0-9])(?:kra|itax)(?![a-z0-9])", re.IGNORECASE),
        severity="warning",
        messages=(
            "Claims to be KRA but not a .go.ke government domain",
            "All official KRA links use kra.go.ke",
        ),
        official_domains=("go.ke",),
        needs_host=True,
    ),
    ContextRule(
        key="equity",
        trigger=_word("equity"),
        severity="warning",
        messages=("Mentions EQUITY but domain doesn't match official bank website",),
        official_domains=("equitybank.co.ke", "equitygroupholdings.com"),
        needs_host=True,
    ),
    ContextRule(
        key="kcb",
        trigger=_word("kcb"),
        severity="warning",
        messages=("Mentions KCB but domain doesn't match official bank website",),
        official_domains=("kcbgroup.com", "kcb.co.ke"),
        needs_host=True,
    ),
    ContextRule(
        key="coop",
        trigger=_word("co-?op(?:bank)?"),
        severity="warning",
        messages=("Mentions CO-OP BANK but domain doesn't match official bank website",),
        official_domains=("co-opbank.co.ke",),
        needs_host=True,
    ),
    ContextRule(
        key="stanbic",
        trigger=_word("stanbic"),
        severity="warning",
        messages=("Mentions STANBIC but domain doesn't match official bank website",),
        official_domains=("stanbicbank.co.ke",),
        needs_host=True,
    ),
    ContextRule(
        key="absa",
        trigger=_word("(?:absa|barclays)"),
        severity="warning",
        messages=("Mentions ABSA but domain doesn't match official bank website",),
        official_domains=("absabank.co.ke", "absa.africa"),
        needs_host=True,
    ),
    ContextRule(
        key="ncba",
        trigger=_word("ncba"),
        severity="warning",
        messages=("Mentions NCBA but domain doesn't match official bank website",),
        official_domains=("ncbagroup.com",),
        needs_host=True,
    ),
    ContextRule(
        key="jumia",
        trigger=_word("jumia"),
        severity="warning",
        messages=("Claims to be Jumia but not from official jumia.co.ke domain",),
        official_domains=("jumia.co.ke",),
        needs_host=True,
    ),
    ContextRule(
        key="kilimall",
        trigger=_word("kilimall"),
        severity="warning",
        messages=("Claims to be Kilimall but not from official kilimall.co.ke domain",),
        official_domains=("kilimall.co.ke",),
        needs_host=True,
    ),
    ContextRule(
        key="whatsapp",
        trigger=re.compile(r"wa\.me|chat\.whatsapp\.com", re.IGNORECASE),
        severity="info",
        messages=(
            "WhatsApp link detected - verify sender before clicking",
            "Never share personal info or M-Pesa PINs via WhatsApp",
        ),
    ),
    ContextRule(
        key="registration_fee",
        trigger=re.compile(r"registration[-_ ]fee", re.IGNORECASE),
        severity="critical",
        messages=("Mentions registration fee - common scam tactic in Kenya",),
    ),
    ContextRule(
        key="advance_fee",
        trigger=re.compile(r"processing[-_ ]fee|unlock[-_ ]funds", re.IGNORECASE),
        severity="critical",
        messages=("Advance fee scam indicator - never pay to receive money",),
    ),
)


@dataclass(frozen=True)
class StaticAnalysis:
    findings: list[Finding] = field(default_factory=list)
    context: list[Finding] = field(default_factory=list)
    domain: DomainInfo | None = None


# -- URL helpers --------------------------------------------------------------


def normalize_url(raw: str) -> str:
    """Validate and canonicalise a user-supplied link.

    Raises ValueError with a user-facing message; meant for the HTTP boundary,
    not for the analyzer (which must accept anything).
    """
    value = (raw or "").strip()
    if not value:
        raise ValueError("Please provide a URL.")

    if not re.match(r"^[a-zA-Z][a-zA-Z\d+.-]*://", value):
        value = "https://" + value

    parsed = urlparse(value)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError("Please use an http(s) link.")
    try:
        host = parsed.hostname
    except ValueError:
        host = None
    if not host or ("." not in host and ":" not in host):
        raise ValueError("Could not parse URL domain.")

    return urlunparse(parsed._replace(fragment=""))


def extract_host(url: str) -> str | None:
    try:
        host = urlparse(url.strip()).hostname
    except (ValueError, AttributeError):
        return None
    if not host:
        return None
    return host.lower().rstrip(".")


def registrable_domain(host: str) -> str:
    parts = [p for p in host.lower().split(".") if p]
    if len(parts) <= 2:
        return ".".join(parts)
    if ".".join(parts[-2:]) in _TWO_LEVEL_SUFFIXES:
        return ".".join(parts[-3:])
    return ".".join(parts[-2:])


def _host_matches(host: str, domains: tuple[str, ...] | frozenset[str]) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def is_trusted_domain(host: str) -> bool:
    return _host_matches(host, TRUSTED_DOMAINS)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


def _label(domain: str) -> str:
    return domain.split(".", 1)[0]


def _looks_like_typosquat(host: str) -> bool:
    return any(p.search(host) for p in TYPOSQUAT_PATTERNS)


def _has_digit_substitution(host: str) -> bool:
    if not any(ch.isdigit() for ch in host):
        return False
    label = _label(registrable_domain(host))
    return bool(_LOOKALIKE_DIGIT_RE.search(label))


# -- analyzers ----------------------------------------------------------------


def _static(description: str, severity: Severity | None = None) -> Finding:
    return Finding(source=STATIC_SOURCE, description=description, severity=severity)


def check_context(text: str, host: str | None) -> list[Finding]:
    """Regional rules. Brand rules need a host to compare against."""
    out: list[Finding] = []
    for rule in CONTEXT_RULES:
        if not rule.trigger.search(text):
            continue
        if rule.needs_host:
            if host is None or _host_matches(host, rule.official_domains):
                continue
        for msg in rule.messages:
            out.append(Finding(source=CONTEXT_SOURCE, description=msg, severity=rule.severity))
    return out


def analyze_url(url: str) -> StaticAnalysis:
    host = extract_host(url) if isinstance(url, str) else None
    if not host:
        return StaticAnalysis(
            findings=[_static(UNPARSABLE_URL, "warning")],
            context=[],
            domain=DomainInfo(domain="", trust="unknown"),
        )

    url_lower = url.lower()
    trusted = is_trusted_domain(host)
    is_ip = _is_ip_literal(host)
    shortened = _host_matches(host, SHORTENER_DOMAINS)
    suspicious_tld = any(host.endswith(tld) for tld in SUSPICIOUS_TLDS)

    findings: list[Finding] = []
    if shortened:
        findings.append(_static("URL shortener detected - may hide malicious destination", "warning"))

    for kw in SUSPICIOUS_KEYWORDS:
        if kw in url_lower:
            findings.append(_static(f'Suspicious keyword detected: "{kw}"', "warning"))

    if not is_ip and _looks_like_typosquat(host):
        findings.append(_static("Possible typosquatting attack - domain mimics trusted site", "critical"))

    for tld in SUSPICIOUS_TLDS:
        if host.endswith(tld):
            findings.append(_static(f"High-risk domain extension ({tld}) commonly used in scams", "warning"))
            break

    if is_ip:
        findings.append(_static("IP address used instead of domain name - highly suspicious", "critical"))
    else:
        reg = registrable_domain(host)
        sub_labels = len(host.split(".")) - len(reg.split("."))
        if sub_labels > _MAX_SUBDOMAIN_LABELS:
            findings.append(_static("Excessive subdomains - potential phishing attempt", "warning"))
        if not trusted and _has_digit_substitution(host):
            findings.append(_static("Numbers replacing letters in domain - possible phishing", "warning"))

    domain = DomainInfo(
        domain=host,
        trust="trusted" if trusted else "untrusted",
        is_trusted=trusted,
        is_shortened=shortened,
        suspicious_tld=suspicious_tld,
        age_indicator="Established" if trusted else "Unknown",
    )
    return StaticAnalysis(findings=findings, context=check_context(url_lower, host), domain=domain)


def analyze_text(text: str) -> list[Finding]:
    lowered = (text or "").lower()
    return [
        _static(f'Suspicious phrase in listing: "{kw}"', "warning")
        for kw in PRODUCT_KEYWORDS
        if kw in lowered
    ]


def analyze_product(metadata: ProductMetadata | None, image_ref: str | None = None) -> StaticAnalysis:
    metadata = metadata or ProductMetadata()
    text = metadata.text()

    findings = analyze_text(text)
    context: list[Finding] = []
    domain: DomainInfo | None = None

    if metadata.listing_url:
        url_part = analyze_url(metadata.listing_url)
        findings = url_part.findings + findings
        context.extend(url_part.context)
        domain = url_part.domain
        host = (url_part.domain.domain if url_part.domain else "") or None
    else:
        host = None

    for f in check_context(text, host):
        if f not in context:
            context.append(f)

    if image_ref and image_ref.lower().startswith(("http://", "https://")):
        image_host = extract_host(image_ref)
        if image_host and _is_ip_literal(image_host):
            findings.append(_static("Product image served from a bare IP address", "warning"))

    return StaticAnalysis(findings=findings, context=context, domain=domain)
