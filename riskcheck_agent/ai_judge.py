"""
AI judges: independent language models asked for a structured opinion on an artifact.

Two transports are supported: an OpenAI-compatible chat-completions gateway
(one judge per model name) and Google Gemini through the google-genai SDK.
Judges return free text; parse_opinion turns it into a ModelOpinion.
"""
from __future__ import annotations

import base64
import binascii
import json
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx
from google import genai
from google.genai import types

from .models import DomainInfo, Finding, ModelOpinion, ProductMetadata

MAX_RAW_ANALYSIS_CHARS = 500

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)

_FINDING_KEYS = ("additional_threats", "additional_findings", "threats", "detected_issues", "risk_factors")
_RECOMMENDATION_KEYS = ("recommendations", "recommendation")
_ANALYSIS_KEYS = ("analysis", "summary")

_ALLOWED_LINK_TYPES = {
    "e-commerce", "social_media", "banking", "government", "news",
    "file_download", "redirect", "unknown",
}


class JudgeError(RuntimeError):
    """The judge could not be reached or answered with a non-success status."""


@dataclass(frozen=True)
class JudgePrompt:
    system: str
    user: str
    image_ref: str | None = None


# -- prompts ------------------------------------------------------------------

LINK_SYSTEM_PROMPT = """You are a cybersecurity expert specializing in link analysis and phishing detection for the Kenyan market. Analyze URLs for potential threats including:
- Phishing attempts
- Scam websites
- Malware distribution
- Fake login pages
- Advance fee fraud (common in Kenya)
- Impersonation of Kenyan services (M-Pesa, Safaricom, KRA, Banks)

Respond with ONLY valid JSON (no markdown, no code blocks):
{
  "link_type": "e-commerce|social_media|banking|government|news|file_download|redirect|unknown",
  "analysis": "Brief 2-3 sentence analysis of the link's safety",
  "additional_threats": ["array of any additional threats detected"],
  "recommendations": ["array of safety recommendations"]
}"""

PRODUCT_SYSTEM_PROMPT = """You are a fraud detection AI for Kenyan e-commerce. Analyze products and product images for:
1. Vendor trust: reviews sentiment, account age indicators, missing business identity
2. Product authenticity: cloned, stock or manipulated images, branding inconsistencies
3. Payment safety: requests for direct M-Pesa transfers, advance fees, pressure tactics
4. Price: too-good-to-be-true discounts compared to Jumia, Kilimall and local vendors

Respond with ONLY valid JSON (no markdown, no code blocks):
{
  "analysis": "Brief 2-3 sentence assessment of the product and seller",
  "additional_threats": ["array of specific concerns found"],
  "recommendations": ["array of safety recommendations for the buyer"]
}"""


def _describe_findings(findings: Sequence[Finding]) -> str:
    return ", ".join(f.description for f in findings) or "None"


def build_link_prompt(url: str, domain: DomainInfo | None, findings: Sequence[Finding]) -> JudgePrompt:
    host = domain.domain if domain and domain.domain else "unknown"
    trusted = domain.is_trusted if domain else False
    user = (
        f"Analyze this URL for security risks: {url}\n\n"
        f"Domain: {host}\n"
        f"Is trusted domain: {str(trusted).lower()}\n"
        f"Detected threats so far: {_describe_findings(findings)}"
    )
    return JudgePrompt(system=LINK_SYSTEM_PROMPT, user=user)


def build_product_prompt(
    metadata: ProductMetadata | None,
    image_ref: str | None,
    domain: DomainInfo | None,
    findings: Sequence[Finding],
) -> JudgePrompt:
    metadata = metadata or ProductMetadata()
    lines = [
        "Analyze this product:",
        f"Product: {metadata.name or 'Unknown'}",
        f"Price: {metadata.price or 'Not specified'}",
        f"Vendor: {metadata.vendor or 'Unknown'}",
        f"Platform: {metadata.platform or 'Unknown'}",
        f"Description: {(metadata.description or 'No description')[:4000]}",
    ]
    if metadata.listing_url:
        lines.append(f"Listing URL: {metadata.listing_url}")
        lines.append(f"Listing domain trusted: {str(bool(domain and domain.is_trusted)).lower()}")
    if image_ref and not image_ref.startswith("data:"):
        lines.append(f"Image URL: {image_ref}")
    elif image_ref:
        lines.append("Image: attached")
    lines.append(f"Detected concerns so far: {_describe_findings(findings)}")
    lines.append(
        "\nConsider Kenyan market context: counterfeit electronics, unverified M-Pesa transactions, "
        "high-risk vendor locations."
    )
    return JudgePrompt(system=PRODUCT_SYSTEM_PROMPT, user="\n".join(lines), image_ref=image_ref)


# -- parsing ------------------------------------------------------------------


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float, bool)):
        s = str(value).strip()
        return [s] if s else []
    if isinstance(value, list):
        out: list[str] = []
        for item in value:
            if item is None:
                continue
            if isinstance(item, dict):
                # risk_factors style: {"name": ..., "details": ...}
                s = str(item.get("details") or item.get("description") or item.get("name") or "").strip()
            else:
                s = str(item).strip()
            if s:
                out.append(s)
        return out
    return [str(value)]


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _extract_json_object(text: str) -> dict[str, Any] | None:
    candidate = _strip_fences(text)
    try:
        parsed = json.loads(candidate)
    except ValueError:
        m = _JSON_OBJECT_RE.search(candidate)
        if not m:
            return None
        try:
            parsed = json.loads(m.group(0))
        except ValueError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _normalize_link_type(raw: Any) -> str | None:
    if raw is None:
        return None
    value = str(raw).strip().lower().replace(" ", "_")
    if value in ("ecommerce", "shop", "store"):
        value = "e-commerce"
    if value in ("social", "socialmedia"):
        value = "social_media"
    return value if value in _ALLOWED_LINK_TYPES else "unknown"


def parse_opinion(model: str, text: str | None) -> ModelOpinion | None:
    """Turn a judge's free-text answer into a ModelOpinion.

    Returns None for an empty answer. Text without a usable JSON object is kept
    as the analysis so the judge still contributes something.
    """
    if not text or not text.strip():
        return None

    raw = _extract_json_object(text)
    if raw is None:
        return ModelOpinion(model=model, analysis=text.strip()[:MAX_RAW_ANALYSIS_CHARS])

    analysis = ""
    for key in _ANALYSIS_KEYS:
        if raw.get(key):
            analysis = str(raw[key]).strip()
            break

    findings: list[Finding] = []
    for key in _FINDING_KEYS:
        for desc in _as_str_list(raw.get(key)):
            findings.append(Finding(source=model, description=desc))

    recommendations: list[str] = []
    for key in _RECOMMENDATION_KEYS:
        recommendations.extend(_as_str_list(raw.get(key)))

    return ModelOpinion(
        model=model,
        analysis=analysis,
        link_type=_normalize_link_type(raw.get("link_type")),
        findings=findings,
        recommendations=recommendations,
    )


# -- judges -------------------------------------------------------------------


class Judge(ABC):
    """One AI model. complete() returns raw text or raises JudgeError."""

    name: str = "judge"

    @abstractmethod
    async def complete(self, prompt: JudgePrompt) -> str: ...


def _gateway_image_url(image_ref: str) -> str:
    if image_ref.startswith(("data:", "http://", "https://")):
        return image_ref
    return f"data:image/jpeg;base64,{image_ref}"


class GatewayJudge(Judge):
    """A model behind an OpenAI-compatible /chat/completions endpoint."""

    def __init__(
        self,
        model: str,
        *,
        base_url: str,
        api_key: str,
        timeout_s: float = 20.0,
        temperature: float = 0.3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.name = model
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.temperature = temperature
        self._transport = transport

    def _messages(self, prompt: JudgePrompt) -> list[dict[str, Any]]:
        if prompt.image_ref:
            user: Any = [
                {"type": "text", "text": prompt.user},
                {"type": "image_url", "image_url": {"url": _gateway_image_url(prompt.image_ref)}},
            ]
        else:
            user = prompt.user
        return [
            {"role": "system", "content": prompt.system},
            {"role": "user", "content": user},
        ]

    async def complete(self, prompt: JudgePrompt) -> str:
        body = {"model": self.model, "messages": self._messages(prompt), "temperature": self.temperature}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                res = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=body,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            raise JudgeError(f"{self.name}: {e}") from e

        if res.status_code != 200:
            raise JudgeError(f"{self.name}: gateway returned HTTP {res.status_code}")

        try:
            data = res.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise JudgeError(f"{self.name}: malformed gateway response") from e
        return content if isinstance(content, str) else ""


def _gemini_image_part(image_ref: str) -> types.Part | None:
    m = _DATA_URI_RE.match(_gateway_image_url(image_ref))
    if not m:
        return None
    try:
        data = base64.b64decode(m.group("data"), validate=False)
    except (binascii.Error, ValueError):
        return None
    return types.Part.from_bytes(data=data, mime_type=m.group("mime"))


class GeminiJudge(Judge):
    """Gemini through the official google-genai SDK (async client)."""

    def __init__(self, model: str, *, api_key: str, temperature: float = 0.3):
        self.name = model
        self.model = model
        self.api_key = api_key
        self.temperature = temperature

    async def complete(self, prompt: JudgePrompt) -> str:
        parts = [types.Part.from_text(text=prompt.user)]
        if prompt.image_ref:
            image_part = _gemini_image_part(prompt.image_ref)
            if image_part is not None:
                parts.append(image_part)

        config = types.GenerateContentConfig(
            system_instruction=prompt.system,
            response_mime_type="application/json",
            temperature=self.temperature,
            max_output_tokens=2048,
        )
        try:
            client = genai.Client(api_key=self.api_key)
            resp = await client.aio.models.generate_content(
                model=self.model,
                contents=[types.Content(role="user", parts=parts)],
                config=config,
            )
        except Exception as e:
            # The SDK raises its own error hierarchy plus transport errors.
            raise JudgeError(f"{self.name}: {e}") from e

        return (getattr(resp, "text", None) or "").strip()
