"""
URL reputation lookup against VirusTotal (API v3).

Missing key, "not analysed yet", HTTP errors, bad payloads and timeouts all
collapse to None: the caller treats reputation as optional evidence.
"""
from __future__ import annotations

import asyncio
import base64
from typing import Any

import httpx

from .logger import get_logger
from .models import ReputationResult

logger = get_logger(__name__)

VIRUSTOTAL_API = "https://www.virustotal.com/api/v3"
VIRUSTOTAL_GUI = "https://www.virustotal.com/gui/url"

_FLAGGING_CATEGORIES = {"malicious", "suspicious"}


def url_id(url: str) -> str:
    """VirusTotal's URL identifier: unpadded urlsafe base64 of the URL."""
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def parse_url_report(payload: Any, url: str) -> ReputationResult | None:
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    attrs = data.get("attributes") if isinstance(data, dict) else None
    if not isinstance(attrs, dict):
        return None

    stats = attrs.get("last_analysis_stats")
    if not isinstance(stats, dict) or not stats:
        return None

    positives = _as_int(stats.get("malicious")) + _as_int(stats.get("suspicious"))
    total = sum(_as_int(v) for v in stats.values())

    vendors: list[str] = []
    results = attrs.get("last_analysis_results")
    if isinstance(results, dict):
        for engine, verdict in results.items():
            if isinstance(verdict, dict) and verdict.get("category") in _FLAGGING_CATEGORIES:
                vendors.append(str(verdict.get("engine_name") or engine))
    vendors.sort()

    return ReputationResult(
        positives=positives,
        total=total,
        vendors=vendors,
        permalink=f"{VIRUSTOTAL_GUI}/{url_id(url)}",
    )


class ReputationClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        timeout_s: float = 6.0,
        base_url: str = VIRUSTOTAL_API,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def lookup(self, url: str | None) -> ReputationResult | None:
        if not self.configured or not url:
            return None
        try:
            return await asyncio.wait_for(self._fetch(url), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("reputation_unavailable", reason="timeout", timeout_s=self.timeout_s)
        except httpx.HTTPError as e:
            logger.warning("reputation_unavailable", reason="network", error=str(e))
        return None

    async def _fetch(self, url: str) -> ReputationResult | None:
        async with httpx.AsyncClient(
            timeout=self.timeout_s,
            transport=self._transport,
            headers={"x-apikey": self.api_key or "", "accept": "application/json"},
        ) as client:
            res = await client.get(f"{self.base_url}/urls/{url_id(url)}")

        if res.status_code == 404:
            logger.info("reputation_unavailable", reason="not_analysed")
            return None
        if res.status_code != 200:
            logger.warning("reputation_unavailable", reason="status", status=res.status_code)
            return None

        try:
            payload = res.json()
        except ValueError:
            logger.warning("reputation_unavailable", reason="malformed_body")
            return None

        result = parse_url_report(payload, url)
        if result is None:
            logger.warning("reputation_unavailable", reason="no_analysis_stats")
        return result
