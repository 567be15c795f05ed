"""
Tests for the VirusTotal reputation client (httpx.MockTransport, no network).
"""

from __future__ import annotations

import asyncio

import httpx

from riskcheck_agent.reputation import ReputationClient, parse_url_report, url_id

REPORT = {
    "data": {
        "attributes": {
            "last_analysis_stats": {"malicious": 2, "suspicious": 1, "harmless": 60, "undetected": 7},
            "last_analysis_results": {
                "Kaspersky": {"category": "malicious", "engine_name": "Kaspersky"},
                "BitDefender": {"category": "suspicious", "engine_name": "BitDefender"},
                "Avira": {"category": "harmless", "engine_name": "Avira"},
            },
        }
    }
}


def _client(handler, api_key="vt-key", **kwargs) -> ReputationClient:
    return ReputationClient(api_key, transport=httpx.MockTransport(handler), **kwargs)


def test_url_id_is_unpadded_urlsafe_base64():
    assert url_id("http://example.com/") == "aHR0cDovL2V4YW1wbGUuY29tLw"


def test_lookup_parses_report():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("x-apikey")
        return httpx.Response(200, json=REPORT)

    result = asyncio.run(_client(handler).lookup("http://example.com/"))
    assert seen["path"] == "/api/v3/urls/aHR0cDovL2V4YW1wbGUuY29tLw"
    assert seen["key"] == "vt-key"
    assert result.positives == 3
    assert result.total == 70
    assert result.vendors == ["BitDefender", "Kaspersky"]
    assert result.permalink.endswith("/aHR0cDovL2V4YW1wbGUuY29tLw")


def test_not_yet_analysed_is_absent():
    result = asyncio.run(_client(lambda r: httpx.Response(404, json={"error": {}})).lookup("http://x.com/"))
    assert result is None


def test_server_error_is_absent():
    result = asyncio.run(_client(lambda r: httpx.Response(503)).lookup("http://x.com/"))
    assert result is None


def test_missing_key_skips_network():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=REPORT)

    client = _client(handler, api_key=None)
    assert client.configured is False
    assert asyncio.run(client.lookup("http://x.com/")) is None
    assert calls == []


def test_timeout_is_absent():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json=REPORT)

    assert asyncio.run(_client(handler, timeout_s=0.05).lookup("http://x.com/")) is None


def test_network_error_is_absent():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    assert asyncio.run(_client(handler).lookup("http://x.com/")) is None


def test_report_without_stats_is_absent():
    assert parse_url_report({"data": {"attributes": {}}}, "http://x.com/") is None
    assert parse_url_report([], "http://x.com/") is None
    assert asyncio.run(_client(lambda r: httpx.Response(200, content=b"<html>")).lookup("http://x.com/")) is None
