"""
Tests for judge prompts, answer parsing, the OpenAI-compatible gateway judge
and the Gemini judge.

The gateway is exercised through httpx.MockTransport and genai.Client is
monkeypatched; nothing leaves the process.
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from riskcheck_agent import ai_judge
from riskcheck_agent.ai_judge import (
    MAX_RAW_ANALYSIS_CHARS,
    GatewayJudge,
    GeminiJudge,
    Judge,
    JudgeError,
    JudgePrompt,
    build_link_prompt,
    build_product_prompt,
    parse_opinion,
)
from riskcheck_agent.models import DomainInfo, Finding, ProductMetadata


def test_empty_answer_is_no_opinion():
    assert parse_opinion("m", "") is None
    assert parse_opinion("m", "   \n") is None
    assert parse_opinion("m", None) is None


def test_fenced_json_answer():
    text = "```json\n" + json.dumps(
        {
            "link_type": "Banking",
            "analysis": "Impersonates a bank login page.",
            "additional_threats": ["Fake login form", ""],
            "recommendations": ["Do not enter credentials"],
        }
    ) + "\n```"
    op = parse_opinion("gpt", text)
    assert op.model == "gpt"
    assert op.analysis == "Impersonates a bank login page."
    assert op.link_type == "banking"
    assert [(f.source, f.description) for f in op.findings] == [("gpt", "Fake login form")]
    assert op.recommendations == ["Do not enter credentials"]


def test_json_inside_prose():
    op = parse_opinion("m", 'Sure! Here it is: {"summary": "Looks like a giveaway scam"} Hope that helps.')
    assert op.analysis == "Looks like a giveaway scam"
    assert op.findings == []


def test_prose_without_json_is_kept_as_analysis():
    text = "This link " + "x" * 2000
    op = parse_opinion("m", text)
    assert op.findings == []
    assert len(op.analysis) == MAX_RAW_ANALYSIS_CHARS
    assert op.analysis.startswith("This link")


def test_risk_factor_objects_become_findings():
    text = json.dumps(
        {
            "analysis": "Seller looks new.",
            "risk_factors": [{"name": "Vendor", "details": "No business registration shown"}],
            "link_type": "weird",
        }
    )
    op = parse_opinion("m", text)
    assert [f.description for f in op.findings] == ["No business registration shown"]
    assert op.link_type == "unknown"


def test_link_prompt_carries_static_evidence():
    domain = DomainInfo(domain="bit.ly", trust="untrusted", is_shortened=True)
    prompt = build_link_prompt("https://bit.ly/x", domain, [Finding(source="static", description="Shortener")])
    assert "https://bit.ly/x" in prompt.user
    assert "Is trusted domain: false" in prompt.user
    assert "Shortener" in prompt.user
    assert prompt.image_ref is None


def test_product_prompt_with_uploaded_image():
    meta = ProductMetadata(name="Air Max", price="1500", vendor="SneakerKing")
    prompt = build_product_prompt(meta, "data:image/png;base64,iVBORw0KGgo=", None, [])
    assert "Product: Air Max" in prompt.user
    assert "Image: attached" in prompt.user
    assert prompt.image_ref.startswith("data:image/png")


def _gateway(handler, **kwargs) -> GatewayJudge:
    return GatewayJudge(
        "openai/gpt-5-mini",
        base_url="https://gateway.test/v1/",
        api_key="sk-test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_gateway_judge_returns_message_content():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"analysis": "ok"}'}}]})

    judge = _gateway(handler)
    text = asyncio.run(judge.complete(JudgePrompt(system="sys", user="hello")))
    assert text == '{"analysis": "ok"}'
    assert seen["url"] == "https://gateway.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "openai/gpt-5-mini"
    assert seen["body"]["messages"][0] == {"role": "system", "content": "sys"}


def test_gateway_judge_sends_raw_base64_image_as_data_uri():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})

    asyncio.run(_gateway(handler).complete(JudgePrompt(system="s", user="u", image_ref="abcd")))
    content = seen["body"]["messages"][1]["content"]
    assert content[0] == {"type": "text", "text": "u"}
    assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,abcd"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "boom"}),
        httpx.Response(429, json={"error": "rate limited"}),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, content=b"not json"),
    ],
)
def test_gateway_judge_failures_raise_judge_error(response):
    judge = _gateway(lambda request: response)
    with pytest.raises(JudgeError):
        asyncio.run(judge.complete(JudgePrompt(system="s", user="u")))


def test_gateway_network_error_raises_judge_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(JudgeError):
        asyncio.run(_gateway(handler).complete(JudgePrompt(system="s", user="u")))


class _FakeGenai:
    """Stands in for genai.Client; records the generate_content call."""

    calls: list[dict] = []

    def __init__(self, *, api_key: str, reply: str | None = ' {"analysis": "ok"} ', error: Exception | None = None):
        self.api_key = api_key
        self._reply = reply
        self._error = error
        self.aio = SimpleNamespace(models=self)

    async def generate_content(self, *, model, contents, config):
        _FakeGenai.calls.append({"api_key": self.api_key, "model": model, "contents": contents, "config": config})
        if self._error is not None:
            raise self._error
        return SimpleNamespace(text=self._reply)


def test_gemini_judge_builds_request_from_prompt(monkeypatch):
    _FakeGenai.calls = []
    monkeypatch.setattr(ai_judge.genai, "Client", _FakeGenai)
    judge = GeminiJudge("gemini-2.5-flash", api_key="g-key", temperature=0.1)
    prompt = JudgePrompt(system="sys", user="u", image_ref="data:image/png;base64,iVBORw==")

    text = asyncio.run(judge.complete(prompt))

    assert text == '{"analysis": "ok"}'
    call = _FakeGenai.calls[0]
    assert call["api_key"] == "g-key"
    assert call["model"] == "gemini-2.5-flash"
    config = call["config"]
    assert config.system_instruction == "sys"
    assert config.response_mime_type == "application/json"
    assert config.temperature == 0.1
    parts = call["contents"][0].parts
    assert parts[0].text == "u"
    assert parts[1].inline_data.mime_type == "image/png"
    assert parts[1].inline_data.data == b"\x89PNG"


def test_gemini_judge_skips_unreadable_image(monkeypatch):
    _FakeGenai.calls = []
    monkeypatch.setattr(ai_judge.genai, "Client", _FakeGenai)
    asyncio.run(GeminiJudge("m", api_key="k").complete(JudgePrompt(system="s", user="u", image_ref="https://x/y.jpg")))
    assert len(_FakeGenai.calls[0]["contents"][0].parts) == 1


def test_gemini_missing_text_is_empty_answer(monkeypatch):
    _FakeGenai.calls = []
    monkeypatch.setattr(ai_judge.genai, "Client", lambda *, api_key: _FakeGenai(api_key=api_key, reply=None))
    assert asyncio.run(GeminiJudge("m", api_key="k").complete(JudgePrompt(system="s", user="u"))) == ""


def test_gemini_sdk_error_raises_judge_error(monkeypatch):
    _FakeGenai.calls = []
    monkeypatch.setattr(
        ai_judge.genai, "Client", lambda *, api_key: _FakeGenai(api_key=api_key, error=RuntimeError("quota"))
    )
    with pytest.raises(JudgeError, match="quota"):
        asyncio.run(GeminiJudge("m", api_key="k").complete(JudgePrompt(system="s", user="u")))


def test_judge_without_complete_cannot_be_built():
    class Incomplete(Judge):
        name = "incomplete"

    with pytest.raises(TypeError):
        Incomplete()
