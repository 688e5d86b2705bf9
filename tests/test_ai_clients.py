"""Tests for the provider HTTP clients, driven through httpx.MockTransport."""
import json

import httpx
import pytest

from app.services.ai_clients import (
    AIProviderError,
    AnthropicClient,
    ChatCompletionClient,
    GatewayClient,
    PerplexityClient,
)

MESSAGES = [
    {"role": "system", "content": "You are terse."},
    {"role": "user", "content": "Say hi"},
]


def _chat_reply(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


# ---------------------------------------------------------------------------
# Gateway (OpenAI-compatible)
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_gateway_posts_chat_completion():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return _chat_reply("hi")

    client = GatewayClient("key", "https://gateway.test/v1/", "gemini", transport=httpx.MockTransport(handler))
    text = await client.complete(MESSAGES, max_tokens=50, response_format=None)

    assert text == "hi"
    assert seen["url"] == "https://gateway.test/v1/chat/completions"
    assert seen["auth"] == "Bearer key"
    assert seen["body"]["model"] == "gemini"
    assert seen["body"]["temperature"] == ChatCompletionClient.DEFAULT_TEMPERATURE
    assert seen["body"]["max_tokens"] == 50
    assert "response_format" not in seen["body"]


@pytest.mark.asyncio
async def test_gateway_http_error_raises_with_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(402, text="no credits"))
    client = GatewayClient("key", "https://gateway.test/v1", "gemini", transport=transport)

    with pytest.raises(AIProviderError) as excinfo:
        await client.complete(MESSAGES)
    assert excinfo.value.status_code == 402
    assert excinfo.value.provider == "gateway"


@pytest.mark.asyncio
async def test_missing_key_fails_without_request():
    def handler(request):
        raise AssertionError("no request expected")

    client = GatewayClient("", "https://gateway.test/v1", "gemini", transport=httpx.MockTransport(handler))
    with pytest.raises(AIProviderError):
        await client.complete(MESSAGES)


@pytest.mark.asyncio
async def test_empty_content_raises():
    client = GatewayClient(
        "key", "https://gateway.test/v1", "gemini", transport=httpx.MockTransport(lambda r: _chat_reply(""))
    )
    with pytest.raises(AIProviderError):
        await client.complete(MESSAGES)


@pytest.mark.asyncio
async def test_complete_json_parses_fenced_reply():
    reply = '```json\n{"pillars": ["Ethics", "Logic",],}\n```'
    client = GatewayClient(
        "key", "https://gateway.test/v1", "gemini", transport=httpx.MockTransport(lambda r: _chat_reply(reply))
    )
    ok, data = await client.complete_json(MESSAGES)
    assert ok is True
    assert data == {"pillars": ["Ethics", "Logic"]}


# ---------------------------------------------------------------------------
# Perplexity (retries)
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_perplexity_retries_rate_limit_then_succeeds():
    responses = [httpx.Response(429), httpx.Response(500), _chat_reply("found it")]
    attempts = []

    def handler(request):
        attempts.append(request)
        return responses.pop(0)

    client = PerplexityClient(
        "key", base_url="https://pplx.test", transport=httpx.MockTransport(handler),
        rate_limit_delay=0, max_retries=3,
    )
    assert await client.complete(MESSAGES) == "found it"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_perplexity_gives_up_with_last_error():
    client = PerplexityClient(
        "key", base_url="https://pplx.test",
        transport=httpx.MockTransport(lambda r: httpx.Response(429)),
        rate_limit_delay=0, max_retries=2,
    )
    with pytest.raises(AIProviderError) as excinfo:
        await client.complete(MESSAGES)
    assert excinfo.value.status_code == 429


@pytest.mark.asyncio
async def test_perplexity_rejects_non_json_body():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, text="<html>busy</html>", headers={"content-type": "text/html"})

    client = PerplexityClient(
        "key", base_url="https://pplx.test", transport=httpx.MockTransport(handler),
        rate_limit_delay=0, max_retries=2,
    )
    with pytest.raises(AIProviderError):
        await client.complete(MESSAGES)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_perplexity_forwards_search_options():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return _chat_reply("ok")

    client = PerplexityClient(
        "key", base_url="https://pplx.test", transport=httpx.MockTransport(handler), rate_limit_delay=0
    )
    await client.complete(MESSAGES, model=client.fast_model, search_domain_filter=["mit.edu"])
    assert seen["model"] == client.fast_model
    assert seen["search_domain_filter"] == ["mit.edu"]


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_anthropic_moves_system_prompt():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "hello"}]})

    client = AnthropicClient(
        "key", base_url="https://anthropic.test", model="claude", transport=httpx.MockTransport(handler)
    )
    assert await client.complete(MESSAGES, temperature=0) == "hello"

    assert seen["url"] == "https://anthropic.test/v1/messages"
    assert seen["headers"]["x-api-key"] == "key"
    assert "anthropic-version" in seen["headers"]
    assert seen["body"]["system"] == "You are terse."
    assert seen["body"]["messages"] == [{"role": "user", "content": "Say hi"}]
    assert seen["body"]["max_tokens"] == AnthropicClient.DEFAULT_MAX_TOKENS
    assert seen["body"]["temperature"] == 0


@pytest.mark.asyncio
async def test_anthropic_bad_structure_raises():
    client = AnthropicClient(
        "key", base_url="https://anthropic.test",
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"content": []})),
    )
    with pytest.raises(AIProviderError):
        await client.complete(MESSAGES)


# ---------------------------------------------------------------------------
# parse_json_robust
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "raw, expect, expected",
    [
        ('{"a": 1}', "object", {"a": 1}),
        ("Here you go:\n[1, 2, 3]\nHope that helps", "array", [1, 2, 3]),
        ('Result: {"ok": True, "value": None}', "object", {"ok": True, "value": None}),
        ('{"url": "https://example.com/a"} // from search', "object", {"url": "https://example.com/a"}),
    ],
)
def test_parse_json_robust(raw, expect, expected):
    ok, value = ChatCompletionClient.parse_json_robust(raw, expect=expect)
    assert ok is True
    assert value == expected


def test_parse_json_robust_prefers_expected_kind():
    raw = 'Options [1, 2] and the answer {"x": 1}'
    assert ChatCompletionClient.parse_json_robust(raw, expect="object") == (True, {"x": 1})
    assert ChatCompletionClient.parse_json_robust(raw, expect="array") == (True, [1, 2])


def test_parse_json_robust_failure():
    assert ChatCompletionClient.parse_json_robust("no json at all") == (False, None)
    assert ChatCompletionClient.parse_json_robust("") == (False, None)
