"""
Tests for the Generation Adapter.

Covers:
  - Request shaping (bounded history, message order)
  - Response budget and timeout
  - Rate-limit fallback ladder (at most one extra attempt)
  - HTTP provider variants against a mocked transport
"""
import asyncio
import json
from unittest.mock import patch

import httpx
import pytest

from models.schemas import Speaker
from voice.errors import GenerationError, GenerationRateLimited
from voice.generation import (
    GenerationAdapter, GenerationRequest, GeminiGenerationClient, OpenAICompatibleClient,
    usable_key,
)
from voice.history import HistoryWindow
from voice.providers import GenerationProvider, GenerationRoute

from tests.conftest import FakeGenerationClient

OPENAI_ROUTE = GenerationRoute(GenerationProvider.OPENAI, "gpt-3.5-turbo")


def _request(text: str = "I need help with my account") -> GenerationRequest:
    return GenerationRequest(system_prompt="You are Support Bot on a phone call.", utterance=text)


# ──────────────────────────────────────────────────────────────
#  GenerationRequest
# ──────────────────────────────────────────────────────────────

class TestGenerationRequest:
    def test_from_window_uses_newest_entry_as_utterance(self):
        window = HistoryWindow(max_entries=8)
        window.append(Speaker.USER, "hi")
        window.append(Speaker.ASSISTANT, "hello")
        window.append(Speaker.USER, "what are your hours?")

        req = GenerationRequest.from_window("sys", window, limit=5)
        assert req.utterance == "what are your hours?"
        assert [u.text for u in req.history] == ["hi", "hello"]

    def test_from_window_respects_limit(self):
        window = HistoryWindow(max_entries=8)
        for i in range(8):
            window.append(Speaker.USER if i % 2 == 0 else Speaker.ASSISTANT, f"m{i}")

        req = GenerationRequest.from_window("sys", window, limit=5)
        assert len(req.history) + 1 <= 5
        assert req.utterance == "m7"
        assert [u.text for u in req.history] == ["m3", "m4", "m5", "m6"]

    def test_from_empty_window_rejected(self):
        with pytest.raises(ValueError):
            GenerationRequest.from_window("sys", HistoryWindow(), limit=5)

    def test_messages_end_with_user_utterance(self):
        window = HistoryWindow()
        window.append(Speaker.USER, "hi")
        window.append(Speaker.ASSISTANT, "hello")
        window.append(Speaker.USER, "bye")
        msgs = GenerationRequest.from_window("sys", window, limit=5).messages()
        assert msgs == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "bye"},
        ]


# ──────────────────────────────────────────────────────────────
#  Budget and timeout
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestGenerationBudget:
    async def test_budget_passed_to_provider(self, generator, primary_client):
        reply = await generator.generate(_request(), OPENAI_ROUTE)
        assert reply == "Sure, I can help with that."
        call = primary_client.calls[0]
        assert call["max_tokens"] == 80
        assert call["temperature"] == 0.7
        assert call["model"] == "gpt-3.5-turbo"
        assert call["system_prompt"].startswith("You are Support Bot")

    async def test_timeout_becomes_generation_error(self, settings, primary_client):
        settings.llm.timeout_s = 0.05
        primary_client.delay_s = 1.0
        adapter = GenerationAdapter(settings, clients={GenerationProvider.OPENAI: primary_client})
        with pytest.raises(GenerationError) as exc:
            await adapter.generate(_request(), OPENAI_ROUTE)
        assert "timed out" in exc.value.cause

    async def test_unexpected_exception_wrapped(self, settings):
        client = FakeGenerationClient(GenerationProvider.OPENAI, error=RuntimeError("boom"))
        adapter = GenerationAdapter(settings, clients={GenerationProvider.OPENAI: client})
        with pytest.raises(GenerationError) as exc:
            await adapter.generate(_request(), OPENAI_ROUTE)
        assert exc.value.cause == "boom"

    async def test_unconfigured_provider(self, settings):
        adapter = GenerationAdapter(settings, clients={})
        with pytest.raises(GenerationError):
            await adapter.generate(_request(), OPENAI_ROUTE)


# ──────────────────────────────────────────────────────────────
#  Fallback ladder
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestFallbackLadder:
    async def test_rate_limit_falls_back_once(self, generator, primary_client, aggregator_client, rate_limited):
        primary_client.error = rate_limited
        reply = await generator.generate(_request(), OPENAI_ROUTE)
        assert reply == "Fallback reply from aggregator."
        assert len(primary_client.calls) == 1
        assert len(aggregator_client.calls) == 1
        assert aggregator_client.calls[0]["model"] == "openai/gpt-3.5-turbo"

    async def test_fallback_failure_surfaces_both_causes(
        self, generator, primary_client, aggregator_client, rate_limited,
    ):
        primary_client.error = rate_limited
        aggregator_client.error = GenerationRateLimited("openrouter", "rate limit exceeded again")
        with pytest.raises(GenerationError) as exc:
            await generator.generate(_request(), OPENAI_ROUTE)
        assert "rate limit exceeded" in exc.value.cause
        assert "openrouter" in exc.value.cause
        # Exactly two attempts in total, no loop
        assert len(primary_client.calls) == 1
        assert len(aggregator_client.calls) == 1

    async def test_no_fallback_without_aggregator_key(
        self, settings, generator, primary_client, aggregator_client, rate_limited,
    ):
        settings.keys.openrouter = ""
        primary_client.error = rate_limited
        with pytest.raises(GenerationRateLimited):
            await generator.generate(_request(), OPENAI_ROUTE)
        assert aggregator_client.calls == []

    async def test_no_fallback_when_primary_is_aggregator(self, generator, aggregator_client):
        aggregator_client.error = GenerationRateLimited("openrouter", "rate limit exceeded")
        route = GenerationRoute(GenerationProvider.OPENROUTER, "openai/gpt-3.5-turbo")
        with pytest.raises(GenerationRateLimited):
            await generator.generate(_request(), route)
        assert len(aggregator_client.calls) == 1

    async def test_non_rate_limit_error_not_retried(self, generator, primary_client, aggregator_client):
        primary_client.error = GenerationError("openai", "Invalid OpenAI API key")
        with pytest.raises(GenerationError) as exc:
            await generator.generate(_request(), OPENAI_ROUTE)
        assert not isinstance(exc.value, GenerationRateLimited)
        assert aggregator_client.calls == []

    async def test_placeholder_key_disables_fallback(self, settings, generator):
        settings.keys.openrouter = "your-openrouter-key-example"
        assert generator.fallback_available is False

    def test_usable_key(self):
        assert usable_key("sk-real")
        assert not usable_key("")
        assert not usable_key("sk-example-123")


# ──────────────────────────────────────────────────────────────
#  HTTP variants
# ──────────────────────────────────────────────────────────────

def _mock_http(client, handler):
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
class TestHTTPVariants:
    async def test_openrouter_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": " Hello there. "}}]})

        client = OpenAICompatibleClient(
            GenerationProvider.OPENROUTER, "sk-or-test",
            extra_headers={"HTTP-Referer": "http://localhost:3000", "X-Title": "Voice Agent"},
        )
        _mock_http(client, handler)
        text = await client.complete("sys", [{"role": "user", "content": "hi"}],
                                     "openai/gpt-3.5-turbo", 80, 0.7)
        assert text == "Hello there."
        assert seen["url"] == "https://openrouter.ai/api/v1/chat/completions"
        assert seen["headers"]["authorization"] == "Bearer sk-or-test"
        assert seen["headers"]["x-title"] == "Voice Agent"
        assert seen["body"]["messages"][0] == {"role": "system", "content": "sys"}
        assert seen["body"]["max_tokens"] == 80

    async def test_http_429_is_rate_limited(self):
        client = OpenAICompatibleClient(GenerationProvider.GROQ, "gsk_test")
        _mock_http(client, lambda request: httpx.Response(429, json={"error": "slow down"}))
        with pytest.raises(GenerationRateLimited):
            await client.complete("sys", [], "llama3-8b-8192", 80, 0.7)

    async def test_http_500_is_generation_error(self):
        client = OpenAICompatibleClient(GenerationProvider.MISTRAL, "mistral-key")
        _mock_http(client, lambda request: httpx.Response(500, text="upstream down"))
        with pytest.raises(GenerationError) as exc:
            await client.complete("sys", [], "mistral-small-latest", 80, 0.7)
        assert not isinstance(exc.value, GenerationRateLimited)
        assert "500" in exc.value.cause

    async def test_missing_key_fails_without_request(self):
        client = OpenAICompatibleClient(GenerationProvider.GROQ, "")
        with pytest.raises(GenerationError):
            await client.complete("sys", [], "llama3-8b-8192", 80, 0.7)

    async def test_gemini_maps_roles(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "Namaste!"}]}}],
            })

        client = GeminiGenerationClient("AIza-test")
        _mock_http(client, handler)
        text = await client.complete(
            "sys",
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"},
             {"role": "user", "content": "bye"}],
            "gemini-pro", 80, 0.7,
        )
        assert text == "Namaste!"
        assert seen["url"].endswith("/models/gemini-pro:generateContent")
        assert [c["role"] for c in seen["body"]["contents"]] == ["user", "model", "user"]
        assert seen["body"]["systemInstruction"]["parts"][0]["text"] == "sys"

    async def test_malformed_response(self):
        client = OpenAICompatibleClient(GenerationProvider.GROQ, "gsk_test")
        _mock_http(client, lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(GenerationError) as exc:
            await client.complete("sys", [], "llama3-8b-8192", 80, 0.7)
        assert exc.value.cause == "malformed response"


# ──────────────────────────────────────────────────────────────
#  SDK variants
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSDKVariants:
    async def test_openai_missing_key(self):
        from voice.generation import OpenAIGenerationClient
        client = OpenAIGenerationClient("")
        with pytest.raises(GenerationError) as exc:
            await client.complete("sys", [], "gpt-3.5-turbo", 80, 0.7)
        assert "API key" in exc.value.cause

    async def test_openai_rate_limit_mapped(self):
        import openai
        from voice.generation import OpenAIGenerationClient

        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        response = httpx.Response(429, request=request)
        error = openai.RateLimitError("Rate limit reached", response=response, body=None)

        client = OpenAIGenerationClient("sk-test")
        sdk = client._get_client()
        with patch.object(sdk.chat.completions, "create", side_effect=error):
            with pytest.raises(GenerationRateLimited):
                await client.complete("sys", [], "gpt-3.5-turbo", 80, 0.7)
