"""
Generation Adapter — one reply per turn from a closed set of LLM providers.

Every provider variant implements the same contract:

    complete(system_prompt, messages, model, max_tokens, temperature) -> str

and raises GenerationRateLimited for a provider rate-limit signal or
GenerationError for anything else. The adapter adds the response budget
(max_tokens, temperature), the per-call timeout, and the fallback ladder:

  primary ──429──▶ OpenRouter (fallback_model) ──fail──▶ GenerationError
     │                    │
     └──ok──▶ reply       └──ok──▶ reply

The ladder is taken at most once per call, only when an OpenRouter key is
configured and the primary provider is not OpenRouter itself.

SDKs:  openai, anthropic
HTTP:  httpx for Gemini, Mistral, Groq, OpenRouter (OpenAI-compatible)
"""
from __future__ import annotations

import asyncio
import structlog
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from config.settings import Settings, get_settings
from models.schemas import Utterance
from voice.errors import GenerationError, GenerationRateLimited
from voice.history import HistoryWindow
from voice.providers import GenerationProvider, GenerationRoute

logger = structlog.get_logger()


def usable_key(key: str) -> bool:
    """Blank keys and the sample placeholders from .env.example don't count."""
    return bool(key) and "example" not in key.lower()


# ══════════════════════════════════════════════════════════════
#  REQUEST
# ══════════════════════════════════════════════════════════════

@dataclass
class GenerationRequest:
    """System prompt + bounded history + the new user utterance."""
    system_prompt: str
    utterance: str
    history: list[Utterance] = field(default_factory=list)

    @classmethod
    def from_window(cls, system_prompt: str, window: HistoryWindow, limit: int) -> "GenerationRequest":
        """
        Build a request from a window whose newest entry is the user
        utterance being answered. At most `limit` entries are used in total,
        the utterance included.
        """
        entries = window.recent(max(limit, 1))
        if not entries:
            raise ValueError("history window is empty")
        return cls(
            system_prompt=system_prompt,
            utterance=entries[-1].text,
            history=entries[:-1],
        )

    def messages(self) -> list[dict[str, str]]:
        """Conversation messages without the system prompt."""
        msgs = [u.to_message() for u in self.history]
        msgs.append({"role": "user", "content": self.utterance})
        return msgs


# ══════════════════════════════════════════════════════════════
#  PROVIDER VARIANTS
# ══════════════════════════════════════════════════════════════

class GenerationClient(ABC):
    """One generation provider."""

    provider: GenerationProvider

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        ...

    async def close(self) -> None:
        pass


class OpenAIGenerationClient(GenerationClient):
    provider = GenerationProvider.OPENAI

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
            logger.info("llm_client_initialized", provider="openai")
        return self._client

    async def complete(self, system_prompt, messages, model, max_tokens, temperature) -> str:
        import openai

        if not usable_key(self.api_key):
            raise GenerationError(self.provider.value, "Valid OpenAI API key required")
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "system", "content": system_prompt}] + messages,
            )
        except openai.RateLimitError as e:
            raise GenerationRateLimited(self.provider.value, f"rate limit exceeded: {e}") from e
        except openai.APIError as e:
            raise GenerationError(self.provider.value, str(e)) from e
        if not response.choices or not response.choices[0].message.content:
            raise GenerationError(self.provider.value, "No response from OpenAI")
        return response.choices[0].message.content.strip()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class AnthropicGenerationClient(GenerationClient):
    provider = GenerationProvider.ANTHROPIC

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, max_retries=0)
            logger.info("llm_client_initialized", provider="anthropic")
        return self._client

    async def complete(self, system_prompt, messages, model, max_tokens, temperature) -> str:
        import anthropic

        if not usable_key(self.api_key):
            raise GenerationError(self.provider.value, "Valid Anthropic API key required")
        client = self._get_client()
        try:
            # Anthropic: system prompt is a separate parameter
            response = await client.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=messages,
            )
        except anthropic.RateLimitError as e:
            raise GenerationRateLimited(self.provider.value, f"rate limit exceeded: {e}") from e
        except anthropic.APIError as e:
            raise GenerationError(self.provider.value, str(e)) from e
        if not response.content:
            raise GenerationError(self.provider.value, "No response from Anthropic")
        return response.content[0].text.strip()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class _HTTPGenerationClient(GenerationClient):
    """Shared httpx plumbing for providers without an SDK dependency."""

    def __init__(self, api_key: str, timeout_s: float = 15.0):
        self.api_key = api_key
        self.timeout_s = timeout_s
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s, connect=5.0),
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str] = None) -> dict[str, Any]:
        if not usable_key(self.api_key):
            raise GenerationError(self.provider.value, f"Valid {self.provider.value} API key required")
        client = await self._get_client()
        try:
            resp = await client.post(url, json=payload, headers=headers or {})
        except httpx.HTTPError as e:
            raise GenerationError(self.provider.value, f"request failed: {e}") from e
        if resp.status_code == 429:
            raise GenerationRateLimited(self.provider.value, "rate limit exceeded")
        if resp.status_code >= 400:
            logger.error("llm_api_error", provider=self.provider.value,
                         status=resp.status_code, body=resp.text[:500])
            raise GenerationError(self.provider.value, f"HTTP {resp.status_code}")
        return resp.json()

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


class OpenAICompatibleClient(_HTTPGenerationClient):
    """Mistral, Groq and OpenRouter all speak the chat/completions dialect."""

    ENDPOINTS = {
        GenerationProvider.MISTRAL: "https://api.mistral.ai/v1/chat/completions",
        GenerationProvider.GROQ: "https://api.groq.com/openai/v1/chat/completions",
        GenerationProvider.OPENROUTER: "https://openrouter.ai/api/v1/chat/completions",
    }

    def __init__(self, provider: GenerationProvider, api_key: str,
                 timeout_s: float = 15.0, extra_headers: dict[str, str] = None):
        super().__init__(api_key, timeout_s)
        self.provider = provider
        self.url = self.ENDPOINTS[provider]
        self.extra_headers = extra_headers or {}

    async def complete(self, system_prompt, messages, model, max_tokens, temperature) -> str:
        data = await self._post(
            self.url,
            {
                "model": model,
                "messages": [{"role": "system", "content": system_prompt}] + messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
            headers={"Authorization": f"Bearer {self.api_key}", **self.extra_headers},
        )
        try:
            return data["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise GenerationError(self.provider.value, "malformed response") from e


class GeminiGenerationClient(_HTTPGenerationClient):
    provider = GenerationProvider.GEMINI

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    async def complete(self, system_prompt, messages, model, max_tokens, temperature) -> str:
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in messages
        ]
        data = await self._post(
            f"{self.BASE_URL}/{model}:generateContent",
            {
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": contents,
                "generationConfig": {"maxOutputTokens": max_tokens, "temperature": temperature},
            },
            headers={"x-goog-api-key": self.api_key},
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise GenerationError(self.provider.value, "malformed response") from e


def build_clients(settings: Settings) -> dict[GenerationProvider, GenerationClient]:
    keys = settings.keys
    timeout = settings.llm.timeout_s
    return {
        GenerationProvider.OPENAI: OpenAIGenerationClient(keys.openai),
        GenerationProvider.ANTHROPIC: AnthropicGenerationClient(keys.anthropic),
        GenerationProvider.GEMINI: GeminiGenerationClient(keys.gemini, timeout),
        GenerationProvider.MISTRAL: OpenAICompatibleClient(GenerationProvider.MISTRAL, keys.mistral, timeout),
        GenerationProvider.GROQ: OpenAICompatibleClient(GenerationProvider.GROQ, keys.groq, timeout),
        GenerationProvider.OPENROUTER: OpenAICompatibleClient(
            GenerationProvider.OPENROUTER, keys.openrouter, timeout,
            extra_headers={
                "HTTP-Referer": settings.llm.referer,
                "X-Title": settings.llm.app_title,
            },
        ),
    }


# ══════════════════════════════════════════════════════════════
#  ADAPTER
# ══════════════════════════════════════════════════════════════

class GenerationAdapter:
    """
    Budgeted, timed generation with a one-step rate-limit fallback.

    Clients are built from settings unless injected (tests pass fakes).
    """

    def __init__(
        self,
        settings: Settings = None,
        clients: dict[GenerationProvider, GenerationClient] = None,
    ):
        self._settings = settings or get_settings()
        self._clients = clients if clients is not None else build_clients(self._settings)

    @property
    def fallback_available(self) -> bool:
        return usable_key(self._settings.keys.openrouter)

    async def generate(self, request: GenerationRequest, route: GenerationRoute) -> str:
        messages = request.messages()
        try:
            return await self._call(route, request.system_prompt, messages)
        except GenerationRateLimited as primary_error:
            if not self._should_fall_back(route):
                raise
            fallback = GenerationRoute(
                GenerationProvider(self._settings.llm.fallback_provider),
                self._settings.llm.fallback_model,
            )
            logger.warning("llm_rate_limited_falling_back",
                           provider=route.provider.value, fallback=fallback.to_dict())
            try:
                return await self._call(fallback, request.system_prompt, messages)
            except GenerationError as fallback_error:
                logger.error("llm_fallback_failed", error=str(fallback_error))
                raise GenerationError(
                    route.provider.value,
                    f"{primary_error.cause}; fallback {fallback_error.provider}: {fallback_error.cause}",
                ) from fallback_error

    def _should_fall_back(self, route: GenerationRoute) -> bool:
        return (
            self.fallback_available
            and route.provider != GenerationProvider(self._settings.llm.fallback_provider)
        )

    async def _call(self, route: GenerationRoute, system_prompt: str, messages: list[dict[str, str]]) -> str:
        client = self._clients.get(route.provider)
        if client is None:
            raise GenerationError(route.provider.value, "provider not configured")
        llm = self._settings.llm
        try:
            text = await asyncio.wait_for(
                client.complete(
                    system_prompt=system_prompt,
                    messages=messages,
                    model=route.model,
                    max_tokens=llm.max_tokens,
                    temperature=llm.temperature,
                ),
                timeout=llm.timeout_s,
            )
        except asyncio.TimeoutError as e:
            logger.error("llm_timeout", provider=route.provider.value, timeout_s=llm.timeout_s)
            raise GenerationError(route.provider.value, f"timed out after {llm.timeout_s}s") from e
        except GenerationError:
            raise
        except Exception as e:
            logger.error("llm_generation_failed", provider=route.provider.value, error=str(e))
            raise GenerationError(route.provider.value, str(e)) from e
        logger.debug("llm_generation_completed", provider=route.provider.value,
                     model=route.model, chars=len(text))
        return text

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
