"""Shared test fixtures for the voice agent service."""
import asyncio
from typing import Any, Optional

import pytest

from config.settings import Settings
from core.directory import AgentDirectory
from database.store_memory import InMemoryAgentStore
from models.schemas import AgentConfig, ProviderSelection
from voice.errors import GenerationError
from voice.generation import GenerationAdapter, GenerationClient
from voice.providers import GenerationProvider, TranscriptionProvider
from voice.transcription import Transcriber, TranscriptionAdapter


# ──────────────────────────────────────────────────────────────
#  Fakes
# ──────────────────────────────────────────────────────────────

class FakeGenerationClient(GenerationClient):
    """Scripted provider: returns `reply`, or raises `error`, optionally after a gate."""

    def __init__(self, provider: GenerationProvider, reply: str = "Sure, I can help with that.",
                 error: Optional[Exception] = None, delay_s: float = 0.0):
        self.provider = provider
        self.reply = reply
        self.error = error
        self.delay_s = delay_s
        self.release: Optional[asyncio.Event] = None
        self.calls: list[dict[str, Any]] = []

    async def complete(self, system_prompt, messages, model, max_tokens, temperature) -> str:
        self.calls.append({
            "system_prompt": system_prompt,
            "messages": messages,
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.release is not None:
            await self.release.wait()
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeTranscriber(Transcriber):
    provider = TranscriptionProvider.DEEPGRAM

    def __init__(self, text: Optional[str] = "I need help with my account", error: Exception = None):
        self.text = text
        self.error = error
        self.calls: list[tuple[int, str]] = []

    async def transcribe(self, audio: bytes, language: str) -> Optional[str]:
        self.calls.append((len(audio), language))
        if self.error is not None:
            raise self.error
        return self.text


class Outbox:
    """Collects outbound frames in order."""

    def __init__(self):
        self.messages: list[dict[str, Any]] = []

    async def send(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["type"] == kind]

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]


# ──────────────────────────────────────────────────────────────
#  Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def settings() -> Settings:
    s = Settings()
    s.keys.openai = "sk-test-openai"
    s.keys.openrouter = "sk-or-test"
    s.keys.deepgram = "dg-test-key-0123456789abcdef"
    s.session.welcome_delay_s = 0.0
    s.session.playback_timeout_s = 5.0
    return s


@pytest.fixture
def support_agent() -> AgentConfig:
    return AgentConfig(
        id="support-bot",
        name="Support Bot",
        description="Handles account and billing questions.",
        prompt="Be concise and friendly.",
        welcome_message="Hi, this is Support Bot. How can I help?",
        voice="nova",
        language="en",
        model="gpt-3.5-turbo",
        providers=ProviderSelection(llm="openai", tts="openai", asr="deepgram"),
    )


@pytest.fixture
def store() -> InMemoryAgentStore:
    return InMemoryAgentStore()


@pytest.fixture
def directory(store) -> AgentDirectory:
    return AgentDirectory(store)


@pytest.fixture
def primary_client() -> FakeGenerationClient:
    return FakeGenerationClient(GenerationProvider.OPENAI)


@pytest.fixture
def aggregator_client() -> FakeGenerationClient:
    return FakeGenerationClient(GenerationProvider.OPENROUTER, reply="Fallback reply from aggregator.")


@pytest.fixture
def generator(settings, primary_client, aggregator_client) -> GenerationAdapter:
    return GenerationAdapter(settings, clients={
        GenerationProvider.OPENAI: primary_client,
        GenerationProvider.OPENROUTER: aggregator_client,
    })


@pytest.fixture
def fake_transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def transcriber(settings, fake_transcriber) -> TranscriptionAdapter:
    return TranscriptionAdapter(settings, transcribers={
        TranscriptionProvider.DEEPGRAM: fake_transcriber,
    })


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def rate_limited():
    from voice.errors import GenerationRateLimited
    return GenerationRateLimited("openai", "rate limit exceeded")


@pytest.fixture
def provider_down():
    return GenerationError("openrouter", "HTTP 503")
