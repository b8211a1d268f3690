"""
Synthesis Adapter — text to audio for voice previews.

Not part of the realtime turn: the live session only emits a speak
directive and the client renders audio itself.

Providers:
  - OpenAI      tts-1, mp3, input capped at 200 chars
  - Sarvam      bulbul:v1, base64 WAV, input capped at 500 chars
  - ElevenLabs  eleven_monolingual_v1, mp3, input capped at 200 chars
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import structlog
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from config.settings import Settings, get_settings
from voice.errors import SynthesisError
from voice.providers import SynthesisProvider

logger = structlog.get_logger()


@dataclass
class SynthesisResult:
    audio: bytes
    media_type: str


class Synthesizer(ABC):
    provider: SynthesisProvider
    max_chars: int = 200

    @abstractmethod
    async def synthesize(self, text: str, voice: str, language: str) -> SynthesisResult:
        ...

    async def close(self) -> None:
        pass


class OpenAISynthesizer(Synthesizer):
    provider = SynthesisProvider.OPENAI

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def synthesize(self, text: str, voice: str, language: str) -> SynthesisResult:
        import openai

        if not self.api_key:
            raise SynthesisError(self.provider.value, "OpenAI API key required for text-to-speech")
        try:
            response = await self._get_client().audio.speech.create(
                model="tts-1",
                input=text[: self.max_chars],
                voice=voice or "alloy",
                response_format="mp3",
            )
        except openai.APIError as e:
            raise SynthesisError(self.provider.value, str(e)) from e
        return SynthesisResult(audio=response.content, media_type="audio/mpeg")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class _HTTPSynthesizer(Synthesizer):

    def __init__(self, api_key: str, timeout_s: float = 15.0, transport: httpx.AsyncBaseTransport = None):
        self.api_key = api_key
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s, connect=5.0),
                transport=self._transport,
            )
        return self._client

    async def _post(self, url: str, payload: dict, headers: dict[str, str]) -> httpx.Response:
        if not self.api_key:
            raise SynthesisError(self.provider.value, f"{self.provider.value} API key required")
        client = await self._get_client()
        try:
            resp = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise SynthesisError(self.provider.value, f"request failed: {e}") from e
        if resp.status_code >= 400:
            logger.error("tts_api_error", provider=self.provider.value,
                         status=resp.status_code, body=resp.text[:500])
            raise SynthesisError(self.provider.value, f"HTTP {resp.status_code}")
        return resp

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


class SarvamSynthesizer(_HTTPSynthesizer):
    provider = SynthesisProvider.SARVAM
    max_chars = 500

    URL = "https://api.sarvam.ai/text-to-speech"

    async def synthesize(self, text: str, voice: str, language: str) -> SynthesisResult:
        resp = await self._post(
            self.URL,
            {
                "inputs": [text[: self.max_chars]],
                "target_language_code": "hi-IN" if language.lower().startswith("hi") else "en-IN",
                "speaker": voice or "meera",
                "pitch": 0,
                "pace": 1.0,
                "loudness": 1.0,
                "speech_sample_rate": 8000,
                "enable_preprocessing": True,
                "model": "bulbul:v1",
            },
            headers={"api-subscription-key": self.api_key},
        )
        audios = resp.json().get("audios") or []
        if not audios:
            raise SynthesisError(self.provider.value, "No audio data received from Sarvam")
        try:
            audio = base64.b64decode(audios[0])
        except (binascii.Error, ValueError) as e:
            raise SynthesisError(self.provider.value, "invalid audio payload") from e
        return SynthesisResult(audio=audio, media_type="audio/wav")


class ElevenLabsSynthesizer(_HTTPSynthesizer):
    provider = SynthesisProvider.ELEVENLABS

    URL = "https://api.elevenlabs.io/v1/text-to-speech"

    # Premade voice names -> voice ids
    VOICE_IDS = {
        "rachel": "21m00Tcm4TlvDq8ikWAM",
        "domi": "AZnzlk1XvdvUeBnXmlld",
        "bella": "EXAVITQu4vr4xnSDxMaL",
        "antoni": "ErXwobaYiN019PkySvjV",
        "elli": "MF3mGyEYCl7XYWbV9V6O",
        "josh": "TxGEqnHWrfWFTfGW9XjX",
    }

    async def synthesize(self, text: str, voice: str, language: str) -> SynthesisResult:
        voice_id = self.VOICE_IDS.get((voice or "rachel").lower(), voice)
        resp = await self._post(
            f"{self.URL}/{voice_id}",
            {"text": text[: self.max_chars], "model_id": "eleven_monolingual_v1"},
            headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
        )
        return SynthesisResult(audio=resp.content, media_type="audio/mpeg")


class SynthesisAdapter:

    def __init__(
        self,
        settings: Settings = None,
        synthesizers: dict[SynthesisProvider, Synthesizer] = None,
    ):
        self._settings = settings or get_settings()
        keys = self._settings.keys
        timeout = self._settings.synthesis.timeout_s
        self._synthesizers = synthesizers if synthesizers is not None else {
            SynthesisProvider.OPENAI: OpenAISynthesizer(keys.openai),
            SynthesisProvider.SARVAM: SarvamSynthesizer(keys.sarvam, timeout),
            SynthesisProvider.ELEVENLABS: ElevenLabsSynthesizer(keys.elevenlabs, timeout),
        }

    async def synthesize(
        self, text: str, voice: str, provider: SynthesisProvider, language: str = "en",
    ) -> SynthesisResult:
        synthesizer = self._synthesizers.get(provider)
        if synthesizer is None:
            raise SynthesisError(provider.value, "provider not configured")
        timeout = self._settings.synthesis.timeout_s
        try:
            result = await asyncio.wait_for(
                synthesizer.synthesize(text, voice, language), timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise SynthesisError(provider.value, f"timed out after {timeout}s") from e
        logger.info("tts_synthesized", provider=provider.value, voice=voice, bytes=len(result.audio))
        return result

    async def close(self) -> None:
        for synthesizer in self._synthesizers.values():
            await synthesizer.close()
