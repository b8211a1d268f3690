"""
Transcription Adapter — caller audio to text.

Outcomes are kept distinct:
  - str                 usable speech
  - None                nothing worth transcribing (short buffer, empty result)
  - TranscriptionError  the capability itself failed (missing key, HTTP, timeout)

Providers:
  - Deepgram (httpx, nova-2 with smart formatting)
  - Whisper  (openai SDK, whisper-1)
"""
from __future__ import annotations

import asyncio
import structlog
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import Settings, get_settings
from voice.errors import TranscriptionError
from voice.providers import TranscriptionProvider

logger = structlog.get_logger()


class Transcriber(ABC):
    provider: TranscriptionProvider

    @abstractmethod
    async def transcribe(self, audio: bytes, language: str) -> Optional[str]:
        ...

    async def close(self) -> None:
        pass


class DeepgramTranscriber(Transcriber):
    provider = TranscriptionProvider.DEEPGRAM

    URL = "https://api.deepgram.com/v1/listen"

    def __init__(self, api_key: str, model: str = "nova-2", content_type: str = "audio/wav",
                 transport: httpx.AsyncBaseTransport = None):
        self.api_key = api_key
        self.model = model
        self.content_type = content_type
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(10.0, connect=5.0),
                transport=self._transport,
            )
        return self._client

    # Connection failures only; timeouts and HTTP errors are not retried
    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=0.1, max=1),
        reraise=True,
    )
    async def _request(self, audio: bytes, language: str) -> httpx.Response:
        client = await self._get_client()
        return await client.post(
            self.URL,
            params={"model": self.model, "smart_format": "true", "language": language},
            headers={
                "Authorization": f"Token {self.api_key}",
                "Content-Type": self.content_type,
            },
            content=audio,
        )

    async def transcribe(self, audio: bytes, language: str) -> Optional[str]:
        if not self.api_key:
            raise TranscriptionError(self.provider.value, "API key not configured")
        try:
            resp = await self._request(audio, language)
        except httpx.HTTPError as e:
            raise TranscriptionError(self.provider.value, f"request failed: {e}") from e
        if resp.status_code >= 400:
            logger.error("deepgram_api_error", status=resp.status_code, body=resp.text[:500])
            raise TranscriptionError(self.provider.value, f"HTTP {resp.status_code}")
        try:
            data = resp.json()
            return data["results"]["channels"][0]["alternatives"][0].get("transcript")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TranscriptionError(self.provider.value, "malformed response") from e

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


class WhisperTranscriber(Transcriber):
    provider = TranscriptionProvider.WHISPER

    def __init__(self, api_key: str, model: str = "whisper-1"):
        self.api_key = api_key
        self.model = model
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=1)
        return self._client

    async def transcribe(self, audio: bytes, language: str) -> Optional[str]:
        import openai

        if not self.api_key:
            raise TranscriptionError(self.provider.value, "API key not configured")
        try:
            result = await self._get_client().audio.transcriptions.create(
                model=self.model,
                file=("audio.wav", audio, "audio/wav"),
                # Whisper takes ISO-639-1 only
                language=(language or "en").split("-")[0].lower(),
            )
        except openai.APIError as e:
            raise TranscriptionError(self.provider.value, str(e)) from e
        return result.text

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class TranscriptionAdapter:
    """Minimum-size gate, per-call timeout and error normalization."""

    def __init__(
        self,
        settings: Settings = None,
        transcribers: dict[TranscriptionProvider, Transcriber] = None,
    ):
        self._settings = settings or get_settings()
        cfg = self._settings.transcription
        self._transcribers = transcribers if transcribers is not None else {
            TranscriptionProvider.DEEPGRAM: DeepgramTranscriber(
                self._settings.keys.deepgram, cfg.deepgram_model, cfg.content_type,
            ),
            TranscriptionProvider.WHISPER: WhisperTranscriber(self._settings.keys.openai),
        }

    async def transcribe(
        self,
        audio: Optional[bytes],
        provider: TranscriptionProvider,
        language: str = "en",
    ) -> Optional[str]:
        cfg = self._settings.transcription
        if not audio or len(audio) < cfg.min_audio_bytes:
            logger.debug("audio_below_minimum", size=len(audio or b""), minimum=cfg.min_audio_bytes)
            return None

        transcriber = self._transcribers.get(provider)
        if transcriber is None:
            raise TranscriptionError(provider.value, "provider not configured")

        try:
            text = await asyncio.wait_for(
                transcriber.transcribe(audio, language), timeout=cfg.timeout_s,
            )
        except asyncio.TimeoutError as e:
            logger.error("transcription_timeout", provider=provider.value, timeout_s=cfg.timeout_s)
            raise TranscriptionError(provider.value, f"timed out after {cfg.timeout_s}s") from e
        except TranscriptionError:
            raise
        except Exception as e:
            logger.error("transcription_failed", provider=provider.value, error=str(e))
            raise TranscriptionError(provider.value, str(e)) from e

        text = (text or "").strip()
        return text or None

    async def close(self) -> None:
        for transcriber in self._transcribers.values():
            await transcriber.close()
