"""Tests for the Transcription Adapter and the Deepgram variant."""
import asyncio

import httpx
import pytest

from voice.errors import TranscriptionError
from voice.providers import TranscriptionProvider
from voice.transcription import DeepgramTranscriber, TranscriptionAdapter

from tests.conftest import FakeTranscriber

SPEECH = b"\x01" * 4000


def _deepgram_payload(text: str) -> dict:
    return {"results": {"channels": [{"alternatives": [{"transcript": text, "confidence": 0.98}]}]}}


# ──────────────────────────────────────────────────────────────
#  Adapter
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestTranscriptionAdapter:
    async def test_short_buffer_returns_none_without_provider_call(self, transcriber, fake_transcriber):
        result = await transcriber.transcribe(b"\x00" * 500, TranscriptionProvider.DEEPGRAM, "en")
        assert result is None
        assert fake_transcriber.calls == []

    async def test_empty_and_missing_audio(self, transcriber):
        assert await transcriber.transcribe(b"", TranscriptionProvider.DEEPGRAM) is None
        assert await transcriber.transcribe(None, TranscriptionProvider.DEEPGRAM) is None

    async def test_text_returned_stripped(self, transcriber, fake_transcriber):
        fake_transcriber.text = "  hello there  "
        result = await transcriber.transcribe(SPEECH, TranscriptionProvider.DEEPGRAM, "hi")
        assert result == "hello there"
        assert fake_transcriber.calls == [(len(SPEECH), "hi")]

    async def test_blank_result_is_none(self, transcriber, fake_transcriber):
        fake_transcriber.text = "   "
        assert await transcriber.transcribe(SPEECH, TranscriptionProvider.DEEPGRAM) is None

    async def test_provider_failure_is_transcription_error(self, transcriber, fake_transcriber):
        fake_transcriber.error = RuntimeError("socket closed")
        with pytest.raises(TranscriptionError) as exc:
            await transcriber.transcribe(SPEECH, TranscriptionProvider.DEEPGRAM)
        assert exc.value.cause == "socket closed"

    async def test_timeout(self, settings):
        class Slow(FakeTranscriber):
            async def transcribe(self, audio, language):
                await asyncio.sleep(1.0)
                return "late"

        settings.transcription.timeout_s = 0.05
        adapter = TranscriptionAdapter(settings, transcribers={TranscriptionProvider.DEEPGRAM: Slow()})
        with pytest.raises(TranscriptionError) as exc:
            await adapter.transcribe(SPEECH, TranscriptionProvider.DEEPGRAM)
        assert "timed out" in exc.value.cause

    async def test_unconfigured_provider(self, transcriber):
        with pytest.raises(TranscriptionError):
            await transcriber.transcribe(SPEECH, TranscriptionProvider.WHISPER)


# ──────────────────────────────────────────────────────────────
#  Deepgram
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestDeepgramTranscriber:
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers["authorization"]
            seen["content_type"] = request.headers["content-type"]
            seen["size"] = len(request.content)
            return httpx.Response(200, json=_deepgram_payload("I need help"))

        dg = DeepgramTranscriber("dg-key", transport=httpx.MockTransport(handler))
        text = await dg.transcribe(SPEECH, "en")
        assert text == "I need help"
        assert seen["params"] == {"model": "nova-2", "smart_format": "true", "language": "en"}
        assert seen["auth"] == "Token dg-key"
        assert seen["content_type"] == "audio/wav"
        assert seen["size"] == len(SPEECH)
        await dg.close()

    async def test_missing_key(self):
        dg = DeepgramTranscriber("")
        with pytest.raises(TranscriptionError) as exc:
            await dg.transcribe(SPEECH, "en")
        assert "API key" in exc.value.cause

    async def test_http_error(self):
        dg = DeepgramTranscriber("dg-key", transport=httpx.MockTransport(
            lambda request: httpx.Response(401, json={"err_msg": "Invalid credentials"}),
        ))
        with pytest.raises(TranscriptionError) as exc:
            await dg.transcribe(SPEECH, "en")
        assert exc.value.cause == "HTTP 401"

    async def test_connect_error_retried_once(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=_deepgram_payload("second try"))

        dg = DeepgramTranscriber("dg-key", transport=httpx.MockTransport(handler))
        assert await dg.transcribe(SPEECH, "en") == "second try"
        assert len(attempts) == 2

    async def test_connect_error_gives_up_after_two_attempts(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            raise httpx.ConnectError("connection refused", request=request)

        dg = DeepgramTranscriber("dg-key", transport=httpx.MockTransport(handler))
        with pytest.raises(TranscriptionError):
            await dg.transcribe(SPEECH, "en")
        assert len(attempts) == 2

    async def test_malformed_body(self):
        dg = DeepgramTranscriber("dg-key", transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"results": {}}),
        ))
        with pytest.raises(TranscriptionError) as exc:
            await dg.transcribe(SPEECH, "en")
        assert exc.value.cause == "malformed response"
