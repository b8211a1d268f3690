"""
Duplex protocol — JSON messages exchanged over the /webrtc WebSocket.

Inbound (client → server):
  {"type": "audio", "data": [0, 12, 255, ...] | "<base64>"}
  {"type": "text", "text": "..."}
  {"type": "speech_ended"}

Outbound (server → client):
  {"type": "transcript", "speaker": "user" | "ai", "text": "..."}
  {"type": "speak", "text": "...", "voice": "...", "language": "...", "provider": "..."}
  {"type": "ready"}
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from models.schemas import Speaker


class ProtocolError(ValueError):
    """Inbound frame that is not valid JSON or not a known message."""


# ──────────────────────────────────────────────────────────────
#  Inbound
# ──────────────────────────────────────────────────────────────

class AudioMessage(BaseModel):
    type: Literal["audio"]
    data: bytes = b""

    @field_validator("data", mode="before")
    @classmethod
    def _decode(cls, value: Any) -> bytes:
        if value is None:
            return b""
        if isinstance(value, list):
            # Byte array serialized by the browser
            return bytes(value)
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError("audio data is not valid base64") from e
        return value


class TextMessage(BaseModel):
    type: Literal["text"]
    text: str


class SpeechEndedMessage(BaseModel):
    type: Literal["speech_ended"]


InboundMessage = Annotated[
    Union[AudioMessage, TextMessage, SpeechEndedMessage],
    Field(discriminator="type"),
]

_inbound = TypeAdapter(InboundMessage)


def parse_inbound(raw: str | bytes) -> Union[AudioMessage, TextMessage, SpeechEndedMessage]:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"invalid JSON: {e}") from e
    try:
        return _inbound.validate_python(payload)
    except ValidationError as e:
        raise ProtocolError(str(e)) from e


# ──────────────────────────────────────────────────────────────
#  Outbound
# ──────────────────────────────────────────────────────────────

def speaker_label(speaker: Speaker) -> str:
    return "ai" if speaker == Speaker.ASSISTANT else "user"


def transcript_message(speaker: Speaker, text: str) -> dict[str, Any]:
    return {"type": "transcript", "speaker": speaker_label(speaker), "text": text}


def speak_message(text: str, voice: str, language: str, provider: str) -> dict[str, Any]:
    return {
        "type": "speak",
        "text": text,
        "voice": voice,
        "language": language,
        "provider": provider,
    }


def ready_message() -> dict[str, Any]:
    return {"type": "ready"}
