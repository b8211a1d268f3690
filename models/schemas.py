"""
Core data models for the voice agent service.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class Speaker(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class AgentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CallStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


# ──────────────────────────────────────────────────────────────
#  Agent configuration — immutable snapshot read by sessions
# ──────────────────────────────────────────────────────────────

class _CamelModel(BaseModel):
    """Accepts both snake_case and the admin UI's camelCase keys."""
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class ProviderSelection(_CamelModel):
    llm: str = "openai"
    tts: str = "openai"
    asr: str = "deepgram"
    telephony: str = "twilio"


class AgentSettings(_CamelModel):
    max_call_duration: int = 300          # seconds
    silence_timeout: int = 30             # seconds
    interruptible: bool = True
    speech_speed: str = "1.0"
    latency_mode: str = "balanced"


class AgentConfig(_CamelModel):
    """
    A voice agent definition.

    Frozen: updates go through the directory, which stores a new
    instance. Sessions keep the snapshot they started with.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Unnamed Agent"
    type: str = "conversational"
    description: str = ""
    prompt: str = ""
    welcome_message: str = "Hello! How can I help you today?"
    voice: str = "alloy"
    language: str = "en"
    model: str = "gpt-3.5-turbo"
    providers: ProviderSelection = Field(default_factory=ProviderSelection)
    settings: AgentSettings = Field(default_factory=AgentSettings)
    status: AgentStatus = AgentStatus.ACTIVE
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def with_updates(self, changes: dict[str, Any]) -> "AgentConfig":
        """Return a new snapshot with the given fields replaced (id is kept)."""
        incoming = AgentConfig.model_validate(changes)
        updated = {
            name: getattr(incoming, name)
            for name in incoming.model_fields_set
            if name not in ("id", "created_at")
        }
        updated["updated_at"] = _utcnow()
        return self.model_copy(update=updated)


# ──────────────────────────────────────────────────────────────
#  Conversation content
# ──────────────────────────────────────────────────────────────

class Utterance(BaseModel):
    """One role-tagged contribution to a conversation."""
    speaker: Speaker
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_message(self) -> dict[str, str]:
        return {"role": self.speaker.value, "content": self.text}


class CallRecord(_CamelModel):
    """A finished session, kept for the call history view."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    agent_id: str
    agent_name: str = ""
    session_id: str = ""
    transcript: list[dict[str, Any]] = []
    duration: float = 0.0                 # seconds
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    status: CallStatus = CallStatus.COMPLETED
