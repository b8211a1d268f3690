"""
Error taxonomy for the voice pipeline.

None of these terminate a session: the turn controller turns each one
into a visible transcript + speak pair.
"""
from __future__ import annotations


class VoiceAgentError(Exception):
    """Base class for every recoverable pipeline failure."""


class NoSpeechDetected(VoiceAgentError):
    """The audio buffer held nothing worth transcribing."""


class TranscriptionError(VoiceAgentError):
    """The transcription capability itself failed (auth, HTTP, timeout)."""

    def __init__(self, provider: str, cause: str):
        super().__init__(f"{provider}: {cause}")
        self.provider = provider
        self.cause = cause


class GenerationError(VoiceAgentError):
    """A generation provider failed; carries a human-readable cause."""

    def __init__(self, provider: str, cause: str):
        super().__init__(f"{provider}: {cause}")
        self.provider = provider
        self.cause = cause


class GenerationRateLimited(GenerationError):
    """The provider answered with a rate-limit signal (HTTP 429)."""


class SynthesisError(VoiceAgentError):
    """Text-to-speech failed."""

    def __init__(self, provider: str, cause: str):
        super().__init__(f"{provider}: {cause}")
        self.provider = provider
        self.cause = cause


class AgentNotFound(VoiceAgentError):
    """Admin operation on an unknown agent id."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}")
        self.agent_id = agent_id
