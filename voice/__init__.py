"""
Voice Subsystem — turn-taking orchestration for live agent calls.

Modules:
- providers: Provider enums, route resolution and the admin catalogue
- transcription / generation / synthesis: External capability adapters
- prompts: System prompt and language instructions
- history: Bounded conversation window
- turn_controller: Per-session state machine with single-flight and echo gate
- session: Duplex connection lifecycle (import directly; depends on core.directory)
- protocol: WebSocket message models
"""
from voice.errors import (
    VoiceAgentError, NoSpeechDetected, TranscriptionError,
    GenerationError, GenerationRateLimited, SynthesisError, AgentNotFound,
)
from voice.providers import (
    GenerationProvider, TranscriptionProvider, SynthesisProvider, TelephonyProvider,
    GenerationRoute, PROVIDER_CATALOGUE,
    resolve_generation_route, resolve_transcription_provider,
    resolve_synthesis_provider, resolve_telephony_provider,
)
from voice.history import HistoryWindow, HistoryWindowCache
from voice.prompts import build_system_prompt, language_instruction
from voice.generation import GenerationAdapter, GenerationRequest
from voice.transcription import TranscriptionAdapter
from voice.synthesis import SynthesisAdapter, SynthesisResult
from voice.turn_controller import TurnController, TurnState, PlaybackGate

__all__ = [
    "VoiceAgentError", "NoSpeechDetected", "TranscriptionError",
    "GenerationError", "GenerationRateLimited", "SynthesisError", "AgentNotFound",
    "GenerationProvider", "TranscriptionProvider", "SynthesisProvider", "TelephonyProvider",
    "GenerationRoute", "PROVIDER_CATALOGUE",
    "resolve_generation_route", "resolve_transcription_provider",
    "resolve_synthesis_provider", "resolve_telephony_provider",
    "HistoryWindow", "HistoryWindowCache", "build_system_prompt", "language_instruction",
    "GenerationAdapter", "GenerationRequest",
    "TranscriptionAdapter", "SynthesisAdapter", "SynthesisResult",
    "TurnController", "TurnState", "PlaybackGate",
]
