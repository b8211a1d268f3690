"""
Voice Providers — the closed set of external capabilities an agent can select.

Each capability (generation, transcription, synthesis, telephony) is an
enum. Agent configs store plain strings; they are resolved to enum members
when a session is opened, and unknown names resolve to a documented
default there rather than at call time.

Generation:    OpenAI, Anthropic, Gemini, Mistral, Groq, OpenRouter (aggregator)
Transcription: Deepgram, Whisper
Synthesis:     OpenAI, Sarvam, ElevenLabs
Telephony:     Twilio, Plivo, Exotel (selection only; signalling is external)
"""
from __future__ import annotations

import structlog
from enum import Enum
from typing import Any
from dataclasses import dataclass

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════

class GenerationProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    MISTRAL = "mistral"
    GROQ = "groq"
    OPENROUTER = "openrouter"    # aggregator, also the rate-limit fallback


class TranscriptionProvider(str, Enum):
    DEEPGRAM = "deepgram"
    WHISPER = "whisper"          # OpenAI API


class SynthesisProvider(str, Enum):
    OPENAI = "openai"
    SARVAM = "sarvam"            # Hindi and Indian English voices
    ELEVENLABS = "elevenlabs"


class TelephonyProvider(str, Enum):
    TWILIO = "twilio"
    PLIVO = "plivo"
    EXOTEL = "exotel"


# ══════════════════════════════════════════════════════════════
#  DEFAULTS
# ══════════════════════════════════════════════════════════════

DEFAULT_GENERATION_PROVIDER = GenerationProvider.OPENAI
DEFAULT_GENERATION_MODEL = "gpt-3.5-turbo"
DEFAULT_TRANSCRIPTION_PROVIDER = TranscriptionProvider.DEEPGRAM
DEFAULT_SYNTHESIS_PROVIDER = SynthesisProvider.OPENAI

# Default model per generation provider, used when the agent's model
# belongs to a different provider family.
DEFAULT_MODELS: dict[GenerationProvider, str] = {
    GenerationProvider.OPENAI: "gpt-3.5-turbo",
    GenerationProvider.ANTHROPIC: "claude-3-haiku-20240307",
    GenerationProvider.GEMINI: "gemini-pro",
    GenerationProvider.MISTRAL: "mistral-small-latest",
    GenerationProvider.GROQ: "llama3-8b-8192",
    GenerationProvider.OPENROUTER: "openai/gpt-3.5-turbo",
}

# Prefixes that identify which provider a model name belongs to.
_MODEL_FAMILIES: dict[GenerationProvider, tuple[str, ...]] = {
    GenerationProvider.OPENAI: ("gpt-", "o1", "o3", "o4"),
    GenerationProvider.ANTHROPIC: ("claude-",),
    GenerationProvider.GEMINI: ("gemini-",),
    GenerationProvider.MISTRAL: ("mistral-", "open-mistral", "open-mixtral"),
    GenerationProvider.GROQ: ("llama", "mixtral", "gemma"),
}


# ══════════════════════════════════════════════════════════════
#  RESOLUTION
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GenerationRoute:
    """A resolved provider/model pair for one session."""
    provider: GenerationProvider
    model: str

    def to_dict(self) -> dict[str, str]:
        return {"provider": self.provider.value, "model": self.model}


def _coerce(enum_cls: type[Enum], name: str, default: Enum, capability: str) -> Any:
    try:
        return enum_cls((name or "").lower())
    except ValueError:
        logger.warning("unknown_provider_using_default",
                       capability=capability, requested=name, default=default.value)
        return default


def resolve_generation_route(provider: str, model: str = "") -> GenerationRoute:
    """
    Resolve an agent's (provider, model) strings to a route.

    Unknown providers fall back to the default pair. A model that clearly
    belongs to another provider family is replaced by that provider's
    default; OpenRouter models are namespaced ("openai/gpt-3.5-turbo").
    """
    try:
        resolved = GenerationProvider((provider or "").lower())
    except ValueError:
        logger.warning("unknown_provider_using_default",
                       capability="generation", requested=provider,
                       default=DEFAULT_GENERATION_PROVIDER.value)
        return GenerationRoute(DEFAULT_GENERATION_PROVIDER, DEFAULT_GENERATION_MODEL)

    model = (model or "").strip()
    if resolved == GenerationProvider.OPENROUTER:
        if not model:
            model = DEFAULT_MODELS[resolved]
        elif "/" not in model:
            model = f"openai/{model}" if model.startswith("gpt-") else model
        return GenerationRoute(resolved, model)

    if not model or _belongs_to_other_family(resolved, model):
        return GenerationRoute(resolved, DEFAULT_MODELS[resolved])
    return GenerationRoute(resolved, model)


def _belongs_to_other_family(provider: GenerationProvider, model: str) -> bool:
    lower = model.lower()
    for other, prefixes in _MODEL_FAMILIES.items():
        if other == provider:
            continue
        if lower.startswith(prefixes):
            # Groq hosts open models that overlap with Mistral's names
            if provider == GenerationProvider.GROQ and other == GenerationProvider.MISTRAL:
                continue
            return True
    return False


def resolve_transcription_provider(name: str) -> TranscriptionProvider:
    return _coerce(TranscriptionProvider, name, DEFAULT_TRANSCRIPTION_PROVIDER, "transcription")


def resolve_synthesis_provider(name: str) -> SynthesisProvider:
    return _coerce(SynthesisProvider, name, DEFAULT_SYNTHESIS_PROVIDER, "synthesis")


def resolve_telephony_provider(name: str) -> TelephonyProvider:
    return _coerce(TelephonyProvider, name, TelephonyProvider.TWILIO, "telephony")


# ══════════════════════════════════════════════════════════════
#  CATALOGUE (served to the admin UI)
# ══════════════════════════════════════════════════════════════

PROVIDER_CATALOGUE: dict[str, Any] = {
    "llm": [p.value for p in GenerationProvider],
    "models": {
        "openai": ["gpt-4", "gpt-4-turbo", "gpt-3.5-turbo"],
        "anthropic": ["claude-3-opus-20240229", "claude-3-sonnet-20240229", "claude-3-haiku-20240307"],
        "gemini": ["gemini-pro"],
        "mistral": ["mistral-large-latest", "mistral-medium-latest", "mistral-small-latest"],
        "groq": ["llama3-70b-8192", "llama3-8b-8192", "mixtral-8x7b-32768"],
        "openrouter": ["openai/gpt-3.5-turbo", "openai/gpt-4", "anthropic/claude-3-haiku"],
    },
    "tts": [p.value for p in SynthesisProvider],
    "asr": [p.value for p in TranscriptionProvider],
    "telephony": [p.value for p in TelephonyProvider],
    "voices": {
        "openai": ["alloy", "echo", "fable", "onyx", "nova", "shimmer"],
        "sarvam": ["meera", "pavithra", "maitreyi", "arvind", "amol", "amartya"],
        "elevenlabs": ["Rachel", "Domi", "Bella", "Antoni", "Elli", "Josh"],
    },
    "languages": [
        {"code": "en", "name": "English"},
        {"code": "en-IN", "name": "English (India)"},
        {"code": "hi", "name": "Hindi"},
        {"code": "es", "name": "Spanish"},
        {"code": "fr", "name": "French"},
        {"code": "de", "name": "German"},
    ],
}
