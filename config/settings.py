"""
Configuration loader for the voice agent service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class LLMConfig:
    default_provider: str = "openai"
    default_model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    max_tokens: int = 80                  # phone-call length replies
    timeout_s: float = 15.0
    fallback_provider: str = "openrouter"
    fallback_model: str = "openai/gpt-3.5-turbo"
    referer: str = "http://localhost:3000"
    app_title: str = "Voice Agent"


@dataclass
class TranscriptionConfig:
    default_provider: str = "deepgram"
    min_audio_bytes: int = 1000
    timeout_s: float = 10.0
    deepgram_model: str = "nova-2"
    content_type: str = "audio/wav"


@dataclass
class SynthesisConfig:
    default_provider: str = "openai"
    timeout_s: float = 15.0


@dataclass
class SessionConfig:
    history_window: int = 5               # entries per generation request, incl. the new utterance
    history_max_entries: int = 8          # retained per session
    welcome_delay_s: float = 0.5
    rearm_policy: str = "speech_ended"    # "speech_ended" | "immediate"
    playback_timeout_s: float = 30.0
    no_speech_text: str = "[No speech detected]"
    chat_history_windows: int = 1000      # text chat windows kept, least recently used evicted


@dataclass
class DatabaseConfig:
    store_backend: str = "memory"         # "memory" | "file"
    store_file_dir: str = "./data"


@dataclass
class ProviderKeys:
    openai: str = ""
    anthropic: str = ""
    gemini: str = ""
    mistral: str = ""
    groq: str = ""
    openrouter: str = ""
    sarvam: str = ""
    deepgram: str = ""
    elevenlabs: str = ""
    twilio_sid: str = ""
    twilio_token: str = ""

    def get(self, provider: str) -> str:
        return getattr(self, provider, "") or ""


_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "sarvam": "SARVAM_API_KEY",
    "deepgram": "DEEPGRAM_API_KEY",
    "elevenlabs": "ELEVENLABS_API_KEY",
    "twilio_sid": "TWILIO_ACCOUNT_SID",
    "twilio_token": "TWILIO_AUTH_TOKEN",
}


@dataclass
class Settings:
    app_name: str = "VoiceAgent"
    debug: bool = False
    cors_origins: list[str] = field(default_factory=lambda: [
        "http://localhost:3000", "http://127.0.0.1:3000",
    ])
    llm: LLMConfig = field(default_factory=LLMConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    keys: ProviderKeys = field(default_factory=ProviderKeys)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _merge(target: Any, raw: dict[str, Any]) -> None:
    """Overlay known keys from a raw dict onto a config dataclass."""
    for key, value in raw.items():
        if hasattr(target, key):
            setattr(target, key, value)


def _load_keys(raw: dict[str, Any]) -> ProviderKeys:
    keys = ProviderKeys()
    for name, env_var in _KEY_ENV_VARS.items():
        value = raw.get(name, "")
        # Unresolved ${VAR} placeholders count as missing
        if not value or value.startswith("${"):
            value = os.environ.get(env_var, "")
        setattr(keys, name, value)
    return keys


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "VOICE_AGENT_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()
    raw: dict[str, Any] = {}

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.cors_origins = raw.get("cors_origins", settings.cors_origins)

        _merge(settings.llm, raw.get("llm", {}))
        _merge(settings.transcription, raw.get("transcription", {}))
        _merge(settings.synthesis, raw.get("synthesis", {}))
        _merge(settings.session, raw.get("session", {}))
        _merge(settings.database, raw.get("database", {}))

    settings.keys = _load_keys(raw.get("keys", {}))

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
