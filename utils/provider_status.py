"""
Provider credential report, logged at startup and served by /health.

A key counts as configured when it is present and looks like the
provider's key format. Sample placeholders never count.
"""
from __future__ import annotations

import structlog
from typing import Callable

from config.settings import ProviderKeys

logger = structlog.get_logger()


def _real(value: str) -> bool:
    return bool(value) and "example" not in value.lower()


_CHECKS: dict[str, tuple[str, Callable[[str], bool]]] = {
    "openai": ("openai", lambda v: v.startswith("sk-")),
    "anthropic": ("anthropic", lambda v: v.startswith("sk-ant-")),
    "gemini": ("gemini", lambda v: v.startswith("AIza")),
    "mistral": ("mistral", lambda v: True),
    "groq": ("groq", lambda v: v.startswith("gsk_")),
    "openrouter": ("openrouter", lambda v: v.startswith("sk-or-")),
    "sarvam": ("sarvam", lambda v: True),
    "deepgram": ("deepgram", lambda v: len(v) > 20),
    "elevenlabs": ("elevenlabs", lambda v: len(v) > 20),
    "twilio": ("twilio_sid", lambda v: v.startswith("AC")),
}


def check_provider_status(keys: ProviderKeys) -> dict[str, bool]:
    status = {}
    for name, (field_name, looks_valid) in _CHECKS.items():
        value = keys.get(field_name)
        status[name] = _real(value) and looks_valid(value)
    return status


def log_provider_status(keys: ProviderKeys) -> dict[str, bool]:
    status = check_provider_status(keys)
    ready = sorted(name for name, ok in status.items() if ok)
    missing = sorted(name for name, ok in status.items() if not ok)
    logger.info("provider_status", ready=ready, missing=missing,
                summary=f"{len(ready)}/{len(status)} providers ready")
    if not ready:
        logger.warning("no_providers_configured",
                       hint="Add API keys to .env or config/settings.yaml")
    return status
