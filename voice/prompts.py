"""
System prompt construction for phone-call agents.

The prompt is the agent persona followed by a language instruction block.
Language tags are matched exactly first ("hi-IN"), then by primary subtag
("en-GB" -> "en"), and anything else gets the English instruction.
"""
from __future__ import annotations

from models.schemas import AgentConfig

DEFAULT_LANGUAGE = "en"

LANGUAGE_INSTRUCTIONS: dict[str, str] = {
    "en": (
        "IMPORTANT: Always respond in English only. Keep responses under 20 words. "
        "Be helpful and conversational."
    ),
    "en-IN": (
        "IMPORTANT: Always respond in Indian English. Keep responses under 20 words. "
        "Be warm, polite and conversational."
    ),
    "hi": (
        "IMPORTANT: Always respond in Hindi (Devanagari script) only. "
        "Keep responses under 20 words. Be respectful and conversational."
    ),
    "hi-IN": (
        "IMPORTANT: Always respond in Hindi (Devanagari script) only. "
        "Keep responses under 20 words. Be respectful and conversational."
    ),
    "es": (
        "IMPORTANT: Always respond in Spanish only. Keep responses under 20 words. "
        "Be helpful and conversational."
    ),
    "fr": (
        "IMPORTANT: Always respond in French only. Keep responses under 20 words. "
        "Be helpful and conversational."
    ),
    "de": (
        "IMPORTANT: Always respond in German only. Keep responses under 20 words. "
        "Be helpful and conversational."
    ),
}


def language_instruction(language: str) -> str:
    tag = (language or "").strip()
    if tag in LANGUAGE_INSTRUCTIONS:
        return LANGUAGE_INSTRUCTIONS[tag]
    primary = tag.split("-")[0].lower()
    return LANGUAGE_INSTRUCTIONS.get(primary, LANGUAGE_INSTRUCTIONS[DEFAULT_LANGUAGE])


def build_system_prompt(agent: AgentConfig) -> str:
    parts = [f"You are {agent.name} on a phone call."]
    if agent.description:
        parts.append(agent.description.strip())
    if agent.prompt:
        parts.append(agent.prompt.strip())
    parts.append(language_instruction(agent.language))
    return " ".join(parts)
