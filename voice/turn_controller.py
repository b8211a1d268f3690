"""
Turn Controller — per-session state machine for one caller utterance.

    idle ─▶ capturing ─▶ transcribing ─▶ generating ─▶ speaking ─▶ idle
                 └──────── (text) ───────────┘

Single-flight: admission is a synchronous check-and-set on the state, so
two messages read back to back can never both be admitted. Anything that
arrives while a turn is in flight is dropped, not queued. The state is
returned to idle in a finally block on every exit path.

Echo suppression: with the "speech_ended" re-arm policy the playback gate
closes for every speak directive and only re-opens once the client has
reported speech_ended for each of them (or playback_timeout_s passes, in
which case ready is sent as if acknowledged). While the gate is closed,
captured audio is assumed to be the agent's own voice and dropped. With
the "immediate" policy, ready is sent right after speak, the gate stays
open, and speech_ended is ignored.

Emission order inside a turn:
  transcript(user) ─▶ generate ─▶ transcript(ai) ─▶ speak [─▶ ready]
"""
from __future__ import annotations

import asyncio
import structlog
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from config.settings import SessionConfig
from models.schemas import AgentConfig, Speaker, Utterance
from voice.errors import GenerationError, NoSpeechDetected, TranscriptionError
from voice.generation import GenerationAdapter, GenerationRequest
from voice.history import HistoryWindow
from voice.prompts import build_system_prompt
from voice.protocol import (
    AudioMessage, TextMessage, ready_message, speak_message, transcript_message,
)
from voice.providers import GenerationRoute, TranscriptionProvider
from voice.transcription import TranscriptionAdapter

logger = structlog.get_logger()

SendFn = Callable[[dict[str, Any]], Awaitable[None]]

FALLBACK_REPLY = "I'm sorry, I'm having technical difficulties right now."

REARM_SPEECH_ENDED = "speech_ended"
REARM_IMMEDIATE = "immediate"


def fallback_reply(cause: str) -> str:
    return f"{FALLBACK_REPLY} [Generation error: {cause}]"


def turn_error_reply(cause: str) -> str:
    """Reply for failures outside generation (capture, request building, ...)."""
    return f"{FALLBACK_REPLY} [Turn error: {cause}]"


def transcription_error_text(cause: str) -> str:
    return f"[Transcription error: {cause}]"


class TurnState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    SPEAKING = "speaking"


class PlaybackGate:
    """
    Closed while the client is playing agent speech.

    Counts outstanding speak directives: each close() is one directive,
    each open() is one acknowledgment, and the gate only re-opens once
    every directive has been acknowledged (or the timeout passes).
    """

    def __init__(self, timeout_s: float = 30.0, on_expire: Callable[[], None] = None):
        self.timeout_s = timeout_s
        self._pending = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._on_expire = on_expire

    @property
    def is_open(self) -> bool:
        return self._pending == 0

    @property
    def pending(self) -> int:
        return self._pending

    def close(self) -> None:
        self._cancel_timer()
        self._pending += 1
        if self.timeout_s and self.timeout_s > 0:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.timeout_s, self._expire)

    def open(self) -> bool:
        """Acknowledge one directive; True if that opened the gate."""
        if self._pending == 0:
            return False
        self._pending -= 1
        if self._pending == 0:
            self._cancel_timer()
            return True
        return False

    def _expire(self) -> None:
        self._timer = None
        if self._pending:
            logger.warning("playback_ack_timeout", timeout_s=self.timeout_s, pending=self._pending)
            self._pending = 0
            if self._on_expire is not None:
                self._on_expire()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def cancel(self) -> None:
        self._cancel_timer()


class TurnController:
    """
    Runs turns for one session.

    Args:
        session_id: owning session, for logs
        agent: frozen agent snapshot taken when the session opened
        route: generation provider/model resolved at session open
        asr_provider: transcription provider resolved at session open
        send: outbound channel; the session discards sends once closed
        transcriber / generator: shared adapters
        config: session section of the settings
    """

    def __init__(
        self,
        session_id: str,
        agent: AgentConfig,
        route: GenerationRoute,
        asr_provider: TranscriptionProvider,
        send: SendFn,
        transcriber: TranscriptionAdapter,
        generator: GenerationAdapter,
        config: SessionConfig = None,
    ):
        self.session_id = session_id
        self.agent = agent
        self.route = route
        self.asr_provider = asr_provider
        self.config = config or SessionConfig()
        self.history = HistoryWindow(max_entries=self.config.history_max_entries)
        self.transcript: list[Utterance] = []
        self.state = TurnState.IDLE
        self.gate = PlaybackGate(self.config.playback_timeout_s, on_expire=self._on_playback_timeout)
        self.system_prompt = build_system_prompt(agent)
        self.turns_completed = 0
        self.turns_dropped = 0
        self.closed = False

        self._send = send
        self._transcriber = transcriber
        self._generator = generator
        self._task: Optional[asyncio.Task] = None
        self._ready_task: Optional[asyncio.Task] = None

    # ── Admission ─────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self.state != TurnState.IDLE

    @property
    def current_task(self) -> Optional[asyncio.Task]:
        return self._task

    def _admit(self, kind: str) -> bool:
        # Check-and-set with no await in between
        if self.state != TurnState.IDLE or not self.gate.is_open:
            self.turns_dropped += 1
            logger.info("turn_dropped", session_id=self.session_id, kind=kind,
                        state=self.state.value, gate_open=self.gate.is_open)
            return False
        self.state = TurnState.CAPTURING
        return True

    def offer(self, message: Union[AudioMessage, TextMessage]) -> bool:
        """Admit and run the turn in the background; False if dropped."""
        if not self._admit(message.type):
            return False
        self._task = asyncio.create_task(self._run(message))
        return True

    async def handle(self, message: Union[AudioMessage, TextMessage]) -> bool:
        """Admit and run the turn inline; False if dropped."""
        if not self._admit(message.type):
            return False
        await self._run(message)
        return True

    @property
    def immediate(self) -> bool:
        return self.config.rearm_policy == REARM_IMMEDIATE

    def _ready_for_input(self) -> bool:
        # SPEAKING here means the directive is already out and the turn is unwinding
        return self.gate.is_open and self.state in (TurnState.IDLE, TurnState.SPEAKING)

    async def speech_ended(self) -> None:
        """Client finished playing one speak directive."""
        if self.closed or self.immediate:
            # ready already went out with the directive
            return
        opened = self.gate.open()
        if opened and self._ready_for_input():
            await self._send(ready_message())

    def _on_playback_timeout(self) -> None:
        if self.closed or not self._ready_for_input():
            return
        self._ready_task = asyncio.create_task(self._send(ready_message()))

    # ── Turn body ─────────────────────────────────────────────

    async def _run(self, message: Union[AudioMessage, TextMessage]) -> None:
        spoke = False
        try:
            user_text = await self._capture(message)

            self.history.append(Speaker.USER, user_text)
            self.record(Speaker.USER, user_text)
            await self._send(transcript_message(Speaker.USER, user_text))

            self.state = TurnState.GENERATING
            request = GenerationRequest.from_window(
                self.system_prompt, self.history, self.config.history_window,
            )
            try:
                reply = await self._generator.generate(request, self.route)
                self.history.append(Speaker.ASSISTANT, reply)
            except GenerationError as e:
                logger.warning("generation_failed_using_fallback",
                               session_id=self.session_id, error=str(e))
                reply = fallback_reply(e.cause)

            spoke = True
            await self.speak(reply)
            self.turns_completed += 1
            logger.info("turn_completed", session_id=self.session_id,
                        kind=message.type, provider=self.route.provider.value)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("turn_failed", session_id=self.session_id, error=str(e))
            if not spoke:
                try:
                    await self.speak(turn_error_reply(str(e)))
                except Exception as send_error:
                    logger.error("turn_fallback_send_failed",
                                 session_id=self.session_id, error=str(send_error))
        finally:
            self.state = TurnState.IDLE

    async def _capture(self, message: Union[AudioMessage, TextMessage]) -> str:
        if isinstance(message, TextMessage):
            return message.text.strip() or self.config.no_speech_text

        self.state = TurnState.TRANSCRIBING
        try:
            text = await self._transcriber.transcribe(
                message.data, self.asr_provider, self.agent.language,
            )
            if not text:
                raise NoSpeechDetected()
            return text
        except NoSpeechDetected:
            logger.info("no_speech_detected", session_id=self.session_id, size=len(message.data))
            return self.config.no_speech_text
        except TranscriptionError as e:
            logger.warning("transcription_failed", session_id=self.session_id, error=str(e))
            return transcription_error_text(e.cause)

    # ── Speaking ──────────────────────────────────────────────

    async def speak(self, text: str) -> None:
        """Emit transcript(ai) then speak, then apply the re-arm policy."""
        if self.busy:
            self.state = TurnState.SPEAKING
        self.record(Speaker.ASSISTANT, text)
        await self._send(transcript_message(Speaker.ASSISTANT, text))
        await self.say(text)

    async def say(self, text: str) -> None:
        """Emit only the speak directive (the welcome sends its transcript earlier)."""
        # Closed before the directive goes out so an early ack cannot be lost.
        # After shutdown nothing is played, so no gate or timer.
        if not self.immediate and not self.closed:
            self.gate.close()
        await self._send(speak_message(
            text,
            voice=self.agent.voice,
            language=self.agent.language,
            provider=self.agent.providers.tts,
        ))
        if self.immediate:
            await self._send(ready_message())

    def record(self, speaker: Speaker, text: str) -> None:
        self.transcript.append(Utterance(speaker=speaker, text=text))

    def shutdown(self) -> None:
        self.closed = True
        self.gate.cancel()
        if self._ready_task is not None and not self._ready_task.done():
            self._ready_task.cancel()
