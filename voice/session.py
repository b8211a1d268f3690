"""
Session Manager — lifecycle of one duplex voice connection.

open_session   resolve the agent (fallback persona if unknown), build the
               turn controller, send the welcome transcript and schedule
               the welcome speak directive.
dispatch       parse an inbound frame and route it: audio/text to the turn
               controller, speech_ended to the playback gate.
close_session  stop delivery, cancel the pending welcome, let an in-flight
               turn finish with its output discarded, and persist the call
               record. Persistence failures are logged, never raised.

Nothing in here closes the socket on a pipeline failure.
"""
from __future__ import annotations

import asyncio
import structlog
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from config.settings import Settings, get_settings
from core.directory import AgentDirectory
from database.store_base import BaseAgentStore
from models.schemas import AgentConfig, CallRecord, CallStatus, Speaker
from voice.generation import GenerationAdapter
from voice.protocol import (
    ProtocolError, SpeechEndedMessage, parse_inbound, transcript_message,
)
from voice.providers import resolve_generation_route, resolve_transcription_provider
from voice.transcription import TranscriptionAdapter
from voice.turn_controller import SendFn, TurnController

logger = structlog.get_logger()


class Session:
    """State for one live connection."""

    def __init__(self, session_id: str, agent: AgentConfig, controller: TurnController, send: SendFn):
        self.session_id = session_id
        self.agent = agent
        self.controller = controller
        self.started_at = datetime.now(timezone.utc)
        self.ended_at: Optional[datetime] = None
        self.closed = False
        self.welcome_task: Optional[asyncio.Task] = None
        self._send = send

    async def send(self, message: dict[str, Any]) -> None:
        """Deliver unless closed; a broken channel is logged, not raised."""
        if self.closed:
            logger.debug("send_discarded_session_closed",
                         session_id=self.session_id, type=message.get("type"))
            return
        try:
            await self._send(message)
        except Exception as e:
            logger.warning("send_failed", session_id=self.session_id, error=str(e))

    @property
    def welcome_pending(self) -> bool:
        """True until the welcome speak directive has been sent (or abandoned)."""
        return self.welcome_task is not None and not self.welcome_task.done()

    @property
    def duration(self) -> float:
        end = self.ended_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def to_call_record(self) -> CallRecord:
        return CallRecord(
            agent_id=self.agent.id,
            agent_name=self.agent.name,
            session_id=self.session_id,
            transcript=[
                {
                    "speaker": u.speaker.value,
                    "text": u.text,
                    "timestamp": u.timestamp.isoformat(),
                }
                for u in self.controller.transcript
            ],
            duration=round(self.duration, 3),
            start_time=self.started_at,
            end_time=self.ended_at,
            status=CallStatus.COMPLETED,
        )


class SessionManager:
    """Opens, feeds and closes sessions; owns the shared adapters."""

    def __init__(
        self,
        directory: AgentDirectory,
        store: BaseAgentStore,
        transcriber: TranscriptionAdapter = None,
        generator: GenerationAdapter = None,
        settings: Settings = None,
    ):
        self._settings = settings or get_settings()
        self.directory = directory
        self.store = store
        self.transcriber = transcriber or TranscriptionAdapter(self._settings)
        self.generator = generator or GenerationAdapter(self._settings)
        self.sessions: dict[str, Session] = {}

    # ── Open ──────────────────────────────────────────────────

    async def open_session(self, agent_id: str, send: SendFn) -> Session:
        agent = await self.directory.resolve(agent_id)
        session_id = str(uuid.uuid4())

        route = resolve_generation_route(agent.providers.llm, agent.model)
        asr = resolve_transcription_provider(agent.providers.asr)

        session: Session

        async def guarded_send(message: dict[str, Any]) -> None:
            await session.send(message)

        controller = TurnController(
            session_id=session_id,
            agent=agent,
            route=route,
            asr_provider=asr,
            send=guarded_send,
            transcriber=self.transcriber,
            generator=self.generator,
            config=self._settings.session,
        )
        session = Session(session_id, agent, controller, send)
        self.sessions[session_id] = session

        logger.info("session_opened", session_id=session_id, agent_id=agent.id,
                    agent_name=agent.name, route=route.to_dict(), asr=asr.value)

        await self._welcome(session)
        return session

    async def _welcome(self, session: Session) -> None:
        text = session.agent.welcome_message or "Hello! How can I help you today?"
        session.controller.record(Speaker.ASSISTANT, text)
        await session.send(transcript_message(Speaker.ASSISTANT, text))
        session.welcome_task = asyncio.create_task(self._delayed_welcome_speak(session, text))

    async def _delayed_welcome_speak(self, session: Session, text: str) -> None:
        await asyncio.sleep(self._settings.session.welcome_delay_s)
        if session.closed:
            return
        await session.controller.say(text)

    # ── Dispatch ──────────────────────────────────────────────

    async def dispatch(self, session: Session, raw: str | bytes) -> None:
        if session.closed:
            return
        try:
            message = parse_inbound(raw)
        except ProtocolError as e:
            logger.warning("inbound_message_ignored", session_id=session.session_id, error=str(e))
            return

        if isinstance(message, SpeechEndedMessage):
            await session.controller.speech_ended()
            return

        if session.welcome_pending:
            # Nothing starts before the welcome directive is out
            session.controller.turns_dropped += 1
            logger.info("turn_dropped_welcome_pending",
                        session_id=session.session_id, kind=message.type)
            return

        session.controller.offer(message)

    # ── Close ─────────────────────────────────────────────────

    async def close_session(self, session: Session) -> Optional[CallRecord]:
        if session.closed:
            return None
        session.closed = True
        session.ended_at = datetime.now(timezone.utc)
        self.sessions.pop(session.session_id, None)

        if session.welcome_task is not None and not session.welcome_task.done():
            session.welcome_task.cancel()
        session.controller.shutdown()

        record = session.to_call_record()
        try:
            await self.store.save_call_record(record)
        except Exception as e:
            logger.error("call_record_persist_failed", session_id=session.session_id, error=str(e))
            return None

        logger.info("session_closed", session_id=session.session_id,
                    duration=record.duration, utterances=len(record.transcript),
                    turns=session.controller.turns_completed,
                    dropped=session.controller.turns_dropped)
        return record

    async def close(self) -> None:
        for session in list(self.sessions.values()):
            await self.close_session(session)
        await self.transcriber.close()
        await self.generator.close()
