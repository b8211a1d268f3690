"""
FastAPI Application — voice session WebSocket + admin REST API.

Provides:
- /webrtc WebSocket for live agent conversations
- Agent CRUD and the provider catalogue for the admin UI
- Call history (sessions persist their own records on close)
- Text chat and voice preview helpers for testing an agent
- Health with provider credential status
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from config.settings import get_settings
from core.directory import AgentDirectory
from database.store_factory import create_store
from models.schemas import CallRecord, Speaker
from utils.provider_status import check_provider_status, log_provider_status
from voice.errors import AgentNotFound, GenerationError, SynthesisError
from voice.generation import GenerationAdapter, GenerationRequest
from voice.history import HistoryWindowCache
from voice.prompts import build_system_prompt
from voice.providers import (
    PROVIDER_CATALOGUE, resolve_generation_route, resolve_synthesis_provider,
)
from voice.session import SessionManager
from voice.synthesis import SynthesisAdapter
from voice.transcription import TranscriptionAdapter

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

settings = get_settings()
store = create_store({
    "store_backend": settings.database.store_backend,
    "store_file_dir": settings.database.store_file_dir,
})
directory = AgentDirectory(store)
synthesis_adapter = SynthesisAdapter(settings)
session_manager = SessionManager(
    directory=directory,
    store=store,
    transcriber=TranscriptionAdapter(settings),
    generator=GenerationAdapter(settings),
    settings=settings,
)

# Text chat keeps its own windows, keyed by "<agentId>-<sessionId>"
chat_histories = HistoryWindowCache(
    max_windows=settings.session.chat_history_windows,
    max_entries=settings.session.history_max_entries,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_provider_status(settings.keys)
    logger.info("voice_agent_started",
                store_backend=settings.database.store_backend,
                rearm_policy=settings.session.rearm_policy)
    yield

    await session_manager.close()
    await synthesis_adapter.close()
    logger.info("voice_agent_stopped")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="Voice Agent API",
    description="Voice agent builder with live turn-taking sessions",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class ChatRequest(_CamelRequest):
    message: str
    agent_id: str = ""
    session_id: str = "default"
    language: Optional[str] = None
    model: Optional[str] = None


class VoicePreviewRequest(_CamelRequest):
    text: str = "Hello, this is a voice preview test."
    voice: str = "alloy"
    provider: str = "openai"
    language: str = "en"


def _agent_json(agent) -> dict[str, Any]:
    return agent.model_dump(mode="json", by_alias=True)


def _record_json(record: CallRecord) -> dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True)


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active_sessions": len(session_manager.sessions),
        "providers": check_provider_status(settings.keys),
    }


# ══════════════════════════════════════════════════════════════
#  AGENTS
# ══════════════════════════════════════════════════════════════

@app.get("/api/agent/providers")
async def list_providers():
    return {"success": True, "providers": PROVIDER_CATALOGUE}


@app.post("/api/agent/create", status_code=201)
async def create_agent(body: dict[str, Any]):
    body = {k: v for k, v in body.items() if k not in ("id", "createdAt", "created_at")}
    try:
        agent = await directory.create(body)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid agent: {e.errors()[0]['msg']}")
    return {"success": True, "agent": _agent_json(agent)}


@app.get("/api/agent/list")
async def list_agents():
    agents = await directory.list()
    return {"success": True, "agents": [_agent_json(a) for a in agents], "total": len(agents)}


@app.get("/api/agent/{agent_id}")
async def get_agent(agent_id: str):
    agent = await directory.lookup(agent_id)
    if agent is None:
        raise HTTPException(404, "Agent not found")
    return {"success": True, "agent": _agent_json(agent)}


@app.put("/api/agent/{agent_id}")
async def update_agent(agent_id: str, body: dict[str, Any]):
    try:
        agent = await directory.update(agent_id, body)
    except AgentNotFound:
        raise HTTPException(404, "Agent not found")
    except ValidationError as e:
        raise HTTPException(400, f"Invalid agent: {e.errors()[0]['msg']}")
    return {"success": True, "agent": _agent_json(agent)}


@app.delete("/api/agent/{agent_id}")
async def delete_agent(agent_id: str):
    try:
        await directory.delete(agent_id)
    except AgentNotFound:
        raise HTTPException(404, "Agent not found")
    return {"success": True, "message": "Agent deleted successfully"}


# ══════════════════════════════════════════════════════════════
#  CALL HISTORY
# ══════════════════════════════════════════════════════════════

@app.get("/api/call-history/list")
async def list_call_history(limit: int = Query(100, ge=1, le=1000)):
    records = await store.list_call_records(limit=limit)
    return {"success": True, "callHistories": [_record_json(r) for r in records], "total": len(records)}


@app.post("/api/call-history/save")
async def save_call_history(body: dict[str, Any]):
    body = {k: v for k, v in body.items() if k != "id"}
    body.setdefault("endTime", datetime.now(timezone.utc).isoformat())
    try:
        record = CallRecord.model_validate(body)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid call history: {e.errors()[0]['msg']}")
    await store.save_call_record(record)
    return {"success": True, "callHistory": _record_json(record)}


@app.get("/api/call-history/{record_id}")
async def get_call_history(record_id: str):
    record = await store.get_call_record(record_id)
    if record is None:
        raise HTTPException(404, "Call history not found")
    return {"success": True, "callHistory": _record_json(record)}


# ══════════════════════════════════════════════════════════════
#  CONVERSATION HELPERS
# ══════════════════════════════════════════════════════════════

@app.post("/api/conversation/chat")
async def chat(req: ChatRequest):
    """
    Text-only conversation with an agent, outside any voice session.
    History is kept per (agentId, sessionId), capped at 8 entries; the
    least recently used windows are evicted past chat_history_windows.
    """
    agent = await directory.resolve(req.agent_id)
    if req.language:
        agent = agent.model_copy(update={"language": req.language})
    route = resolve_generation_route(agent.providers.llm, req.model or agent.model)

    key = f"{req.agent_id}-{req.session_id}"
    window = chat_histories.get(key)
    request = GenerationRequest(
        system_prompt=build_system_prompt(agent),
        utterance=req.message,
        history=window.recent(settings.session.history_window - 1),
    )
    try:
        reply = await session_manager.generator.generate(request, route)
    except GenerationError as e:
        logger.error("chat_generation_failed", agent_id=req.agent_id, error=str(e))
        raise HTTPException(502, str(e))

    window.append(Speaker.USER, req.message)
    window.append(Speaker.ASSISTANT, reply)
    return {
        "success": True,
        "response": reply,
        "model": route.model,
        "provider": route.provider.value,
        "language": agent.language,
        "sessionId": req.session_id,
    }


@app.post("/api/conversation/voice-preview")
async def voice_preview(req: VoicePreviewRequest):
    provider = resolve_synthesis_provider(req.provider)
    try:
        result = await synthesis_adapter.synthesize(req.text, req.voice, provider, req.language)
    except SynthesisError as e:
        logger.error("voice_preview_failed", provider=provider.value, error=str(e))
        raise HTTPException(502, str(e))
    return Response(content=result.audio, media_type=result.media_type)


# ══════════════════════════════════════════════════════════════
#  WEBSOCKET — Live voice session
# ══════════════════════════════════════════════════════════════

@app.websocket("/webrtc")
async def webrtc_session(websocket: WebSocket, agent_id: str = Query("", alias="agentId")):
    """
    One live conversation. Client sends audio/text/speech_ended frames;
    server answers with transcript/speak/ready. Pipeline failures are
    reported in-band and never close the socket.
    """
    await websocket.accept()

    async def send(message: dict[str, Any]) -> None:
        await websocket.send_json(message)

    session = await session_manager.open_session(agent_id, send)
    try:
        while True:
            raw = await websocket.receive_text()
            await session_manager.dispatch(session, raw)
    except WebSocketDisconnect:
        logger.info("websocket_disconnected", session_id=session.session_id)
    except Exception as e:
        logger.error("websocket_error", session_id=session.session_id, error=str(e))
    finally:
        await session_manager.close_session(session)


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
