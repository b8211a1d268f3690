"""
InMemoryAgentStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database)
  - Copy-on-write agent table: writers publish a new dict, readers keep
    whatever snapshot they fetched
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import structlog
from typing import Optional

from database.store_base import BaseAgentStore
from models.schemas import AgentConfig, CallRecord

logger = structlog.get_logger()


class InMemoryAgentStore(BaseAgentStore):
    """
    In-memory store. AgentConfig instances are frozen, so handing the
    same object to many sessions is safe.
    """

    def __init__(self):
        self._agents: dict[str, AgentConfig] = {}       # id → agent
        self._call_records: dict[str, CallRecord] = {}  # id → record
        logger.info("inmemory_store_initialized")

    # ── Agents ────────────────────────────────────────────

    async def get_agent(self, agent_id: str) -> Optional[AgentConfig]:
        return self._agents.get(agent_id)

    async def list_agents(self) -> list[AgentConfig]:
        return sorted(self._agents.values(), key=lambda a: a.created_at)

    async def save_agent(self, agent: AgentConfig) -> AgentConfig:
        agents = dict(self._agents)
        agents[agent.id] = agent
        self._agents = agents
        return agent

    async def delete_agent(self, agent_id: str) -> bool:
        if agent_id not in self._agents:
            return False
        agents = dict(self._agents)
        del agents[agent_id]
        self._agents = agents
        return True

    # ── Call history ──────────────────────────────────────

    async def save_call_record(self, record: CallRecord) -> CallRecord:
        self._call_records[record.id] = record
        return record

    async def get_call_record(self, record_id: str) -> Optional[CallRecord]:
        return self._call_records.get(record_id)

    async def list_call_records(self, limit: int = 100) -> list[CallRecord]:
        # Newest first
        records = sorted(
            self._call_records.values(), key=lambda r: r.start_time, reverse=True,
        )
        return records[:limit]

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "agents": len(self._agents),
            "call_records": len(self._call_records),
        }
