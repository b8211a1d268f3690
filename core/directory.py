"""
Agent Directory — read-mostly lookup from agent id to AgentConfig.

Sessions call lookup()/resolve() concurrently; admin endpoints call
create/update/delete. Writers are serialized through one lock and always
publish a fresh frozen AgentConfig, so a snapshot handed to a session is
never mutated underneath it.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Optional

from database.store_base import BaseAgentStore
from models.schemas import AgentConfig
from voice.errors import AgentNotFound

logger = structlog.get_logger()


def fallback_agent(agent_id: str = "") -> AgentConfig:
    """The persona used when a session asks for an unknown agent."""
    return AgentConfig(
        id=agent_id or "fallback",
        name="Test Agent",
        description="A helpful AI assistant.",
        prompt="You are a helpful AI assistant.",
        welcome_message="Hello! How can I help you today?",
        voice="alloy",
    )


class AgentDirectory:
    """Agent lookups for sessions plus serialized admin writes."""

    def __init__(self, store: BaseAgentStore):
        self.store = store
        self._write_lock = asyncio.Lock()

    # ── Reads ─────────────────────────────────────────────────

    async def lookup(self, agent_id: str) -> Optional[AgentConfig]:
        if not agent_id:
            return None
        return await self.store.get_agent(agent_id)

    async def resolve(self, agent_id: str) -> AgentConfig:
        """Lookup that never fails: unknown ids get the fallback persona."""
        agent = await self.lookup(agent_id)
        if agent is None:
            logger.warning("agent_not_found_using_fallback", agent_id=agent_id)
            return fallback_agent(agent_id)
        return agent

    async def list(self) -> list[AgentConfig]:
        return await self.store.list_agents()

    # ── Writes ────────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> AgentConfig:
        agent = AgentConfig.model_validate(data)
        async with self._write_lock:
            await self.store.save_agent(agent)
        logger.info("agent_created", agent_id=agent.id, name=agent.name)
        return agent

    async def update(self, agent_id: str, changes: dict[str, Any]) -> AgentConfig:
        async with self._write_lock:
            current = await self.store.get_agent(agent_id)
            if current is None:
                raise AgentNotFound(agent_id)
            updated = current.with_updates(changes)
            await self.store.save_agent(updated)
        logger.info("agent_updated", agent_id=agent_id, fields=sorted(changes.keys()))
        return updated

    async def delete(self, agent_id: str) -> None:
        async with self._write_lock:
            deleted = await self.store.delete_agent(agent_id)
        if not deleted:
            raise AgentNotFound(agent_id)
        logger.info("agent_deleted", agent_id=agent_id)
