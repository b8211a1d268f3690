"""
Abstract Agent Store — Interface for all storage backends.

Implementations:
  - InMemoryAgentStore (dict-based, single-process, no persistence)
  - FileAgentStore     (JSON files on disk, single-process, durable)

The AgentDirectory in core/directory.py is the only writer for agents;
sessions never touch the store directly except to hand over a finished
CallRecord.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from models.schemas import AgentConfig, CallRecord


class BaseAgentStore(ABC):
    """Interface that all agent store backends must implement."""

    # ── Agents ────────────────────────────────────────────────

    @abstractmethod
    async def get_agent(self, agent_id: str) -> Optional[AgentConfig]:
        ...

    @abstractmethod
    async def list_agents(self) -> list[AgentConfig]:
        ...

    @abstractmethod
    async def save_agent(self, agent: AgentConfig) -> AgentConfig:
        ...

    @abstractmethod
    async def delete_agent(self, agent_id: str) -> bool:
        ...

    # ── Call history ──────────────────────────────────────────

    @abstractmethod
    async def save_call_record(self, record: CallRecord) -> CallRecord:
        ...

    @abstractmethod
    async def get_call_record(self, record_id: str) -> Optional[CallRecord]:
        ...

    @abstractmethod
    async def list_call_records(self, limit: int = 100) -> list[CallRecord]:
        ...
