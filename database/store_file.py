"""
FileAgentStore — JSON file-backed store with persistence across restarts.

Data layout:
  {data_dir}/
    agents.json
    call_records.json

Features:
  - Survives process restarts (unlike InMemoryAgentStore)
  - No external dependencies (no database server)
  - Flush on every mutation, written via temp file + rename
  - Single-process only (no concurrent write safety)

Best for: small deployments, demos, air-gapped environments.
"""
from __future__ import annotations

import json
import structlog
from pathlib import Path
from typing import Any

from database.store_memory import InMemoryAgentStore
from models.schemas import AgentConfig, CallRecord

logger = structlog.get_logger()

_COLLECTIONS = ["agents", "call_records"]


class FileAgentStore(InMemoryAgentStore):
    """
    Extends InMemoryAgentStore with JSON file persistence.

    On init: loads all data from JSON files into memory.
    On every write: flushes the changed collection to disk.
    """

    def __init__(self, data_dir: str = "./data"):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._load_all()
        logger.info("file_store_initialized", data_dir=str(self._data_dir))

    # ── Load / Save ───────────────────────────────────────

    def _file_path(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.json"

    def _load_all(self):
        """Load all collections from disk."""
        for collection in _COLLECTIONS:
            path = self._file_path(collection)
            if not path.exists():
                continue
            try:
                with open(path, "r") as f:
                    data = json.load(f)
                self._set_collection(collection, data)
                logger.debug("file_store_loaded",
                             collection=collection,
                             records=len(data) if isinstance(data, dict) else "N/A")
            except (OSError, ValueError) as e:
                logger.warning("file_store_load_error",
                               collection=collection, error=str(e))

    def _set_collection(self, collection: str, data: Any):
        """Restore a collection from loaded JSON data."""
        if not isinstance(data, dict):
            return
        if collection == "agents":
            self._agents = {k: AgentConfig.model_validate(v) for k, v in data.items()}
        elif collection == "call_records":
            self._call_records = {k: CallRecord.model_validate(v) for k, v in data.items()}

    def _get_collection_data(self, collection: str) -> dict[str, Any]:
        """Get serializable data for a collection."""
        mapping = {
            "agents": self._agents,
            "call_records": self._call_records,
        }
        return {k: v.model_dump(mode="json", by_alias=True) for k, v in mapping.get(collection, {}).items()}

    def _flush_collection(self, collection: str):
        """Write a single collection to disk."""
        path = self._file_path(collection)
        data = self._get_collection_data(collection)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        tmp_path.replace(path)

    def flush_all(self):
        """Force flush all collections to disk."""
        for c in _COLLECTIONS:
            self._flush_collection(c)
        logger.info("file_store_flushed_all")

    # ── Override write methods to trigger persistence ──────

    async def save_agent(self, agent: AgentConfig) -> AgentConfig:
        result = await super().save_agent(agent)
        self._flush_collection("agents")
        return result

    async def delete_agent(self, agent_id: str) -> bool:
        deleted = await super().delete_agent(agent_id)
        if deleted:
            self._flush_collection("agents")
        return deleted

    async def save_call_record(self, record: CallRecord) -> CallRecord:
        result = await super().save_call_record(record)
        self._flush_collection("call_records")
        return result
