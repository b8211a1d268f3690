"""
Store Factory — pick the agent store backend named in settings.yaml.

    database:
      store_backend: memory      # "memory" | "file"
      store_file_dir: ./data     # file backend only

The first create_store() call wins; later calls (and get_store()) hand
back the same instance so the API and the session manager share one
agent table.
"""
from __future__ import annotations

import structlog
from typing import Callable, Optional

from database.store_base import BaseAgentStore

logger = structlog.get_logger()

_instance: Optional[BaseAgentStore] = None


def _memory(config: dict) -> BaseAgentStore:
    from database.store_memory import InMemoryAgentStore
    return InMemoryAgentStore()


def _file(config: dict) -> BaseAgentStore:
    from database.store_file import FileAgentStore
    return FileAgentStore(data_dir=config.get("store_file_dir") or "./data")


_BACKENDS: dict[str, Callable[[dict], BaseAgentStore]] = {
    "memory": _memory,
    "file": _file,
}


def create_store(config: dict = None) -> BaseAgentStore:
    """Build (once) the backend named by config["store_backend"]."""
    global _instance
    if _instance is not None:
        return _instance

    config = config or {}
    backend = (config.get("store_backend") or "memory").lower()
    builder = _BACKENDS.get(backend)
    if builder is None:
        logger.warning("store_backend_unknown", backend=backend, using="memory")
        backend, builder = "memory", _memory

    _instance = builder(config)
    logger.info("store_created", backend=backend)
    return _instance


def get_store() -> BaseAgentStore:
    global _instance
    if _instance is None:
        _instance = create_store()
    return _instance


def reset_store() -> None:
    """Forget the singleton (tests)."""
    global _instance
    _instance = None
