"""
Database layer — Agent and call-history persistence.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)

Quick start:
  from database import create_store, get_store
  store = create_store({"store_backend": "memory"})
  agent = await store.get_agent("support-bot")
"""
from database.store_base import BaseAgentStore
from database.store_memory import InMemoryAgentStore
from database.store_file import FileAgentStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # Store interface
    "BaseAgentStore",
    # Store backends
    "InMemoryAgentStore", "FileAgentStore",
    # Factory
    "create_store", "get_store", "reset_store",
]
