"""Commerce persistence.

- base.py: the ``CommerceStore`` protocol and storage errors
- memory.py: in-memory store (tests, local development)
- sqlite.py: SQLite store (CLI, single-node deployments)
"""

from agentmarket.commerce.storage.base import CommerceStore, DuplicateRecordError, StorageError
from agentmarket.commerce.storage.memory import InMemoryCommerceStore
from agentmarket.commerce.storage.sqlite import SQLiteCommerceStore

__all__ = [
    "CommerceStore",
    "StorageError",
    "DuplicateRecordError",
    "InMemoryCommerceStore",
    "SQLiteCommerceStore",
]
