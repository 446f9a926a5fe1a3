"""
Flag and audit storage backend implementations.
"""

from .database import DatabaseAuditStore, DatabaseFlagStore
from .memory import MemoryAuditStore, MemoryFlagStore

__all__ = [
    "DatabaseAuditStore",
    "DatabaseFlagStore",
    "MemoryAuditStore",
    "MemoryFlagStore",
]
