"""Storage backends for applications, flow versions and the outbox."""

from .base import ApplicationScope, OutboxStore, ScreeningStore, check_application_update
from .memory import MemoryStore
from .sql import SqlStore

__all__ = [
    "ApplicationScope",
    "OutboxStore",
    "ScreeningStore",
    "check_application_update",
    "MemoryStore",
    "SqlStore",
]
