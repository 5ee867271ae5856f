from om_compaction.storage.base import SessionStore
from om_compaction.storage.memory import InMemorySessionStore
from om_compaction.storage.sqlite import SQLiteSessionStore

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "SQLiteSessionStore",
]
