from typing import Dict, List

from om_compaction.models import SessionEntry
from om_compaction.storage.base import SessionStore


class InMemorySessionStore(SessionStore):
    """
    Simple dict-based storage. Good for testing and demos. No persistence.
    """
    def __init__(self):
        self._entries: Dict[str, List[SessionEntry]] = {}

    async def aget_branch(self, session_id: str) -> list[SessionEntry]:
        return self.get_branch(session_id)

    def get_branch(self, session_id: str) -> list[SessionEntry]:
        return list(self._entries.get(session_id, []))

    async def aappend_entry(self, session_id: str, entry: SessionEntry) -> None:
        self.append_entry(session_id, entry)

    def append_entry(self, session_id: str, entry: SessionEntry) -> None:
        self._entries.setdefault(session_id, []).append(entry)

    async def ainitialize(self) -> None:
        self.initialize()

    def initialize(self) -> None:
        pass

    async def aclose(self) -> None:
        self.close()

    def close(self) -> None:
        pass
