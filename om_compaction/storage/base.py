from abc import ABC, abstractmethod

from om_compaction.models import SessionEntry


class SessionStore(ABC):
    """
    Abstract interface for the entry log of a session branch.

    Entries come back in append order, oldest first.
    """

    # Entry operations
    @abstractmethod
    async def aget_branch(self, session_id: str) -> list[SessionEntry]: ...
    @abstractmethod
    def get_branch(self, session_id: str) -> list[SessionEntry]: ...

    @abstractmethod
    async def aappend_entry(self, session_id: str, entry: SessionEntry) -> None: ...
    @abstractmethod
    def append_entry(self, session_id: str, entry: SessionEntry) -> None: ...

    async def aappend_entries(self, session_id: str, entries: list[SessionEntry]) -> None:
        for entry in entries:
            await self.aappend_entry(session_id, entry)

    def append_entries(self, session_id: str, entries: list[SessionEntry]) -> None:
        for entry in entries:
            self.append_entry(session_id, entry)

    # Lifecycle
    @abstractmethod
    async def ainitialize(self) -> None: ...
    @abstractmethod
    def initialize(self) -> None: ...

    @abstractmethod
    async def aclose(self) -> None: ...
    @abstractmethod
    def close(self) -> None: ...
