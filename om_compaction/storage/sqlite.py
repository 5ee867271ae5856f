import os
import sqlite3
from pathlib import Path

import aiosqlite

from om_compaction.models import SessionEntry, session_entry_adapter
from om_compaction.storage.base import SessionStore

_CREATE_ENTRIES = '''
CREATE TABLE IF NOT EXISTS entries (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    type TEXT NOT NULL,
    timestamp TEXT,
    payload TEXT NOT NULL
)
'''
_CREATE_INDEX = "CREATE INDEX IF NOT EXISTS idx_entries_session ON entries(session_id, seq)"
_INSERT_ENTRY = "INSERT INTO entries (id, session_id, type, timestamp, payload) VALUES (?, ?, ?, ?, ?)"
_SELECT_BRANCH = "SELECT payload FROM entries WHERE session_id = ? ORDER BY seq ASC"


class SQLiteSessionStore(SessionStore):
    """
    SQLite storage using aiosqlite for async, sqlite3 for sync.
    Entries are stored as pydantic JSON, one row per entry.
    """

    def __init__(self, db_path: str = None):
        if not db_path:
            db_path = os.environ.get("OM_DATABASE_URL")

        if not db_path:
            om_dir = Path.home() / ".om_compaction"
            om_dir.mkdir(exist_ok=True)
            db_path = str(om_dir / "sessions.db")

        self.db_path = db_path

    # --- Lifecycle ---

    def initialize(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(_CREATE_ENTRIES)
            conn.execute(_CREATE_INDEX)
            conn.commit()

    async def ainitialize(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(_CREATE_ENTRIES)
            await db.execute(_CREATE_INDEX)
            await db.commit()

    def close(self) -> None:
        pass

    async def aclose(self) -> None:
        pass

    @staticmethod
    def _entry_row(session_id: str, entry: SessionEntry) -> tuple:
        payload = session_entry_adapter.dump_json(entry).decode("utf-8")
        return (entry.id, session_id, entry.type, entry.timestamp.isoformat(), payload)

    @staticmethod
    def _row_to_entry(row) -> SessionEntry:
        return session_entry_adapter.validate_json(row[0])

    # --- Sync Methods ---

    def append_entry(self, session_id: str, entry: SessionEntry) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(_INSERT_ENTRY, self._entry_row(session_id, entry))
            conn.commit()

    def append_entries(self, session_id: str, entries: list[SessionEntry]) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.executemany(_INSERT_ENTRY, [self._entry_row(session_id, e) for e in entries])
            conn.commit()

    def get_branch(self, session_id: str) -> list[SessionEntry]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(_SELECT_BRANCH, (session_id,)).fetchall()
        return [self._row_to_entry(row) for row in rows]

    # --- Async Methods ---

    async def aappend_entry(self, session_id: str, entry: SessionEntry) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(_INSERT_ENTRY, self._entry_row(session_id, entry))
            await db.commit()

    async def aappend_entries(self, session_id: str, entries: list[SessionEntry]) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(_INSERT_ENTRY, [self._entry_row(session_id, e) for e in entries])
            await db.commit()

    async def aget_branch(self, session_id: str) -> list[SessionEntry]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(_SELECT_BRANCH, (session_id,)) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]
