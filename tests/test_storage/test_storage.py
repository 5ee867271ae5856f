import pytest
from om_compaction.storage.memory import InMemorySessionStore
from om_compaction.storage.sqlite import SQLiteSessionStore
from om_compaction.models import (
    BranchSummaryEntry,
    CompactionEntry,
    CustomMessageEntry,
    MessageEntry,
)


def sample_entries():
    return [
        MessageEntry(id="m1", message={"role": "user", "content": "Hello"}),
        CustomMessageEntry(id="c1", parent_id="m1", custom_type="note", content=[{"type": "text", "text": "hint"}]),
        CompactionEntry(
            id="k1",
            parent_id="c1",
            summary="## Observations\n- 🔴 x",
            first_kept_entry_id="c1",
            tokens_before=1234,
            details={"strategy": "observational-memory", "schemaVersion": 2},
            from_hook=True,
        ),
        BranchSummaryEntry(id="b1", parent_id="k1", summary="branch", from_id="m1"),
    ]


@pytest.fixture
def memory_store():
    return InMemorySessionStore()


@pytest.mark.asyncio
async def test_memory_store_append_get(memory_store):
    await memory_store.aappend_entries("s1", sample_entries())
    await memory_store.aappend_entry("s2", MessageEntry(id="other", message={"role": "user", "content": "x"}))

    branch = await memory_store.aget_branch("s1")
    assert [e.id for e in branch] == ["m1", "c1", "k1", "b1"]
    assert memory_store.get_branch("missing") == []


def test_memory_store_returns_copy(memory_store):
    memory_store.append_entry("s1", sample_entries()[0])
    memory_store.get_branch("s1").clear()
    assert len(memory_store.get_branch("s1")) == 1


@pytest.mark.asyncio
async def test_sqlite_store(tmp_path):
    db_path = str(tmp_path / "test.db")
    store = SQLiteSessionStore(db_path=db_path)
    await store.ainitialize()

    entries = sample_entries()
    await store.aappend_entries("s1", entries)
    await store.aappend_entry("s2", MessageEntry(id="other", message={"role": "user", "content": "x"}))

    branch = await store.aget_branch("s1")
    assert [e.id for e in branch] == ["m1", "c1", "k1", "b1"]
    assert isinstance(branch[2], CompactionEntry)
    assert branch[2].tokens_before == 1234
    assert branch[2].details["schemaVersion"] == 2
    assert branch[2].from_hook is True
    assert branch[1].content == [{"type": "text", "text": "hint"}]
    assert branch[0].timestamp == entries[0].timestamp

    await store.aclose()


def test_sqlite_store_sync(tmp_path):
    store = SQLiteSessionStore(db_path=str(tmp_path / "sync.db"))
    store.initialize()

    for entry in sample_entries():
        store.append_entry("s1", entry)

    branch = store.get_branch("s1")
    assert [e.type for e in branch] == ["message", "custom_message", "compaction", "branch_summary"]
    assert branch[3].from_id == "m1"
    store.close()


def test_sqlite_default_path_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("OM_DATABASE_URL", str(tmp_path / "env.db"))
    assert SQLiteSessionStore().db_path == str(tmp_path / "env.db")
