from om_compaction.models import BranchSummaryEntry, CompactionEntry, MessageEntry
from om_compaction.preparation import find_cut_index, prepare_branch_entries, prepare_compaction
from om_compaction.token_counter import TokenCounter
from om_compaction.transcript import serialize_conversation


def entry(entry_id, role, tokens):
    return MessageEntry(id=entry_id, message={"role": role, "content": "x" * (tokens * 4)})


def test_prepare_compaction_keeps_recent_tail():
    counter = TokenCounter()
    entries = [entry("u1", "user", 3000), entry("a1", "assistant", 1000), entry("u2", "user", 2500)]

    preparation = prepare_compaction(entries, counter, keep_recent_tokens=2000)

    assert preparation.first_kept_entry_id == "u2"
    assert len(preparation.messages_to_summarize) == 2
    assert preparation.turn_prefix_messages == []
    assert preparation.is_split_turn is False
    assert preparation.previous_summary is None
    assert preparation.tokens_before == 6500


def test_prepare_compaction_detects_split_turn():
    counter = TokenCounter()
    entries = [
        entry("u1", "user", 1000),
        entry("a1", "assistant", 1000),
        entry("u2", "user", 500),
        entry("a2", "assistant", 3000),
    ]

    preparation = prepare_compaction(entries, counter, keep_recent_tokens=2000)

    assert preparation.is_split_turn is True
    assert preparation.first_kept_entry_id == "a2"
    assert [m["role"] for m in preparation.messages_to_summarize] == ["user", "assistant"]
    assert [m["role"] for m in preparation.turn_prefix_messages] == ["user"]


def test_prepare_compaction_starts_after_previous_compaction():
    counter = TokenCounter()
    entries = [
        entry("u0", "user", 5000),
        CompactionEntry(id="k1", summary="## Observations\n- 🔴 old"),
        entry("u1", "user", 3000),
        entry("u2", "user", 3000),
    ]

    preparation = prepare_compaction(entries, counter, keep_recent_tokens=2000)

    assert preparation.previous_summary == "## Observations\n- 🔴 old"
    assert len(preparation.messages_to_summarize) == 1
    assert preparation.first_kept_entry_id == "u2"


def test_prepare_compaction_nothing_to_do():
    counter = TokenCounter()
    assert prepare_compaction([], counter, keep_recent_tokens=2000) is None
    # whole region fits in the retain buffer
    assert prepare_compaction([entry("u1", "user", 100)], counter, keep_recent_tokens=2000) is None


def test_find_cut_index_without_retain_buffer():
    counter = TokenCounter()
    entries = [entry("u1", "user", 100), entry("a1", "assistant", 100)]
    assert find_cut_index(entries, 0, 0, counter) == 2


def test_tool_results_are_not_cut_points():
    counter = TokenCounter()
    entries = [
        entry("u1", "user", 3000),
        entry("a1", "assistant", 100),
        entry("t1", "tool_result", 2500),
        entry("a2", "assistant", 100),
    ]
    assert find_cut_index(entries, 0, 2000, counter) == 3


def test_prepare_branch_entries_respects_budget():
    counter = TokenCounter()
    entries = [
        entry("b1", "user", 1000),
        entry("b2", "assistant", 1000),
        BranchSummaryEntry(id="b3", summary="nested\n\n<modified-files>\nsrc/x.py\n</modified-files>"),
    ]

    selected = prepare_branch_entries(entries, token_budget=1500, token_counter=counter)
    assert len(selected.messages) == 2
    assert selected.messages[1]["content"].startswith("[Branch summary]")
    assert selected.file_ops.edited == {"src/x.py"}

    everything = prepare_branch_entries(entries, token_budget=0, token_counter=counter)
    assert len(everything.messages) == 3


def test_serialize_conversation():
    messages = [
        {"role": "user", "content": "Fix it"},
        {"role": "assistant", "content": [
            {"type": "thinking", "thinking": "hmm"},
            {"type": "text", "text": "Done"},
            {"type": "tool_call", "name": "bash", "arguments": {"command": "y" * 600}},
            {"type": "image"},
        ]},
        {"role": "assistant", "content": []},
    ]

    text = serialize_conversation(messages)
    user_part, assistant_part = text.split("\n\n")
    assert user_part == "[user]\nFix it"
    lines = assistant_part.split("\n")
    assert lines[:3] == ["[assistant]", "<thinking>hmm</thinking>", "Done"]
    assert lines[3].startswith("<tool_call name='bash'>")
    assert lines[3].endswith("...</tool_call>")
    assert lines[4] == "[image]"
