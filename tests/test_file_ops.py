from om_compaction.file_ops import (
    extract_file_ops_from_message,
    format_file_operations,
    merge_file_operations,
)
from om_compaction.models import FileOperations


def tool_call(name, **arguments):
    return {"type": "tool_call", "name": name, "arguments": arguments}


def test_extract_file_ops_from_message():
    ops = FileOperations()
    message = {
        "role": "assistant",
        "content": [
            {"type": "text", "text": "Reading files"},
            tool_call("read", path="src/a.py"),
            tool_call("write", file_path="src/b.py"),
            tool_call("edit", path="src/c.py"),
            tool_call("bash", command="ls"),
            tool_call("read"),
        ],
    }
    extract_file_ops_from_message(message, ops)
    assert ops.read == {"src/a.py"}
    assert ops.written == {"src/b.py"}
    assert ops.edited == {"src/c.py"}


def test_extract_ignores_string_content():
    ops = FileOperations()
    extract_file_ops_from_message({"role": "assistant", "content": "plain"}, ops)
    assert ops == FileOperations()


def test_modified_wins_over_read():
    ops = FileOperations(read={"a.py", "b.py"}, edited={"a.py"}, written={"c.py"})
    merged = merge_file_operations(ops)
    assert merged.read == {"b.py"}
    assert merged.modified == {"a.py", "c.py"}


def test_merge_with_previous_summary_keeps_sets_disjoint():
    previous = (
        "## Observations\n- 🟢 x\n\n"
        "<read-files>\nold_read.py\nnow_edited.py\n</read-files>\n\n"
        "<modified-files>\nold_mod.py\n</modified-files>"
    )
    ops = FileOperations(read={"old_mod.py", "new_read.py"}, edited={"now_edited.py"})
    merged = merge_file_operations(ops, previous)

    assert merged.modified == {"old_mod.py", "now_edited.py"}
    assert merged.read == {"old_read.py", "new_read.py"}
    assert not merged.read & merged.modified


def test_format_file_operations():
    ops = FileOperations(read={"z.py", "a.py"}, edited={"m.py"})
    assert format_file_operations(ops) == (
        "\n\n<read-files>\na.py\nz.py\n</read-files>"
        "\n\n<modified-files>\nm.py\n</modified-files>"
    )


def test_format_omits_empty_blocks():
    assert format_file_operations(FileOperations()) == ""
    assert format_file_operations(FileOperations(written={"w.py"})) == (
        "\n\n<modified-files>\nw.py\n</modified-files>"
    )
