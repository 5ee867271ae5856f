"""File operation tracking carried across compactions."""

from typing import Any, Optional

from om_compaction.models import FileOperations, FileOperationSet
from om_compaction.parsing import parse_tagged_files

READ_TAG = "read-files"
MODIFIED_TAG = "modified-files"


def extract_file_ops_from_message(message: dict[str, Any], file_ops: FileOperations) -> None:
    """Record read/write/edit tool calls from an assistant message."""
    content = message.get("content", [])
    if not isinstance(content, list):
        return

    for item in content:
        if not isinstance(item, dict) or item.get("type") != "tool_call":
            continue

        args = item.get("arguments", {})
        if not isinstance(args, dict):
            continue
        path = args.get("file_path", "") or args.get("path", "")
        if not path:
            continue

        name = item.get("name", "")
        if name == "read":
            file_ops.read.add(path)
        elif name == "write":
            file_ops.written.add(path)
        elif name == "edit":
            file_ops.edited.add(path)


def merge_file_operations(file_ops: FileOperations, previous_summary: Optional[str] = None) -> FileOperationSet:
    """
    Fold a new batch of operations into the sets embedded in the previous summary.

    A path that was ever modified is reported as modified only, even if an
    earlier or concurrent operation merely read it.
    """
    previous_read = parse_tagged_files(previous_summary, READ_TAG)
    previous_modified = parse_tagged_files(previous_summary, MODIFIED_TAG)

    current_modified = file_ops.edited | file_ops.written
    current_read = file_ops.read - current_modified

    modified = previous_modified | current_modified
    read = (previous_read | current_read) - modified
    return FileOperationSet(read=read, modified=modified)


def render_file_operations(file_set: FileOperationSet) -> str:
    sections = []
    if file_set.read:
        sections.append(f"<{READ_TAG}>\n" + "\n".join(sorted(file_set.read)) + f"\n</{READ_TAG}>")
    if file_set.modified:
        sections.append(f"<{MODIFIED_TAG}>\n" + "\n".join(sorted(file_set.modified)) + f"\n</{MODIFIED_TAG}>")
    if not sections:
        return ""
    return "\n\n" + "\n\n".join(sections)


def format_file_operations(file_ops: FileOperations, previous_summary: Optional[str] = None) -> str:
    """Tag blocks to append after the summary body; empty string when there is nothing to list."""
    return render_file_operations(merge_file_operations(file_ops, previous_summary))
