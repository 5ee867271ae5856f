"""
Deciding what a compaction consumes.

Hosts normally hand the Compactor a ready-made CompactionPreparation. The
helpers here build one from a plain entry list, walking back from the newest
entry and keeping the raw-tail retain buffer uncompressed.
"""

from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from om_compaction.file_ops import MODIFIED_TAG, READ_TAG, extract_file_ops_from_message
from om_compaction.models import (
    BranchSummaryEntry,
    CompactionEntry,
    CustomMessageEntry,
    FileOperations,
    MessageEntry,
)
from om_compaction.parsing import parse_tagged_files
from om_compaction.token_counter import TokenCounter

DEFAULT_RESERVE_TOKENS = 16384

# Roles a compaction may cut before; tool results must stay with their call.
_CUT_ROLES = {"user", "assistant"}


class CompactionPreparation(BaseModel):
    messages_to_summarize: list[dict[str, Any]] = Field(default_factory=list)
    turn_prefix_messages: list[dict[str, Any]] = Field(default_factory=list)
    previous_summary: Optional[str] = None
    first_kept_entry_id: str = ""
    tokens_before: int = 0
    file_ops: FileOperations = Field(default_factory=FileOperations)
    is_split_turn: bool = False
    reserve_tokens: int = DEFAULT_RESERVE_TOKENS


class BranchPreparation(BaseModel):
    """An abandoned branch the user navigated away from."""
    entries_to_summarize: list[Any] = Field(default_factory=list)
    user_wants_summary: bool = True
    custom_instructions: Optional[str] = None
    replace_instructions: bool = False
    reserve_tokens: int = DEFAULT_RESERVE_TOKENS


class BranchMessages(BaseModel):
    messages: list[dict[str, Any]] = Field(default_factory=list)
    file_ops: FileOperations = Field(default_factory=FileOperations)


def entry_to_message(entry) -> Optional[dict[str, Any]]:
    if isinstance(entry, MessageEntry):
        return entry.message
    if isinstance(entry, CustomMessageEntry):
        return {"role": "user", "content": entry.content}
    if isinstance(entry, BranchSummaryEntry):
        return {"role": "user", "content": f"[Branch summary]\n{entry.summary}"}
    return None


def _is_cut_point(entry) -> bool:
    if isinstance(entry, MessageEntry):
        return entry.message.get("role") in _CUT_ROLES
    return isinstance(entry, (CustomMessageEntry, BranchSummaryEntry))


def _is_user_message(entry) -> bool:
    return isinstance(entry, MessageEntry) and entry.message.get("role") == "user"


def find_last_compaction(entries: Sequence) -> int:
    for index in range(len(entries) - 1, -1, -1):
        if isinstance(entries[index], CompactionEntry):
            return index
    return -1


def find_cut_index(entries: Sequence, start: int, keep_tokens: int, token_counter: TokenCounter) -> int:
    """
    Index of the first entry to keep.

    Walks back from the end until `keep_tokens` are accumulated, then moves
    forward to the nearest valid cut point. Returns `start` when the region
    is smaller than the retain buffer.
    """
    end = len(entries)
    if keep_tokens <= 0:
        return end

    accumulated = 0
    for index in range(end - 1, start - 1, -1):
        accumulated += token_counter.count_entry(entries[index])
        if accumulated < keep_tokens:
            continue
        for candidate in range(index, end):
            if _is_cut_point(entries[candidate]):
                return candidate
        return end
    return start


def _collect_file_ops(entries: Sequence, file_ops: FileOperations) -> None:
    for entry in entries:
        if isinstance(entry, MessageEntry) and entry.message.get("role") == "assistant":
            extract_file_ops_from_message(entry.message, file_ops)


def prepare_compaction(
    entries: Sequence,
    token_counter: TokenCounter,
    keep_recent_tokens: int,
    reserve_tokens: int = DEFAULT_RESERVE_TOKENS,
) -> Optional[CompactionPreparation]:
    """Build a preparation from a branch, or None when nothing would be summarized."""
    last_compaction = find_last_compaction(entries)
    previous_summary = entries[last_compaction].summary if last_compaction >= 0 else None
    start = last_compaction + 1

    cut = find_cut_index(entries, start, keep_recent_tokens, token_counter)
    if cut <= start:
        return None

    is_split_turn = False
    prefix_start = cut
    if cut < len(entries) and not _is_user_message(entries[cut]):
        for index in range(cut - 1, start - 1, -1):
            if _is_user_message(entries[index]):
                prefix_start = index
                is_split_turn = True
                break

    summarized = entries[start:prefix_start]
    prefix = entries[prefix_start:cut]

    messages = [m for m in (entry_to_message(e) for e in summarized) if m is not None]
    prefix_messages = [m for m in (entry_to_message(e) for e in prefix) if m is not None]
    if not messages and not prefix_messages:
        return None

    file_ops = FileOperations()
    _collect_file_ops(entries[start:cut], file_ops)

    return CompactionPreparation(
        messages_to_summarize=messages,
        turn_prefix_messages=prefix_messages,
        previous_summary=previous_summary,
        first_kept_entry_id=entries[cut].id if cut < len(entries) else "",
        tokens_before=token_counter.count(previous_summary) + token_counter.estimate_raw_tail(entries),
        file_ops=file_ops,
        is_split_turn=is_split_turn,
        reserve_tokens=reserve_tokens,
    )


def prepare_branch_entries(entries: Sequence, token_budget: int, token_counter: TokenCounter) -> BranchMessages:
    """
    Newest-first selection of branch entries that fit in `token_budget`.

    A budget of 0 means unlimited. File operations recorded in nested branch
    summaries are carried over.
    """
    selected = []
    used = 0
    for entry in reversed(entries):
        message = entry_to_message(entry)
        if message is None:
            continue
        tokens = token_counter.count_entry(entry)
        if token_budget > 0 and selected and used + tokens > token_budget:
            break
        used += tokens
        selected.append((entry, message))
    selected.reverse()

    file_ops = FileOperations()
    _collect_file_ops([entry for entry, _ in selected], file_ops)
    for entry, _ in selected:
        if isinstance(entry, BranchSummaryEntry):
            file_ops.read |= parse_tagged_files(entry.summary, READ_TAG)
            file_ops.edited |= parse_tagged_files(entry.summary, MODIFIED_TAG)

    return BranchMessages(messages=[message for _, message in selected], file_ops=file_ops)
