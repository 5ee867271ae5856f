import math
from typing import Any, Callable, Optional, Sequence

from om_compaction.models import (
    BranchSummaryEntry,
    CompactionEntry,
    CustomMessageEntry,
    MessageEntry,
)
from om_compaction.parsing import strip_file_tags

CHARS_PER_TOKEN = 4
IMAGE_ESTIMATED_CHARS = 4800  # ~1,200 tokens at 4 chars/token


def _chars_to_tokens(chars: int) -> int:
    return math.ceil(chars / CHARS_PER_TOKEN)


def default_message_estimator(message: dict[str, Any]) -> int:
    """Character heuristic over text, thinking, tool-call and image blocks."""
    content = message.get("content", "")
    if isinstance(content, str):
        return _chars_to_tokens(len(content))

    chars = 0
    for item in content or []:
        if not isinstance(item, dict):
            continue
        item_type = item.get("type", "")
        if item_type == "text":
            chars += len(item.get("text", ""))
        elif item_type == "thinking":
            chars += len(item.get("thinking", ""))
        elif item_type == "tool_call":
            chars += len(item.get("name", "")) + len(str(item.get("arguments", {})))
        elif item_type == "image":
            chars += IMAGE_ESTIMATED_CHARS
    return _chars_to_tokens(chars)


class TokenCounter:
    """
    Cheap, deterministic token estimates for text and session entries.

    Plain text uses a fixed 4 characters per token. Ordinary messages go
    through `message_estimator`, which a host can replace with its own
    full-fidelity estimate.
    """

    def __init__(self, message_estimator: Optional[Callable[[dict[str, Any]], int]] = None):
        self.message_estimator = message_estimator or default_message_estimator

    def count(self, text: Optional[str]) -> int:
        if not text or not text.strip():
            return 0
        return _chars_to_tokens(len(text))

    def count_message(self, message: dict[str, Any]) -> int:
        return self.message_estimator(message)

    def count_custom_message(self, entry: CustomMessageEntry) -> int:
        if isinstance(entry.content, str):
            return _chars_to_tokens(len(entry.content))
        chars = 0
        for block in entry.content:
            if block.get("type") == "text":
                chars += len(block.get("text", ""))
            elif block.get("type") == "image":
                chars += IMAGE_ESTIMATED_CHARS
        return _chars_to_tokens(chars)

    def count_entry(self, entry) -> int:
        if isinstance(entry, MessageEntry):
            return self.count_message(entry.message)
        if isinstance(entry, CustomMessageEntry):
            return self.count_custom_message(entry)
        if isinstance(entry, BranchSummaryEntry):
            return self.count(strip_file_tags(entry.summary))
        return 0

    def count_observations(self, summary: Optional[str]) -> int:
        """Size of an observation block, file tags excluded."""
        if not summary:
            return 0
        return self.count(strip_file_tags(summary))

    def estimate_raw_tail(self, entries: Sequence) -> int:
        """Tokens of everything after the most recent compaction entry."""
        start = 0
        for index in range(len(entries) - 1, -1, -1):
            if isinstance(entries[index], CompactionEntry):
                start = index + 1
                break
        return sum(self.count_entry(entry) for entry in entries[start:])


def format_token_count(tokens: int) -> str:
    return f"{tokens:,} tokens"
