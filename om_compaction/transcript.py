"""Conversation serialization for the summarization prompt."""

from typing import Any

MAX_TOOL_ARGS_CHARS = 500


def _truncate_args(args: Any, max_len: int = MAX_TOOL_ARGS_CHARS) -> str:
    text = str(args)
    if len(text) > max_len:
        return text[:max_len] + "..."
    return text


def _render_block(item: dict[str, Any]) -> str:
    item_type = item.get("type", "")
    if item_type == "text":
        return item.get("text", "")
    if item_type == "thinking":
        return f"<thinking>{item.get('thinking', '')}</thinking>"
    if item_type == "tool_call":
        return f"<tool_call name='{item.get('name', '')}'>{_truncate_args(item.get('arguments', {}))}</tool_call>"
    if item_type == "image":
        return "[image]"
    return ""


def serialize_conversation(messages: list[dict[str, Any]]) -> str:
    """
    Render messages as a linear transcript:

        [user]
        text

        [assistant]
        text
        <tool_call name='read'>{...}</tool_call>
    """
    parts: list[str] = []
    for msg in messages:
        role = msg.get("role", "unknown")
        content = msg.get("content", "")

        if isinstance(content, list):
            blocks = [_render_block(item) for item in content if isinstance(item, dict)]
            blocks = [block for block in blocks if block]
            if blocks:
                parts.append(f"[{role}]\n" + "\n".join(blocks))
        else:
            parts.append(f"[{role}]\n{content}")

    return "\n\n".join(parts)
