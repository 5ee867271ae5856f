from om_compaction.prompts.observer_prompt import (
    OBSERVER_SYSTEM_PROMPT,
    build_compaction_prompt,
    with_empty_output_reminder,
)
from om_compaction.prompts.tree_prompt import build_tree_prompt

__all__ = [
    "OBSERVER_SYSTEM_PROMPT",
    "build_compaction_prompt",
    "build_tree_prompt",
    "with_empty_output_reminder",
]
