OBSERVER_SYSTEM_PROMPT = """You are a context summarization assistant for a coding agent.
Produce concise markdown summaries only.
Use only information explicitly present in the provided conversation context.
If information is missing, use "unknown" rather than guessing.
Never call tools.
Follow the user's format instructions exactly."""

OUTPUT_FORMAT = """## Observations
Date: unknown
- 🔴 [observation]
- 🟡 [observation]
- 🟢 [observation]

## Open Threads
- [unfinished work item]
- [or "(none)"]

## Next Action Bias
1. [most likely immediate next action]
2. [optional second action]"""

SPLIT_TURN_NOTE = (
    "NOTE: This compaction split a large turn. "
    "Keep enough context to understand the retained recent suffix."
)

FORCED_REFLECTION_NOTE = (
    "FORCED REFLECTOR MODE: aggressively deduplicate observations "
    "and prune stale low-priority context."
)

EMPTY_OUTPUT_REMINDER = (
    "IMPORTANT: Output ONLY markdown in the required three-section format. "
    "Do not return empty output."
)

COMPACTION_PROMPT_TEMPLATE = """You are an observational memory compressor for a coding agent.

Your job:
- Convert conversation history into durable observation logs.
- Keep facts/constraints/decisions needed for future work.
- Prefer concise, high-signal lines.
- Preserve critical names, file paths, APIs, errors, and deadlines.
- Preserve useful previous observations unless contradicted.

Rules:
1) Output ONLY markdown in the exact section structure below.
2) Use emoji priorities per line:
   - 🔴 critical constraints, blockers, deadlines, irreversible decisions
   - 🟡 important but possibly evolving context
   - 🟢 low-priority informational context
3) Every bullet must be grounded in the provided conversation or previous observations. Never invent file names, commands, errors, dates, or timestamps.
4) If exact dates/times are not explicitly present, use "Date: unknown" and omit HH:mm prefixes.
5) Keep each bullet single-line and concrete.
6) Do not answer the user. Do not continue the conversation.

Required output format:

{output_format}

{split_turn_note}
{forced_reflection_note}

{previous_block}<conversation>
{conversation}
</conversation>{custom_block}"""


def build_compaction_prompt(
    conversation_text: str,
    previous_summary: str = None,
    custom_instructions: str = None,
    is_split_turn: bool = False,
    force_reflect: bool = False,
) -> str:
    """Prompt for a compaction pass. `previous_summary` must already have file tags stripped."""
    previous_block = ""
    if previous_summary:
        previous_block = f"<previous-observations>\n{previous_summary}\n</previous-observations>\n\n"

    custom_block = ""
    if custom_instructions:
        custom_block = f"\n\nAdditional focus from user:\n{custom_instructions}"

    return COMPACTION_PROMPT_TEMPLATE.format(
        output_format=OUTPUT_FORMAT,
        split_turn_note=SPLIT_TURN_NOTE if is_split_turn else "",
        forced_reflection_note=FORCED_REFLECTION_NOTE if force_reflect else "",
        previous_block=previous_block,
        conversation=conversation_text,
        custom_block=custom_block,
    )


def with_empty_output_reminder(prompt: str) -> str:
    return f"{prompt}\n\n{EMPTY_OUTPUT_REMINDER}"
