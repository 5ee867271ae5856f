from om_compaction.prompts.observer_prompt import OUTPUT_FORMAT

TREE_PROMPT_TEMPLATE = """You are summarizing an abandoned branch from a coding-agent session.

Produce an observational-memory style summary so the active branch can retain important context.

Rules:
- Keep only durable, actionable context.
- Preserve critical file paths, decisions, blockers, and requirements.
- Use priorities: 🔴 critical, 🟡 important, 🟢 informational.
- Every bullet must be grounded in the provided conversation. Never invent file names, commands, errors, dates, or timestamps.
- If exact dates/times are not explicitly present, use "Date: unknown" and omit HH:mm prefixes.
- Output ONLY markdown in this exact structure:

{output_format}

<conversation>
{conversation}
</conversation>{custom_block}"""


def build_tree_prompt(
    conversation_text: str,
    custom_instructions: str = None,
    replace_instructions: bool = False,
) -> str:
    custom_block = ""
    if custom_instructions:
        if replace_instructions:
            custom_block = (
                "\n\nCustom summarization instructions (replace mode, highest priority):\n"
                f"{custom_instructions}"
            )
        else:
            custom_block = f"\n\nAdditional focus from user:\n{custom_instructions}"

    return TREE_PROMPT_TEMPLATE.format(
        output_format=OUTPUT_FORMAT,
        conversation=conversation_text,
        custom_block=custom_block,
    )
