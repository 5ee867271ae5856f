"""
Canonical three-section observation summary.

    ## Observations
    Date: <unknown|reflected>
    - 🔴|🟡|🟢 <single-line text>
    ## Open Threads
    - <text>
    ## Next Action Bias
    1. <text>
"""

from om_compaction.models import Observation, Priority

OBSERVATIONS_HEADING = "## Observations"
OPEN_THREADS_HEADING = "## Open Threads"
NEXT_ACTION_HEADING = "## Next Action Bias"
RAW_OUTPUT_HEADING = "## Raw Observer Output"

SECTION_HEADINGS = (OBSERVATIONS_HEADING, OPEN_THREADS_HEADING, NEXT_ACTION_HEADING)

FALLBACK_OPEN_THREAD = "Continue from retained recent context."
FALLBACK_NEXT_ACTION = "Continue the latest user request from recent raw context."
EMPTY_SOURCE_OBSERVATION = "Unable to extract observations from compaction source."
NON_STANDARD_OBSERVATION = "Model returned non-standard output; preserving raw output below."

NO_OBSERVATIONS_PLACEHOLDER = "No durable observations extracted."
NO_THREADS_PLACEHOLDER = "(none)"
NO_ACTIONS_PLACEHOLDER = "Continue from the latest user request and retained recent context."


def _fallback_summary(observation: str) -> list[str]:
    return [
        OBSERVATIONS_HEADING,
        "Date: unknown",
        f"- {Priority.IMPORTANT.value} {observation}",
        "",
        OPEN_THREADS_HEADING,
        f"- {FALLBACK_OPEN_THREAD}",
        "",
        NEXT_ACTION_HEADING,
        f"1. {FALLBACK_NEXT_ACTION}",
    ]


def has_canonical_sections(text: str) -> bool:
    """All three headings present, in order."""
    position = -1
    for heading in SECTION_HEADINGS:
        position = text.find(heading, position + 1)
        if position == -1:
            return False
    return True


def normalize_summary(raw: str) -> str:
    """
    Force any model output into the canonical shape.

    Well-formed output is kept as is. Anything else gets the canned sections
    plus a trailing raw-output section, so nothing the model said is lost.
    """
    text = (raw or "").strip()
    if not text:
        return "\n".join(_fallback_summary(EMPTY_SOURCE_OBSERVATION))

    if has_canonical_sections(text):
        return text

    lines = _fallback_summary(NON_STANDARD_OBSERVATION)
    lines.extend(["", RAW_OUTPUT_HEADING, text])
    return "\n".join(lines)


def render_summary(
    observations: list[Observation],
    open_threads: list[str],
    next_actions: list[str],
    date: str = "reflected",
) -> str:
    lines = [OBSERVATIONS_HEADING, f"Date: {date}"]
    if observations:
        lines.extend(obs.to_line() for obs in observations)
    else:
        lines.append(f"- {Priority.IMPORTANT.value} {NO_OBSERVATIONS_PLACEHOLDER}")

    lines.extend(["", OPEN_THREADS_HEADING])
    lines.extend(f"- {line}" for line in (open_threads or [NO_THREADS_PLACEHOLDER]))

    lines.extend(["", NEXT_ACTION_HEADING])
    actions = next_actions or [NO_ACTIONS_PLACEHOLDER]
    lines.extend(f"{index}. {line}" for index, line in enumerate(actions, start=1))
    return "\n".join(lines)
