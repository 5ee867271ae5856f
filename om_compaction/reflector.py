import logging

from om_compaction.models import (
    OMConfig,
    Observation,
    Priority,
    ReflectionLimits,
    ReflectionMode,
    ReflectionResult,
)
from om_compaction.parsing import (
    LineKind,
    count_observation_bullets,
    extract_section,
    parse_observation_lines,
    scan_lines,
)
from om_compaction.summary import (
    NEXT_ACTION_HEADING,
    OBSERVATIONS_HEADING,
    OPEN_THREADS_HEADING,
    render_summary,
)

logger = logging.getLogger("om_compaction.reflector")


def _recency_order(obs: Observation) -> tuple[int, int]:
    return (obs.priority.rank, obs.source_index)


def dedupe_and_limit(observations: list[Observation], limits: ReflectionLimits) -> list[Observation]:
    """
    Keep one observation per key, then cap each priority.

    On a key collision the higher priority wins; equal priorities keep the
    more recent line. Output is ordered by priority, then recency.
    """
    by_key: dict[str, Observation] = {}
    for obs in observations:
        previous = by_key.get(obs.key)
        if previous is None or _recency_order(obs) > _recency_order(previous):
            by_key[obs.key] = obs

    unique = sorted(by_key.values(), key=_recency_order, reverse=True)

    counts = {priority: 0 for priority in Priority}
    picked: list[Observation] = []
    for obs in unique:
        if counts[obs.priority] >= limits.for_priority(obs.priority):
            continue
        counts[obs.priority] += 1
        picked.append(obs)

    return sorted(picked, key=_recency_order, reverse=True)


def dedupe_text_lines(lines: list[str], max_items: int) -> list[str]:
    """Case/whitespace-insensitive dedupe, first occurrence wins."""
    seen: set[str] = set()
    output: list[str] = []
    for line in lines:
        normalized = " ".join(line.lower().split())
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        output.append(line.strip())
        if len(output) >= max_items:
            break
    return output


def _list_items(section: str) -> list[str]:
    items = []
    for line in scan_lines(section):
        if line.kind is LineKind.ITEM:
            items.append(line.text)
        elif line.kind is LineKind.BULLET and line.text:
            items.append(f"{line.priority.value} {line.text}")
    return items


def _numbered_items(section: str) -> list[str]:
    return [line.text for line in scan_lines(section) if line.kind is LineKind.NUMBERED]


class Reflector:
    """
    The Reflector garbage-collects the observation log.

    Deterministic: duplicates are collapsed and each priority is capped, so
    the log stays bounded no matter how often the model repeats itself.
    """

    def __init__(self, config: OMConfig):
        self.config = config

    def limits_for(self, mode: ReflectionMode) -> ReflectionLimits:
        if mode is ReflectionMode.FORCED:
            return self.config.forced_limits
        return self.config.threshold_limits

    def reflect(self, summary: str, mode: ReflectionMode) -> ReflectionResult:
        if mode is ReflectionMode.NONE:
            count = count_observation_bullets(summary)
            return ReflectionResult(summary=summary, before=count, after=count, dropped=0)

        observations_section = extract_section(summary, OBSERVATIONS_HEADING, OPEN_THREADS_HEADING)
        open_threads_section = extract_section(summary, OPEN_THREADS_HEADING, NEXT_ACTION_HEADING)
        next_action_section = extract_section(summary, NEXT_ACTION_HEADING)

        parsed = parse_observation_lines(observations_section)
        reflected = dedupe_and_limit(parsed, self.limits_for(mode))

        open_threads = dedupe_text_lines(_list_items(open_threads_section), self.config.max_open_threads)
        next_actions = dedupe_text_lines(_numbered_items(next_action_section), self.config.max_next_actions)

        result = ReflectionResult(
            summary=render_summary(reflected, open_threads, next_actions, date="reflected"),
            before=len(parsed),
            after=len(reflected),
            dropped=max(0, len(parsed) - len(reflected)),
        )
        logger.debug(
            "Reflection (%s): %d -> %d observations", mode.value, result.before, result.after
        )
        return result
