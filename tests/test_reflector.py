import pytest

from om_compaction.models import (
    OMConfig,
    Observation,
    Priority,
    ReflectionLimits,
    ReflectionMode,
)
from om_compaction.parsing import extract_section, parse_observation_lines
from om_compaction.reflector import Reflector, dedupe_and_limit, dedupe_text_lines

GLYPHS = [Priority.CRITICAL, Priority.IMPORTANT, Priority.INFO]


def build_summary(observation_lines, threads=None, actions=None):
    lines = ["## Observations", "Date: unknown"]
    lines += observation_lines
    lines += ["", "## Open Threads"]
    lines += [f"- {t}" for t in (threads or ["Investigate cache misses"])]
    lines += ["", "## Next Action Bias"]
    lines += [f"{i}. {a}" for i, a in enumerate(actions or ["Write the migration"], start=1)]
    return "\n".join(lines)


@pytest.fixture
def reflector():
    return Reflector(OMConfig())


def test_none_mode_is_pass_through(reflector):
    summary = build_summary(["- 🔴 a", "- 🔴 a", "- 🟢 b"])
    result = reflector.reflect(summary, ReflectionMode.NONE)
    assert result.summary == summary
    assert (result.before, result.after, result.dropped) == (3, 3, 0)


def test_fifty_duplicates_collapse_to_latest_red(reflector):
    lines = []
    for i in range(50):
        glyph = GLYPHS[i % 3]
        lines.append(f"- {glyph.value} {i // 10}:0{i % 10} The API key lives in `.env`")
    summary = build_summary(lines)

    result = reflector.reflect(summary, ReflectionMode.THRESHOLD)
    section = extract_section(result.summary, "## Observations", "## Open Threads")
    kept = parse_observation_lines(section)

    assert len(kept) == 1
    assert kept[0].priority is Priority.CRITICAL
    # red entries are i = 0, 3, ..., 48; the last one is i = 48
    assert kept[0].body == "4:08 The API key lives in `.env`"
    assert (result.before, result.after, result.dropped) == (50, 1, 49)


def test_duplicate_without_red_keeps_highest_priority(reflector):
    summary = build_summary(["- 🟢 Uses pnpm", "- 🟡 uses   PNPM", "- 🟢 USES pnpm"])
    result = reflector.reflect(summary, ReflectionMode.THRESHOLD)
    assert "- 🟡 uses   PNPM" in result.summary
    assert result.after == 1


def test_output_keys_are_unique_and_ordered(reflector):
    summary = build_summary([
        "- 🟢 low one",
        "- 🔴 must keep",
        "- 🟡 middle",
        "- 🔴 also critical",
        "- 🟢 low one",
    ])
    result = reflector.reflect(summary, ReflectionMode.THRESHOLD)
    section = extract_section(result.summary, "## Observations", "## Open Threads")
    kept = parse_observation_lines(section)

    keys = [o.key for o in kept]
    assert len(keys) == len(set(keys))
    assert [o.body for o in kept] == ["also critical", "must keep", "middle", "low one"]
    assert section.startswith("Date: reflected")


@pytest.mark.parametrize("mode, caps", [
    (ReflectionMode.THRESHOLD, (96, 40, 16)),
    (ReflectionMode.FORCED, (72, 28, 8)),
])
def test_priority_caps(reflector, mode, caps):
    lines = []
    for glyph in GLYPHS:
        lines += [f"- {glyph.value} {glyph.label} note {n}" for n in range(120)]
    result = reflector.reflect(build_summary(lines), mode)

    section = extract_section(result.summary, "## Observations", "## Open Threads")
    kept = parse_observation_lines(section)
    counts = tuple(sum(1 for o in kept if o.priority is p) for p in GLYPHS)
    assert counts == caps
    assert result.dropped == 360 - sum(caps)


def test_caps_keep_most_recent():
    observations = [
        Observation(priority=Priority.INFO, body=f"note {i}", key=f"note {i}", source_index=i)
        for i in range(5)
    ]
    kept = dedupe_and_limit(observations, ReflectionLimits(red=1, yellow=1, green=2))
    assert [o.body for o in kept] == ["note 4", "note 3"]


def test_no_survivors_emits_placeholder(reflector):
    result = reflector.reflect(build_summary(["not a bullet"]), ReflectionMode.FORCED)
    assert "- 🟡 No durable observations extracted." in result.summary
    assert result.after == 0


def test_open_threads_and_actions_are_deduped_and_capped(reflector):
    threads = [f"thread {i % 15}" for i in range(30)]
    actions = ["Run tests", "run   TESTS", "Deploy", "Tag release", "Notify team", "Celebrate"]
    summary = build_summary(["- 🔴 x"], threads=threads, actions=actions)

    result = reflector.reflect(summary, ReflectionMode.THRESHOLD)
    open_threads = extract_section(result.summary, "## Open Threads", "## Next Action Bias")
    next_actions = extract_section(result.summary, "## Next Action Bias")

    assert open_threads.split("\n") == [f"- thread {i}" for i in range(12)]
    assert next_actions.split("\n") == [
        "1. Run tests",
        "2. Deploy",
        "3. Tag release",
        "4. Notify team",
    ]


def test_empty_sections_get_placeholders(reflector):
    summary = "## Observations\n- 🔴 keep me\n## Open Threads\n## Next Action Bias\n"
    result = reflector.reflect(summary, ReflectionMode.THRESHOLD)
    assert "## Open Threads\n- (none)" in result.summary
    assert result.summary.endswith("1. Continue from the latest user request and retained recent context.")


def test_dedupe_text_lines():
    assert dedupe_text_lines(["A  b", "a b", "", "c"], max_items=5) == ["A  b", "c"]
    assert dedupe_text_lines(["x", "y", "z"], max_items=2) == ["x", "y"]
