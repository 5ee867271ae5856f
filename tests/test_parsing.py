from om_compaction.models import Priority
from om_compaction.parsing import (
    LineKind,
    count_observation_bullets,
    extract_section,
    normalize_observation_key,
    parse_observation_lines,
    parse_tagged_files,
    scan_line,
    strip_file_tags,
)
from om_compaction.summary import (
    RAW_OUTPUT_HEADING,
    has_canonical_sections,
    normalize_summary,
    render_summary,
)

WELL_FORMED = """## Observations
Date: 2026-03-01
- 🔴 User requires Python 3.9 compatibility
- 🟡 09:15 Switched the store to SQLite
- 🟢 Tests live in tests/

## Open Threads
- Flaky login test

## Next Action Bias
1. Fix the login test"""


def test_scan_line_kinds():
    assert scan_line("## Observations").kind is LineKind.HEADING
    assert scan_line("Date: reflected").kind is LineKind.DATE
    assert scan_line("").kind is LineKind.BLANK
    assert scan_line("- plain item").kind is LineKind.ITEM
    assert scan_line("just text").kind is LineKind.TEXT

    bullet = scan_line("  -🔴  Deadline is Friday ")
    assert bullet.kind is LineKind.BULLET
    assert bullet.priority is Priority.CRITICAL
    assert bullet.text == "Deadline is Friday"

    numbered = scan_line("12. Ship it")
    assert numbered.kind is LineKind.NUMBERED
    assert numbered.number == 12
    assert numbered.text == "Ship it"


def test_bullet_needs_space_after_glyph():
    assert scan_line("- 🔴x").kind is not LineKind.BULLET
    empty = scan_line("- 🔴 ")
    assert empty.kind is LineKind.BULLET
    assert empty.text == ""


def test_empty_bullets_are_counted_but_not_parsed():
    section = "- 🔴 \n- 🟡 Real observation\n- 🟢x"
    assert count_observation_bullets(section) == 2
    assert [o.body for o in parse_observation_lines(section)] == ["Real observation"]


def test_extract_section():
    text = "## A\n\nalpha\n## B\nbeta"
    assert extract_section(text, "## A", "## B") == "alpha"
    assert extract_section(text, "## B") == "beta"
    assert extract_section(text, "## C") == ""


def test_extract_section_is_idempotent():
    section = extract_section(WELL_FORMED, "## Open Threads", "## Next Action Bias")
    rebuilt = "## Open Threads\n" + section
    assert extract_section(rebuilt, "## Open Threads", "## Next Action Bias") == section


def test_normalize_observation_key():
    assert normalize_observation_key("09:15 Switched to `SQLite`") == "switched to sqlite"
    assert normalize_observation_key("9:15   Use **bold**  (maybe)") == "use bold maybe"
    assert normalize_observation_key("10:00") == "10:00"


def test_parse_observation_lines():
    section = extract_section(WELL_FORMED, "## Observations", "## Open Threads")
    observations = parse_observation_lines(section)

    assert [o.priority for o in observations] == [Priority.CRITICAL, Priority.IMPORTANT, Priority.INFO]
    assert observations[1].body == "09:15 Switched the store to SQLite"
    assert observations[1].key == "switched the store to sqlite"
    assert observations[0].source_index < observations[2].source_index
    assert count_observation_bullets(section) == 3


def test_parse_skips_bullets_with_empty_key():
    observations = parse_observation_lines("- 🟢 ``**``\n- 🟢 real one")
    assert len(observations) == 1
    assert observations[0].body == "real one"


def test_file_tags():
    summary = WELL_FORMED + "\n\n<read-files>\nb.py\na.py\n</read-files>\n\n<modified-files>\nc.py\n</modified-files>"
    assert parse_tagged_files(summary, "read-files") == {"a.py", "b.py"}
    assert parse_tagged_files(summary, "modified-files") == {"c.py"}
    assert parse_tagged_files(None, "read-files") == set()
    assert strip_file_tags(summary) == WELL_FORMED


def test_normalize_keeps_well_formed_output():
    assert normalize_summary("\n" + WELL_FORMED + "\n\n") == WELL_FORMED


def test_normalize_empty_output():
    normalized = normalize_summary("   ")
    assert has_canonical_sections(normalized)
    assert "Date: unknown" in normalized
    assert "- 🟡 Unable to extract observations from compaction source." in normalized
    assert "1. Continue the latest user request from recent raw context." in normalized


def test_normalize_preserves_non_standard_output():
    raw = "The user fixed a bug.\nNothing else happened."
    normalized = normalize_summary(raw)
    assert has_canonical_sections(normalized)
    assert "Model returned non-standard output" in normalized
    assert normalized.endswith(RAW_OUTPUT_HEADING + "\n" + raw)


def test_has_canonical_sections_checks_order():
    assert has_canonical_sections(WELL_FORMED)
    out_of_order = "## Next Action Bias\n1. x\n## Open Threads\n- y\n## Observations\n- 🔴 z"
    assert not has_canonical_sections(out_of_order)


def test_normalize_wraps_out_of_order_sections():
    out_of_order = "## Next Action Bias\n1. x\n\n## Open Threads\n- y\n\n## Observations\n- 🔴 z"
    normalized = normalize_summary(out_of_order)
    assert has_canonical_sections(normalized)
    assert normalized.startswith("## Observations\nDate: unknown\n")
    assert normalized.endswith(RAW_OUTPUT_HEADING + "\n" + out_of_order)


def test_render_summary_placeholders():
    rendered = render_summary([], [], [])
    assert rendered.startswith("## Observations\nDate: reflected\n- 🟡 No durable observations extracted.")
    assert "## Open Threads\n- (none)" in rendered
    assert rendered.endswith("1. Continue from the latest user request and retained recent context.")
