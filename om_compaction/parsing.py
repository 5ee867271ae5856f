"""
Line grammar for observation summaries.

A summary is scanned one line at a time. Each line is classified as one of:

    heading    ## <title>
    date       Date: <value>
    bullet     - <glyph> <text>      (glyph is 🔴, 🟡 or 🟢; text may be empty)
    item       - <text>
    numbered   <n>. <text>
    blank / text

Section extraction, observation parsing and file-tag handling used by the
normalizer, the reflector and the token counter all go through this module.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

from om_compaction.models import Observation, Priority

_KEY_STRIP_CHARS = set("`*_~()[]{}<>")
_DIGITS = "0123456789"

FILE_TAGS = ("read-files", "modified-files")


class LineKind(Enum):
    BLANK = "blank"
    HEADING = "heading"
    DATE = "date"
    BULLET = "bullet"
    ITEM = "item"
    NUMBERED = "numbered"
    TEXT = "text"


@dataclass
class ParsedLine:
    kind: LineKind
    text: str = ""
    priority: Optional[Priority] = None
    number: Optional[int] = None


def _scan_bullet(rest: str) -> Optional[ParsedLine]:
    # rest is everything after the leading dash
    rest = rest.lstrip()
    for priority in Priority:
        if not rest.startswith(priority.value):
            continue
        after = rest[len(priority.value):]
        # Glyph then whitespace or end of line; the text may be empty
        if not after or after[:1].isspace():
            return ParsedLine(LineKind.BULLET, after.strip(), priority=priority)
        return None
    return None


def _scan_numbered(stripped: str) -> Optional[ParsedLine]:
    i = 0
    while i < len(stripped) and stripped[i] in _DIGITS:
        i += 1
    if i == 0 or stripped[i:i + 1] != ".":
        return None
    after = stripped[i + 1:]
    if not after[:1].isspace() or not after.strip():
        return None
    return ParsedLine(LineKind.NUMBERED, after.strip(), number=int(stripped[:i]))


def scan_line(line: str) -> ParsedLine:
    stripped = line.strip()
    if not stripped:
        return ParsedLine(LineKind.BLANK)
    if stripped.startswith("## "):
        return ParsedLine(LineKind.HEADING, stripped[3:].strip())
    if stripped.startswith("Date:"):
        return ParsedLine(LineKind.DATE, stripped[len("Date:"):].strip())
    if stripped.startswith("-"):
        bullet = _scan_bullet(stripped[1:])
        if bullet:
            return bullet
        if stripped.startswith("- ") and stripped[2:].strip():
            return ParsedLine(LineKind.ITEM, stripped[2:].strip())
        return ParsedLine(LineKind.TEXT, stripped)
    numbered = _scan_numbered(stripped)
    if numbered:
        return numbered
    return ParsedLine(LineKind.TEXT, stripped)


def scan_lines(text: str) -> Iterator[ParsedLine]:
    for line in text.split("\n"):
        yield scan_line(line)


def extract_section(text: str, heading: str, next_heading: str = None) -> str:
    """
    Return the body under `heading`, up to `next_heading` or the end of text.

    Empty string when `heading` does not occur.
    """
    start = text.find(heading)
    if start == -1:
        return ""

    content = text[start + len(heading):]
    if next_heading:
        end = content.find(next_heading)
        if end != -1:
            content = content[:end]
    return content.strip()


def count_observation_bullets(text: str) -> int:
    return sum(1 for line in scan_lines(text) if line.kind is LineKind.BULLET)


def _strip_time_prefix(body: str) -> str:
    # "9:05 text" / "09:05 text" -> "text"
    head, sep, tail = body.partition(" ")
    if not sep:
        return body
    hours, colon, minutes = head.partition(":")
    if (
        colon
        and 1 <= len(hours) <= 2
        and len(minutes) == 2
        and all(c in _DIGITS for c in hours + minutes)
    ):
        return tail.lstrip()
    return body


def normalize_observation_key(body: str) -> str:
    """Dedupe identity of an observation body."""
    text = _strip_time_prefix(body).lower()
    text = "".join(c for c in text if c not in _KEY_STRIP_CHARS)
    return " ".join(text.split())


def parse_observation_lines(section: str) -> list[Observation]:
    """Parse every bullet of an Observations section; other lines are skipped."""
    observations: list[Observation] = []
    for index, line in enumerate(scan_lines(section)):
        if line.kind is not LineKind.BULLET:
            continue
        key = normalize_observation_key(line.text)
        if not key:
            continue
        observations.append(Observation(
            priority=line.priority,
            body=line.text,
            key=key,
            source_index=index,
        ))
    return observations


# --- File tags ---

def _tag_block_pattern(tag: str) -> re.Pattern:
    return re.compile(rf"\n?<{tag}>\n([\s\S]*?)\n</{tag}>")


_TAG_PATTERNS = {tag: _tag_block_pattern(tag) for tag in FILE_TAGS}


def strip_file_tags(summary: str) -> str:
    """Remove <read-files>/<modified-files> blocks from a summary."""
    for pattern in _TAG_PATTERNS.values():
        summary = pattern.sub("", summary)
    return summary.strip()


def parse_tagged_files(summary: Optional[str], tag: str) -> set[str]:
    """Paths listed inside the first `<tag>` block of a summary."""
    if not summary:
        return set()
    match = _TAG_PATTERNS[tag].search(summary)
    if not match:
        return set()
    return {line.strip() for line in match.group(1).split("\n") if line.strip()}
