"""
Plain-text status and view reports for a session branch.
"""

from datetime import datetime
from typing import Optional, Sequence

from pydantic import BaseModel

from om_compaction.exceptions import ConfigError
from om_compaction.models import (
    AUTO_TOKENS_MAX,
    AUTO_TOKENS_MIN,
    BranchSummaryDetails,
    BranchSummaryEntry,
    CompactionDetails,
    CompactionEntry,
    TriggerState,
    parse_details,
)
from om_compaction.parsing import extract_section, strip_file_tags
from om_compaction.summary import OBSERVATIONS_HEADING, OPEN_THREADS_HEADING
from om_compaction.token_counter import TokenCounter, format_token_count

VIEW_DEFAULT_LINES = 160
VIEW_MIN_LINES = 10
VIEW_MAX_LINES = 400


class CompactionSnapshot(BaseModel):
    id: str
    timestamp: datetime
    tokens_before: int
    from_hook: bool
    details: Optional[CompactionDetails] = None


class BranchSummarySnapshot(BaseModel):
    id: str
    timestamp: datetime
    details: Optional[BranchSummaryDetails] = None


class StatusSnapshot(BaseModel):
    enabled: bool
    mode: str
    observer_threshold_tokens: int
    retain_buffer_tokens: int
    activation_threshold: int
    raw_tail_tokens: int
    reflector_threshold_tokens: int
    observation_tokens: int
    in_flight: bool
    force_reflect_pending: bool
    last_compaction: Optional[CompactionSnapshot] = None
    last_branch_summary: Optional[BranchSummarySnapshot] = None
    observations: Optional[str] = None


def _last_of(entries: Sequence, entry_type):
    for entry in reversed(entries):
        if isinstance(entry, entry_type):
            return entry
    return None


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def build_status_snapshot(entries: Sequence, state: TriggerState, token_counter: TokenCounter) -> StatusSnapshot:
    last_compaction = _last_of(entries, CompactionEntry)
    last_branch = _last_of(entries, BranchSummaryEntry)

    compaction = None
    if last_compaction is not None:
        details = parse_details(last_compaction.details)
        compaction = CompactionSnapshot(
            id=last_compaction.id,
            timestamp=last_compaction.timestamp,
            tokens_before=last_compaction.tokens_before,
            from_hook=last_compaction.from_hook,
            details=details if isinstance(details, CompactionDetails) else None,
        )

    branch = None
    if last_branch is not None:
        details = parse_details(last_branch.details)
        branch = BranchSummarySnapshot(
            id=last_branch.id,
            timestamp=last_branch.timestamp,
            details=details if isinstance(details, BranchSummaryDetails) else None,
        )

    summary = last_compaction.summary if last_compaction is not None else None
    return StatusSnapshot(
        enabled=state.enabled,
        mode=state.mode.value,
        observer_threshold_tokens=state.observer_threshold_tokens,
        retain_buffer_tokens=state.retain_buffer_tokens,
        activation_threshold=state.activation_threshold,
        raw_tail_tokens=token_counter.estimate_raw_tail(entries),
        reflector_threshold_tokens=state.reflector_threshold_tokens,
        observation_tokens=token_counter.count_observations(summary),
        in_flight=state.in_flight,
        force_reflect_pending=state.force_reflect_pending,
        last_compaction=compaction,
        last_branch_summary=branch,
        observations=strip_file_tags(summary) if summary else None,
    )


def format_status_report(snapshot: StatusSnapshot) -> str:
    lines = [
        "Observational Memory Status",
        "",
        f"Observer auto-trigger: {'on' if snapshot.enabled else 'off'}",
        f"Observer mode: {snapshot.mode}",
        f"Observer threshold: {format_token_count(snapshot.observer_threshold_tokens)}",
        f"Raw-tail retain: {format_token_count(snapshot.retain_buffer_tokens)}",
        f"Observer activation threshold: {format_token_count(snapshot.activation_threshold)}",
        f"Raw tail now: {format_token_count(snapshot.raw_tail_tokens)}",
        f"Reflector threshold: {format_token_count(snapshot.reflector_threshold_tokens)}",
        f"Observation block now: {format_token_count(snapshot.observation_tokens)}",
        f"Auto-compact in flight: {_yes_no(snapshot.in_flight)}",
        f"Force-reflect pending: {_yes_no(snapshot.force_reflect_pending)}",
    ]

    compaction = snapshot.last_compaction
    if compaction is not None:
        lines += [
            "",
            "Last compaction:",
            f"  id: {compaction.id}",
            f"  timestamp: {compaction.timestamp.isoformat()}",
            f"  tokens before: {compaction.tokens_before:,}",
            f"  from hook: {_yes_no(compaction.from_hook)}",
        ]
        details = compaction.details
        if details is not None:
            lines += [
                f"  strategy: {details.strategy}",
                f"  model: {details.model}",
                f"  observations: {details.observation_count}",
                f"  reflector ran: {_yes_no(details.reflector_ran)} ({details.reflection_mode.value})",
                f"  dropped: {details.observations_dropped}",
                f"  split turn: {_yes_no(details.is_split_turn)}",
                f"  used previous summary: {_yes_no(details.used_previous_summary)}",
                f"  generated at: {details.generated_at.isoformat()}",
            ]
    else:
        lines += ["", "No compaction entries found in current branch."]

    branch = snapshot.last_branch_summary
    if branch is not None:
        lines += [
            "",
            "Last branch summary:",
            f"  id: {branch.id}",
            f"  timestamp: {branch.timestamp.isoformat()}",
        ]
        if branch.details is not None:
            lines += [
                f"  strategy: {branch.details.strategy}",
                f"  model: {branch.details.model}",
                f"  observations: {branch.details.observation_count}",
                f"  entry count: {branch.details.entry_count}",
                f"  generated at: {branch.details.generated_at.isoformat()}",
            ]

    return "\n".join(lines)


def format_settings_report(state: TriggerState) -> str:
    return "\n".join([
        "Observational auto-compaction",
        f"observer trigger enabled: {_yes_no(state.enabled)}",
        f"mode: {state.mode.value}",
        f"observer threshold: {format_token_count(state.observer_threshold_tokens)}",
        f"reflector threshold: {format_token_count(state.reflector_threshold_tokens)}",
        f"raw-tail retain: {format_token_count(state.retain_buffer_tokens)}",
        f"observer activation threshold: {format_token_count(state.activation_threshold)}",
        f"allowed threshold range: {format_token_count(AUTO_TOKENS_MIN)} - {format_token_count(AUTO_TOKENS_MAX)}",
    ])


class ViewOptions(BaseModel):
    include_file_tags: bool = False
    observations_only: bool = False
    max_lines: int = VIEW_DEFAULT_LINES


def parse_view_args(args: str) -> ViewOptions:
    """`raw|full|tags`, `obs|observations` and a line limit clamped to 10-400."""
    options = ViewOptions()
    for token in args.split():
        normalized = token.lower()
        if normalized in ("raw", "full", "tags"):
            options.include_file_tags = True
        elif normalized in ("obs", "observations"):
            options.observations_only = True
        elif normalized.isdigit() and int(normalized) > 0:
            options.max_lines = max(VIEW_MIN_LINES, min(VIEW_MAX_LINES, int(normalized)))
        else:
            raise ConfigError(f'Unknown argument "{token}". Use: raw|obs|<maxLines>. Example: obs 120')
    return options


def render_observation_view(entry: CompactionEntry, options: ViewOptions) -> str:
    base = entry.summary if options.include_file_tags else strip_file_tags(entry.summary)
    if options.observations_only:
        section = extract_section(base, OBSERVATIONS_HEADING, OPEN_THREADS_HEADING)
        base = "\n".join([OBSERVATIONS_HEADING, section or "Date: unknown\n- 🟡 No observations found."])

    lines = base.split("\n")
    clipped = lines[:options.max_lines]
    report = [
        f"Observational view ({'observations' if options.observations_only else 'all'}, "
        f"{'with' if options.include_file_tags else 'without'} file tags)",
        f"Compaction id: {entry.id}",
        "",
        "\n".join(clipped),
    ]
    if len(lines) > len(clipped):
        report.append(
            f"\n... truncated {len(lines) - len(clipped)} lines. Pass a higher limit (e.g. {len(lines)})."
        )
    return "\n".join(report)
