import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Mapping, Optional

from om_compaction.compactor import Compactor
from om_compaction.config import (
    apply_settings,
    parse_enabled,
    parse_mode,
    parse_retain_tokens,
    parse_settings_args,
    parse_token_count,
)
from om_compaction.exceptions import CompactionDeclined, NothingToCompact
from om_compaction.models import (
    AutoCompactionMode,
    BranchSummaryEntry,
    BranchSummaryResult,
    CompactionEntry,
    CompactionResult,
    MessageEntry,
    OMConfig,
    OMStats,
    SettingsUpdate,
    TriggerState,
)
from om_compaction.observability.callbacks import CallbackManager, EventType
from om_compaction.observability.metrics import MetricsTracker
from om_compaction.observability.status import (
    build_status_snapshot,
    format_settings_report,
    format_status_report,
    parse_view_args,
    render_observation_view,
)
from om_compaction.preparation import BranchPreparation, CompactionPreparation, prepare_compaction
from om_compaction.providers.base import LLMProvider
from om_compaction.providers.openai_provider import OpenAIProvider
from om_compaction.storage.base import SessionStore
from om_compaction.storage.sqlite import SQLiteSessionStore
from om_compaction.token_counter import TokenCounter, format_token_count
from om_compaction.trigger import TriggerController, TriggerDecision

logger = logging.getLogger("om_compaction")

# Session flags read at session start
FLAG_AUTO_COMPACT = "obs-auto-compact"
FLAG_MODE = "obs-mode"
FLAG_OBSERVER_THRESHOLD = "obs-observer-threshold"
FLAG_REFLECTOR_THRESHOLD = "obs-reflector-threshold"
FLAG_RETAIN_RAW_TAIL = "obs-retain-raw-tail"

FORCED_REFLECTION_INSTRUCTIONS = (
    "Aggressive reflector mode: deduplicate observations, remove stale low-priority details, "
    "preserve critical constraints and blockers."
)


def _new_entry_id() -> str:
    return str(uuid.uuid4())


class ObservationalMemory:
    """
    Observational compaction for one agent session.

    Wires the observer trigger, the compaction orchestrator and the branch
    summarizer to a session store. Hosts that own their compaction call the
    hooks (`before_compact`, `before_tree`, `on_session_compact`); `acompact`
    is a complete reference sink that records the result in the store.
    """

    def __init__(
        self,
        provider: LLMProvider = None,
        store: SessionStore = None,
        config: OMConfig = None,
        session_id: str = "default",
        token_counter: TokenCounter = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or OMConfig()
        self.session_id = session_id

        self.provider = provider
        if not self.provider:
            self.provider = OpenAIProvider()

        self.store = store
        if not self.store:
            self.store = SQLiteSessionStore()

        self.state = TriggerState.from_config(self.config)
        self.token_counter = token_counter or TokenCounter()
        self.callbacks = CallbackManager(session_id)
        self.metrics = MetricsTracker()
        self.metrics.attach(self.callbacks)

        self.compactor = Compactor(self.provider, self.config, self.token_counter, self.callbacks)
        self.trigger = TriggerController(
            self.state,
            self.token_counter,
            cooldown_seconds=self.config.cooldown_seconds,
            clock=clock,
            callbacks=self.callbacks,
        )

        # Background observer compaction started by on_agent_end
        self._trigger_task: Optional[asyncio.Task] = None

    async def ainitialize(self) -> None:
        await self.store.ainitialize()

    def initialize(self) -> None:
        self.store.initialize()

    async def aclose(self) -> None:
        if self._trigger_task is not None and not self._trigger_task.done():
            self._trigger_task.cancel()
        await self.store.aclose()

    def close(self) -> None:
        self.store.close()

    async def __aenter__(self):
        await self.ainitialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # --- SESSION LOG ---

    async def aappend_message(self, message: dict[str, Any]) -> MessageEntry:
        """Record a conversation message at the tip of the branch."""
        branch = await self.store.aget_branch(self.session_id)
        entry = MessageEntry(
            id=_new_entry_id(),
            parent_id=branch[-1].id if branch else None,
            message=message,
        )
        await self.store.aappend_entry(self.session_id, entry)
        return entry

    # --- HOST HOOKS ---

    def on_session_start(self, flags: Mapping[str, Any]) -> None:
        """
        Apply session flags. An invalid value is logged and the previous value kept.
        """
        if isinstance(flags.get(FLAG_AUTO_COMPACT), bool):
            self.state.enabled = flags[FLAG_AUTO_COMPACT]
        elif FLAG_AUTO_COMPACT in flags:
            self._apply_flag(FLAG_AUTO_COMPACT, flags[FLAG_AUTO_COMPACT], "enabled", parse_enabled)
        if FLAG_MODE in flags:
            self._apply_flag(FLAG_MODE, flags[FLAG_MODE], "mode", parse_mode)
        if FLAG_OBSERVER_THRESHOLD in flags:
            self._apply_flag(FLAG_OBSERVER_THRESHOLD, flags[FLAG_OBSERVER_THRESHOLD],
                             "observer_threshold_tokens", parse_token_count)
        if FLAG_REFLECTOR_THRESHOLD in flags:
            self._apply_flag(FLAG_REFLECTOR_THRESHOLD, flags[FLAG_REFLECTOR_THRESHOLD],
                             "reflector_threshold_tokens", parse_token_count)
        if FLAG_RETAIN_RAW_TAIL in flags:
            self._apply_flag(FLAG_RETAIN_RAW_TAIL, flags[FLAG_RETAIN_RAW_TAIL],
                             "retain_buffer_tokens", parse_retain_tokens)

    def _apply_flag(self, flag: str, value: Any, field: str, parser: Callable[[Any], Any]) -> None:
        try:
            setattr(self.state, field, parser(str(value)))
        except ValueError:
            current = getattr(self.state, field)
            if isinstance(current, int) and not isinstance(current, bool):
                current = format_token_count(current)
            elif isinstance(current, AutoCompactionMode):
                current = current.value
            logger.warning('Invalid --%s value "%s". Keeping %s.', flag, value, current)

    async def on_agent_end(self, is_idle: Callable[[], bool] = None) -> Optional[TriggerDecision]:
        """
        Evaluate the observer trigger after an agent turn.

        Only buffered mode triggers here. A fired trigger runs the compaction
        as a background task; `await_pending()` waits for it.
        """
        if self.state.mode is not AutoCompactionMode.BUFFERED:
            return None
        # Let the host settle the turn before checking idleness
        await asyncio.sleep(0)
        if is_idle is not None and not is_idle():
            return None

        branch = await self.store.aget_branch(self.session_id)
        decision = self.trigger.begin(branch)
        if decision.fire:
            self._trigger_task = asyncio.create_task(
                self.trigger.finish(decision, self._request_compaction)
            )
        return decision

    async def await_pending(self) -> None:
        if self._trigger_task is not None:
            await asyncio.gather(self._trigger_task, return_exceptions=True)

    async def _request_compaction(self, custom_instructions: str) -> CompactionEntry:
        return await self._acompact(custom_instructions)

    async def before_compact(
        self,
        preparation: CompactionPreparation,
        custom_instructions: str = None,
        abort_event: Optional[asyncio.Event] = None,
    ) -> Optional[CompactionResult]:
        """Orchestrator hook. None means the host should use its default compaction."""
        return await self.compactor.acompact(preparation, self.state, custom_instructions, abort_event)

    async def before_tree(
        self,
        preparation: BranchPreparation,
        abort_event: Optional[asyncio.Event] = None,
    ) -> Optional[BranchSummaryResult]:
        return await self.compactor.asummarize_branch(preparation, abort_event)

    def on_session_compact(self) -> None:
        """Host finished a compaction. The in-flight guard stays with whoever set it."""
        self.state.force_reflect_pending = False

    # --- REFERENCE SINKS ---

    async def acompact(
        self,
        custom_instructions: str = None,
        abort_event: Optional[asyncio.Event] = None,
    ) -> Optional[CompactionEntry]:
        """
        Compact the session branch and record the result.

        Returns None without calling the model while another compaction is
        in flight. Raises NothingToCompact when there is nothing to consume
        and CompactionDeclined when the observer produced no summary.
        """
        if self.state.in_flight:
            logger.info("Compaction skipped: another compaction is in flight")
            return None

        self.state.in_flight = True
        try:
            return await self._acompact(custom_instructions, abort_event)
        finally:
            self.state.in_flight = False

    async def _acompact(
        self,
        custom_instructions: str = None,
        abort_event: Optional[asyncio.Event] = None,
    ) -> CompactionEntry:
        # Caller holds the in-flight guard
        branch = await self.store.aget_branch(self.session_id)
        preparation = prepare_compaction(
            branch,
            self.token_counter,
            keep_recent_tokens=self.state.retain_buffer_tokens,
            reserve_tokens=self.config.reserve_tokens,
        )
        if preparation is None:
            raise NothingToCompact("Nothing to compact")

        result = await self.before_compact(preparation, custom_instructions, abort_event)
        if result is None:
            raise CompactionDeclined("Observational compaction declined")

        entry = CompactionEntry(
            id=_new_entry_id(),
            parent_id=branch[-1].id if branch else None,
            summary=result.summary,
            first_kept_entry_id=result.first_kept_entry_id,
            tokens_before=result.tokens_before,
            details=result.details.to_payload(),
            from_hook=True,
        )
        await self.store.aappend_entry(self.session_id, entry)
        logger.info("Compaction recorded (%s tokens before)", f"{entry.tokens_before:,}")
        self.state.force_reflect_pending = False
        return entry

    async def asummarize_branch(
        self,
        abandoned_entries: list,
        from_id: str,
        custom_instructions: str = None,
        replace_instructions: bool = False,
        abort_event: Optional[asyncio.Event] = None,
    ) -> Optional[BranchSummaryEntry]:
        """Summarize entries the user navigated away from and record it at the tip."""
        preparation = BranchPreparation(
            entries_to_summarize=abandoned_entries,
            custom_instructions=custom_instructions,
            replace_instructions=replace_instructions,
            reserve_tokens=self.config.reserve_tokens,
        )
        result = await self.before_tree(preparation, abort_event)
        if result is None:
            return None

        branch = await self.store.aget_branch(self.session_id)
        entry = BranchSummaryEntry(
            id=_new_entry_id(),
            parent_id=branch[-1].id if branch else None,
            summary=result.summary,
            from_id=from_id,
            details=result.details.to_payload(),
            from_hook=True,
        )
        await self.store.aappend_entry(self.session_id, entry)
        return entry

    async def aforce_reflect(self, extra: str = None) -> Optional[CompactionEntry]:
        """Compact now with forced reflection. Returns None if another compaction is running."""
        self.state.force_reflect_pending = True
        instructions = FORCED_REFLECTION_INSTRUCTIONS
        if extra and extra.strip():
            instructions += f"\nExtra focus: {extra.strip()}"
        logger.info("Queued forced reflection and triggering compaction")
        return await self.trigger.request_manual(self._request_compaction, instructions)

    # --- SETTINGS ---

    def configure(self, args: str = "") -> str:
        """
        Show or update trigger settings. Raises ConfigError and changes
        nothing when any argument is invalid.
        """
        if not args.strip():
            return format_settings_report(self.state)

        update = parse_settings_args(args)
        apply_settings(self.state, update)
        self.callbacks.emit(EventType.CONFIG_UPDATED, **update.model_dump(mode="json", exclude_none=True))
        return "\n".join([
            "Observational auto-compaction updated:",
            f"- observer trigger: {'on' if self.state.enabled else 'off'}",
            f"- mode: {self.state.mode.value}",
            f"- observer threshold: {format_token_count(self.state.observer_threshold_tokens)}",
            f"- reflector threshold: {format_token_count(self.state.reflector_threshold_tokens)}",
            f"- raw-tail retain: {format_token_count(self.state.retain_buffer_tokens)}",
            f"- observer activation threshold: {format_token_count(self.state.activation_threshold)}",
        ])

    async def aconfigure(self, args: str = "", is_idle: Callable[[], bool] = None) -> str:
        """`configure`, then re-check the trigger against the new thresholds."""
        report = self.configure(args)
        if args.strip() and self.state.enabled:
            await self.on_agent_end(is_idle)
        return report

    def set_mode(self, mode: str = "") -> str:
        if not mode.strip():
            return "\n".join([
                "Observational mode",
                f"current: {self.state.mode.value}",
                "buffered: observer runs in background on agent end",
                "blocking: disable observer background trigger; only regular/manual compaction runs",
            ])
        apply_settings(self.state, SettingsUpdate(mode=parse_mode(mode)))
        self.callbacks.emit(EventType.CONFIG_UPDATED, mode=self.state.mode.value)
        return f"Observational mode updated: {self.state.mode.value}."

    # --- INTROSPECTION ---

    def status(self) -> str:
        branch = self.store.get_branch(self.session_id)
        return format_status_report(build_status_snapshot(branch, self.state, self.token_counter))

    async def astatus(self) -> str:
        branch = await self.store.aget_branch(self.session_id)
        return format_status_report(build_status_snapshot(branch, self.state, self.token_counter))

    def view(self, args: str = "") -> str:
        """Latest observation summary. `raw|full|tags`, `obs|observations`, line limit."""
        options = parse_view_args(args)
        branch = self.store.get_branch(self.session_id)
        for entry in reversed(branch):
            if isinstance(entry, CompactionEntry):
                return render_observation_view(entry, options)
        return "No compaction found in current branch."

    def get_stats(self) -> OMStats:
        return self.metrics.get_session_stats(self.session_id)

    # --- EVENT SYSTEM ---

    def on(self, event_type: EventType, callback: Callable) -> None:
        self.callbacks.on(event_type, callback)
