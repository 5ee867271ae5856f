import asyncio
import logging
from typing import Optional

from om_compaction.exceptions import (
    CapabilityUnavailable,
    SummarizationAborted,
    SummarizationError,
)
from om_compaction.file_ops import format_file_operations
from om_compaction.models import (
    BranchSummaryDetails,
    BranchSummaryResult,
    CompactionDetails,
    CompactionResult,
    OMConfig,
    ReflectionMode,
    TriggerState,
)
from om_compaction.observability.callbacks import CallbackManager, EventType
from om_compaction.parsing import count_observation_bullets, strip_file_tags
from om_compaction.preparation import BranchPreparation, CompactionPreparation, prepare_branch_entries
from om_compaction.prompts.observer_prompt import (
    OBSERVER_SYSTEM_PROMPT,
    build_compaction_prompt,
    with_empty_output_reminder,
)
from om_compaction.prompts.tree_prompt import build_tree_prompt
from om_compaction.providers.base import LLMProvider, StopReason
from om_compaction.reflector import Reflector
from om_compaction.summary import normalize_summary
from om_compaction.token_counter import TokenCounter
from om_compaction.transcript import serialize_conversation

logger = logging.getLogger("om_compaction.compactor")

MIN_SUMMARY_TOKENS = 512
COMPACTION_BUDGET_RATIO = 0.8
BRANCH_BUDGET_RATIO = 0.6


def choose_reflection_mode(
    previous_tokens: int,
    candidate_tokens: int,
    threshold: int,
    force_reflect: bool = False,
) -> ReflectionMode:
    if force_reflect:
        return ReflectionMode.FORCED
    if max(previous_tokens, candidate_tokens) >= threshold:
        return ReflectionMode.THRESHOLD
    return ReflectionMode.NONE


class Compactor:
    """
    Turns a compaction preparation into an observation summary.

    prompt -> provider -> normalize -> reflect -> merge file ops -> details.
    Every failure path returns None ("declined") so the host can fall back
    to its own compaction; nothing is committed until a result is returned.
    """

    def __init__(
        self,
        provider: Optional[LLMProvider],
        config: OMConfig,
        token_counter: TokenCounter,
        callbacks: CallbackManager = None,
    ):
        self.provider = provider
        self.config = config
        self.token_counter = token_counter
        self.callbacks = callbacks or CallbackManager()
        self.reflector = Reflector(config)

    def _require_provider(self) -> LLMProvider:
        if self.provider is None:
            raise CapabilityUnavailable("no active model")
        if not self.provider.api_key:
            raise CapabilityUnavailable(f"missing API key for {self.provider.model_ref}")
        return self.provider

    async def _generate_once(self, prompt: str, max_tokens: int, abort_event: Optional[asyncio.Event]) -> str:
        if abort_event is not None and abort_event.is_set():
            raise SummarizationAborted("Summarization aborted")

        call = asyncio.ensure_future(
            self.provider.agenerate(OBSERVER_SYSTEM_PROMPT, prompt, max_tokens)
        )
        if abort_event is None:
            result = await call
        else:
            waiter = asyncio.ensure_future(abort_event.wait())
            try:
                done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                waiter.cancel()
                # Also reached when the caller itself is cancelled
                if not call.done():
                    call.cancel()
            if call not in done:
                raise SummarizationAborted("Summarization aborted")
            result = call.result()

        if result.stop_reason is StopReason.ERROR:
            raise SummarizationError(f"Summarization failed: {result.error_message or 'Unknown error'}")
        if result.stop_reason is StopReason.ABORTED:
            raise SummarizationAborted("Summarization aborted")
        if result.stop_reason is StopReason.TOOL_USE:
            raise SummarizationError("Summarization unexpectedly requested tool use")
        return result.text.strip()

    async def agenerate(self, prompt: str, max_tokens: int, abort_event: Optional[asyncio.Event] = None) -> str:
        """Run the summarization call, retrying once if the model returns nothing."""
        self._require_provider()

        text = await self._generate_once(prompt, max_tokens, abort_event)
        if text:
            return text

        logger.debug("Empty summarization output, retrying once")
        text = await self._generate_once(with_empty_output_reminder(prompt), max_tokens, abort_event)
        if text:
            return text

        raise SummarizationError("Summarization returned empty text")

    def _decline(self, event_type: EventType, reason: str, aborted: bool = False) -> None:
        if aborted:
            logger.debug("Observational memory aborted: %s", reason)
        else:
            logger.warning("Observational memory declined: %s. Using default compaction.", reason)
        self.callbacks.emit(event_type, reason=reason, aborted=aborted)

    async def acompact(
        self,
        preparation: CompactionPreparation,
        state: TriggerState,
        custom_instructions: str = None,
        abort_event: Optional[asyncio.Event] = None,
    ) -> Optional[CompactionResult]:
        messages = preparation.messages_to_summarize + preparation.turn_prefix_messages
        if not messages and not preparation.previous_summary:
            self._decline(EventType.COMPACTION_DECLINED, "nothing to summarize")
            return None

        try:
            provider = self._require_provider()
        except CapabilityUnavailable as e:
            self._decline(EventType.COMPACTION_DECLINED, str(e))
            return None

        previous_for_prompt = strip_file_tags(preparation.previous_summary) if preparation.previous_summary else None
        previous_tokens = self.token_counter.count_observations(previous_for_prompt)
        force_reflect = state.force_reflect_pending

        prompt = build_compaction_prompt(
            serialize_conversation(messages),
            previous_summary=previous_for_prompt,
            custom_instructions=custom_instructions,
            is_split_turn=preparation.is_split_turn,
            force_reflect=force_reflect,
        )
        max_tokens = max(MIN_SUMMARY_TOKENS, int(preparation.reserve_tokens * COMPACTION_BUDGET_RATIO))

        self.callbacks.emit(
            EventType.COMPACTION_STARTED,
            messages=len(messages),
            previous_observation_tokens=previous_tokens,
            force_reflect=force_reflect,
        )

        try:
            raw_summary = await self.agenerate(prompt, max_tokens, abort_event)
        except SummarizationAborted as e:
            self._decline(EventType.COMPACTION_DECLINED, str(e), aborted=True)
            return None
        except Exception as e:
            # Graceful degradation: the host compacts the default way
            self._decline(EventType.COMPACTION_DECLINED, str(e))
            return None

        normalized = normalize_summary(raw_summary)
        mode = choose_reflection_mode(
            previous_tokens,
            self.token_counter.count_observations(normalized),
            state.reflector_threshold_tokens,
            force_reflect,
        )
        reflected = self.reflector.reflect(normalized, mode)
        summary = reflected.summary + format_file_operations(preparation.file_ops, preparation.previous_summary)

        details = CompactionDetails(
            model=provider.model_ref,
            observation_count=reflected.after,
            observation_count_before=reflected.before,
            observation_count_after=reflected.after,
            observations_dropped=reflected.dropped,
            reflector_ran=mode is not ReflectionMode.NONE,
            reflection_mode=mode,
            is_split_turn=preparation.is_split_turn,
            used_previous_summary=bool(preparation.previous_summary),
        )

        state.force_reflect_pending = False

        if details.reflector_ran:
            self.callbacks.emit(
                EventType.REFLECTION_COMPLETED,
                mode=mode.value,
                observations_before=reflected.before,
                observations_after=reflected.after,
                dropped=reflected.dropped,
            )
        self.callbacks.emit(
            EventType.COMPACTION_COMPLETED,
            tokens_before=preparation.tokens_before,
            observation_count=reflected.after,
            reflection_mode=mode.value,
        )

        return CompactionResult(
            summary=summary,
            first_kept_entry_id=preparation.first_kept_entry_id,
            tokens_before=preparation.tokens_before,
            details=details,
        )

    async def asummarize_branch(
        self,
        preparation: BranchPreparation,
        abort_event: Optional[asyncio.Event] = None,
    ) -> Optional[BranchSummaryResult]:
        """Observation summary for an abandoned branch. No reflection, no file-op carry-over."""
        if not preparation.user_wants_summary or not preparation.entries_to_summarize:
            return None

        try:
            provider = self._require_provider()
        except CapabilityUnavailable as e:
            self._decline(EventType.BRANCH_SUMMARY_DECLINED, str(e))
            return None

        window = provider.context_window
        token_budget = window - preparation.reserve_tokens if window > preparation.reserve_tokens else 0
        branch = prepare_branch_entries(preparation.entries_to_summarize, token_budget, self.token_counter)
        if not branch.messages:
            return None

        prompt = build_tree_prompt(
            serialize_conversation(branch.messages),
            custom_instructions=preparation.custom_instructions,
            replace_instructions=preparation.replace_instructions,
        )
        max_tokens = max(MIN_SUMMARY_TOKENS, int(preparation.reserve_tokens * BRANCH_BUDGET_RATIO))

        try:
            raw_summary = await self.agenerate(prompt, max_tokens, abort_event)
        except SummarizationAborted as e:
            self._decline(EventType.BRANCH_SUMMARY_DECLINED, str(e), aborted=True)
            return None
        except Exception as e:
            self._decline(EventType.BRANCH_SUMMARY_DECLINED, str(e))
            return None

        summary_core = normalize_summary(raw_summary)
        details = BranchSummaryDetails(
            model=provider.model_ref,
            observation_count=count_observation_bullets(summary_core),
            entry_count=len(preparation.entries_to_summarize),
        )
        self.callbacks.emit(
            EventType.BRANCH_SUMMARY_COMPLETED,
            observation_count=details.observation_count,
            entry_count=details.entry_count,
        )
        return BranchSummaryResult(
            summary=summary_core + format_file_operations(branch.file_ops),
            details=details,
        )
