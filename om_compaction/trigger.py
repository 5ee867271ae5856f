"""
Observer trigger: decides when to request a compaction automatically.

Two phases per session. IDLE is the default; REQUESTED means a compaction
call has been issued and not yet resolved. The in-flight guard is set
synchronously before the request is awaited and always cleared when it
resolves, whatever the outcome.
"""

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from pydantic import BaseModel

from om_compaction.exceptions import is_benign_compaction_error
from om_compaction.models import AutoCompactionMode, CompactionEntry, TriggerState
from om_compaction.observability.callbacks import CallbackManager, EventType
from om_compaction.token_counter import TokenCounter, format_token_count

logger = logging.getLogger("om_compaction.trigger")

DEFAULT_COOLDOWN_SECONDS = 5.0

RequestCompaction = Callable[[str], Awaitable[Any]]


class TriggerPhase(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"


class SkipReason(str, Enum):
    IN_FLIGHT = "in_flight"
    DISABLED = "disabled"
    BLOCKING_MODE = "blocking_mode"
    COOLDOWN = "cooldown"
    BELOW_THRESHOLD = "below_threshold"


class TriggerDecision(BaseModel):
    fire: bool
    skip_reason: Optional[SkipReason] = None
    raw_tail_tokens: int = 0
    activation_threshold: int = 0
    observation_tokens: int = 0
    evaluated_at: float = 0.0


def last_compaction_summary(entries: Sequence) -> Optional[str]:
    for entry in reversed(entries):
        if isinstance(entry, CompactionEntry):
            return entry.summary
    return None


def build_trigger_instructions(decision: TriggerDecision, state: TriggerState) -> str:
    """Custom instructions annotating an automatic compaction request."""
    return "\n".join([
        f"Observer trigger fired because raw tail reached {format_token_count(decision.raw_tail_tokens)} "
        f"(activation threshold {format_token_count(decision.activation_threshold)}).",
        f"Observer threshold={format_token_count(state.observer_threshold_tokens)}, "
        f"raw-tail retain={format_token_count(state.retain_buffer_tokens)}, mode={state.mode.value}.",
        f"Current observation block estimate: {format_token_count(decision.observation_tokens)} "
        f"(reflector threshold {format_token_count(state.reflector_threshold_tokens)}).",
        "Preserve critical constraints, blockers, decisions, active tasks, "
        "and the latest relevant context from the current raw tail.",
    ])


class TriggerController:
    """Observer trigger state machine for one session."""

    def __init__(
        self,
        state: TriggerState,
        token_counter: TokenCounter,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        callbacks: CallbackManager = None,
    ):
        self.state = state
        self.token_counter = token_counter
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.callbacks = callbacks or CallbackManager()

    @property
    def phase(self) -> TriggerPhase:
        return TriggerPhase.REQUESTED if self.state.in_flight else TriggerPhase.IDLE

    def evaluate(self, entries: Sequence, forced: bool = False, now: float = None) -> TriggerDecision:
        """Check the entry conditions without changing any state."""
        state = self.state
        now = self.clock() if now is None else now

        if state.in_flight:
            return TriggerDecision(fire=False, skip_reason=SkipReason.IN_FLIGHT, evaluated_at=now)
        if not forced and not state.enabled:
            return TriggerDecision(fire=False, skip_reason=SkipReason.DISABLED, evaluated_at=now)
        if not forced and state.mode is not AutoCompactionMode.BUFFERED:
            return TriggerDecision(fire=False, skip_reason=SkipReason.BLOCKING_MODE, evaluated_at=now)
        if state.last_trigger_at is not None and now - state.last_trigger_at < self.cooldown_seconds:
            return TriggerDecision(fire=False, skip_reason=SkipReason.COOLDOWN, evaluated_at=now)

        raw_tail = self.token_counter.estimate_raw_tail(entries)
        decision = TriggerDecision(
            fire=raw_tail >= state.activation_threshold,
            raw_tail_tokens=raw_tail,
            activation_threshold=state.activation_threshold,
            observation_tokens=self.token_counter.count_observations(last_compaction_summary(entries)),
            evaluated_at=now,
        )
        if not decision.fire:
            decision.skip_reason = SkipReason.BELOW_THRESHOLD
        return decision

    def begin(self, entries: Sequence, forced: bool = False, now: float = None) -> TriggerDecision:
        """Evaluate and, when firing, move to REQUESTED before anything is awaited."""
        decision = self.evaluate(entries, forced=forced, now=now)
        if not decision.fire:
            logger.debug("Observer trigger skipped: %s", decision.skip_reason.value)
            return decision

        self.state.in_flight = True
        self.state.last_trigger_at = decision.evaluated_at
        logger.info(
            "Observer trigger fired: raw tail %s, activation threshold %s",
            format_token_count(decision.raw_tail_tokens),
            format_token_count(decision.activation_threshold),
        )
        self.callbacks.emit(
            EventType.TRIGGER_FIRED,
            mode=self.state.mode.value,
            raw_tail_tokens=decision.raw_tail_tokens,
            activation_threshold=decision.activation_threshold,
            observation_tokens=decision.observation_tokens,
        )
        return decision

    async def finish(self, decision: TriggerDecision, request_compaction: RequestCompaction) -> Any:
        """Await the compaction a fired decision asked for; always returns to IDLE."""
        try:
            outcome = await request_compaction(build_trigger_instructions(decision, self.state))
        except Exception as e:
            self.fail(e)
            return None
        else:
            self.complete(outcome)
            return outcome
        finally:
            self.state.in_flight = False

    async def maybe_trigger(
        self,
        entries: Sequence,
        request_compaction: RequestCompaction,
        forced: bool = False,
    ) -> TriggerDecision:
        decision = self.begin(entries, forced=forced)
        if decision.fire:
            await self.finish(decision, request_compaction)
        return decision

    async def request_manual(self, request_compaction: RequestCompaction, custom_instructions: str) -> Any:
        """
        Explicit compaction request.

        Ignores the enabled flag, the mode and the cooldown, but never runs
        while another compaction is in flight. Non-benign errors propagate.
        """
        if self.state.in_flight:
            logger.info("Manual compaction skipped: another compaction is in flight")
            return None

        self.state.in_flight = True
        try:
            outcome = await request_compaction(custom_instructions)
        except Exception as e:
            self.fail(e)
            if is_benign_compaction_error(e):
                return None
            raise
        finally:
            self.state.in_flight = False
        self.complete(outcome)
        return outcome

    def complete(self, outcome: Any = None) -> None:
        self.state.in_flight = False
        self.callbacks.emit(EventType.TRIGGER_COMPLETED, tokens_before=getattr(outcome, "tokens_before", None))

    def fail(self, error: BaseException) -> None:
        self.state.in_flight = False
        if is_benign_compaction_error(error):
            logger.debug("Observer compaction was a no-op: %s", error)
            self.callbacks.emit(EventType.TRIGGER_COMPLETED, tokens_before=None)
            return
        logger.warning("Observer compaction failed: %s", error)
        self.callbacks.emit(EventType.TRIGGER_FAILED, error=str(error))
