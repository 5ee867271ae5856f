from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

DETAILS_SCHEMA_VERSION = 2

AUTO_TOKENS_MIN = 2_000
AUTO_TOKENS_MAX = 500_000


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Priority(str, Enum):
    """Observation priority levels, used as emoji log levels for memory."""
    CRITICAL = "🔴"    # Constraints, blockers, deadlines, irreversible decisions
    IMPORTANT = "🟡"   # Important but possibly evolving context
    INFO = "🟢"        # Low-priority informational context

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]

    @property
    def label(self) -> str:
        return _PRIORITY_LABELS[self]


_PRIORITY_RANKS = {Priority.CRITICAL: 3, Priority.IMPORTANT: 2, Priority.INFO: 1}
_PRIORITY_LABELS = {Priority.CRITICAL: "red", Priority.IMPORTANT: "yellow", Priority.INFO: "green"}


class ReflectionMode(str, Enum):
    NONE = "none"
    THRESHOLD = "threshold"
    FORCED = "forced"


class AutoCompactionMode(str, Enum):
    BUFFERED = "buffered"   # observer trigger runs after each agent turn
    BLOCKING = "blocking"   # only regular/manual compaction runs


class Observation(BaseModel):
    """A single prioritized bullet parsed from the Observations section."""
    priority: Priority = Priority.INFO
    body: str
    key: str                # dedupe identity, see parsing.normalize_observation_key
    source_index: int = 0   # line position, larger = more recent

    def to_line(self) -> str:
        return f"- {self.priority.value} {self.body}"


class ReflectionLimits(BaseModel):
    """Per-priority caps applied by the reflector."""
    red: int = 96
    yellow: int = 40
    green: int = 16

    def for_priority(self, priority: Priority) -> int:
        return getattr(self, priority.label)


class ReflectionResult(BaseModel):
    summary: str
    before: int = 0
    after: int = 0
    dropped: int = 0


class FileOperations(BaseModel):
    """Raw read/write/edit paths seen in the entries being compacted."""
    read: set[str] = Field(default_factory=set)
    written: set[str] = Field(default_factory=set)
    edited: set[str] = Field(default_factory=set)


class FileOperationSet(BaseModel):
    """Cumulative, disjoint file sets carried from compaction to compaction."""
    read: set[str] = Field(default_factory=set)
    modified: set[str] = Field(default_factory=set)


# --- Session entries ---

class _EntryBase(BaseModel):
    id: str
    parent_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class MessageEntry(_EntryBase):
    type: Literal["message"] = "message"
    message: dict[str, Any]


class CustomMessageEntry(_EntryBase):
    type: Literal["custom_message"] = "custom_message"
    custom_type: str = ""
    content: Union[str, list[dict[str, Any]]] = ""


class CompactionEntry(_EntryBase):
    type: Literal["compaction"] = "compaction"
    summary: str
    first_kept_entry_id: str = ""
    tokens_before: int = 0
    details: Optional[dict[str, Any]] = None
    from_hook: bool = False   # True when produced by this package


class BranchSummaryEntry(_EntryBase):
    type: Literal["branch_summary"] = "branch_summary"
    summary: str
    from_id: str = ""
    details: Optional[dict[str, Any]] = None
    from_hook: bool = False


SessionEntry = Annotated[
    Union[MessageEntry, CustomMessageEntry, CompactionEntry, BranchSummaryEntry],
    Field(discriminator="type"),
]

session_entry_adapter = TypeAdapter(SessionEntry)


# --- Compaction metadata ---

class _DetailsBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    schema_version: int = DETAILS_SCHEMA_VERSION
    model: str
    observation_count: int
    generated_at: datetime = Field(default_factory=utcnow)

    @field_validator("schema_version")
    @classmethod
    def _known_schema(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"unsupported schema version {value}")
        return value

    def to_payload(self) -> dict[str, Any]:
        """Serialize the way hosts persist entry details (camelCase JSON)."""
        return self.model_dump(mode="json", by_alias=True)


class CompactionDetails(_DetailsBase):
    strategy: Literal["observational-memory"] = "observational-memory"
    observation_count_before: int = 0
    observation_count_after: int = 0
    observations_dropped: int = 0
    reflector_ran: bool = False
    reflection_mode: ReflectionMode = ReflectionMode.NONE
    is_split_turn: bool = False
    used_previous_summary: bool = False


class BranchSummaryDetails(_DetailsBase):
    strategy: Literal["observational-memory-tree"] = "observational-memory-tree"
    entry_count: int = 0


AnyDetails = Annotated[
    Union[CompactionDetails, BranchSummaryDetails],
    Field(discriminator="strategy"),
]

_details_adapter = TypeAdapter(AnyDetails)


def parse_details(value: Any) -> Optional[Union[CompactionDetails, BranchSummaryDetails]]:
    """
    Recognize compaction metadata written by this package.

    Returns the typed record, or None for anything else (other strategies,
    foreign payloads, malformed fields). Never raises.
    """
    if isinstance(value, (CompactionDetails, BranchSummaryDetails)):
        return value
    if not isinstance(value, dict):
        return None
    try:
        return _details_adapter.validate_python(value)
    except ValidationError:
        return None


class CompactionResult(BaseModel):
    """Final record handed back to the host's compaction sink."""
    summary: str
    first_kept_entry_id: str = ""
    tokens_before: int = 0
    details: CompactionDetails


class BranchSummaryResult(BaseModel):
    summary: str
    details: BranchSummaryDetails


# --- Configuration ---

def _check_token_range(value: int, allow_zero: bool = False) -> int:
    if allow_zero and value == 0:
        return 0
    if value < AUTO_TOKENS_MIN or value > AUTO_TOKENS_MAX:
        raise ValueError(
            f"{value} is outside the allowed range {AUTO_TOKENS_MIN}-{AUTO_TOKENS_MAX}"
        )
    return value


class OMConfig(BaseModel):
    """Configuration for observational compaction."""
    # Observer trigger
    auto_observe: bool = True                 # Auto-trigger compaction on raw-tail growth
    mode: AutoCompactionMode = AutoCompactionMode.BUFFERED
    observer_token_threshold: int = 30000     # Raw-tail tokens before the observer fires
    raw_tail_retain_tokens: int = 8000        # Extra raw tail kept before firing, 0 = off
    cooldown_seconds: float = 5.0

    # Reflector
    reflector_token_threshold: int = 40000    # Observation-block tokens before reflection
    threshold_limits: ReflectionLimits = Field(default_factory=ReflectionLimits)
    forced_limits: ReflectionLimits = Field(
        default_factory=lambda: ReflectionLimits(red=72, yellow=28, green=8)
    )
    max_open_threads: int = 12
    max_next_actions: int = 4

    # Generation budget
    reserve_tokens: int = 16384

    @field_validator("observer_token_threshold", "reflector_token_threshold")
    @classmethod
    def _threshold_range(cls, value: int) -> int:
        return _check_token_range(value)

    @field_validator("raw_tail_retain_tokens")
    @classmethod
    def _retain_range(cls, value: int) -> int:
        return _check_token_range(value, allow_zero=True)


class TriggerState(BaseModel):
    """
    Session-scoped trigger settings and bookkeeping.

    Created at session start from OMConfig, mutated only through validated
    setters and by the trigger/compaction flow, discarded at session end.
    """
    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = True
    mode: AutoCompactionMode = AutoCompactionMode.BUFFERED
    observer_threshold_tokens: int = 30000
    reflector_threshold_tokens: int = 40000
    retain_buffer_tokens: int = 8000
    in_flight: bool = False
    last_trigger_at: Optional[float] = None
    force_reflect_pending: bool = False

    @field_validator("observer_threshold_tokens", "reflector_threshold_tokens")
    @classmethod
    def _threshold_range(cls, value: int) -> int:
        return _check_token_range(value)

    @field_validator("retain_buffer_tokens")
    @classmethod
    def _retain_range(cls, value: int) -> int:
        return _check_token_range(value, allow_zero=True)

    @property
    def activation_threshold(self) -> int:
        return self.observer_threshold_tokens + self.retain_buffer_tokens

    @classmethod
    def from_config(cls, config: OMConfig) -> "TriggerState":
        return cls(
            enabled=config.auto_observe,
            mode=config.mode,
            observer_threshold_tokens=config.observer_token_threshold,
            reflector_threshold_tokens=config.reflector_token_threshold,
            retain_buffer_tokens=config.raw_tail_retain_tokens,
        )


class SettingsUpdate(BaseModel):
    """A validated, not-yet-applied change to the trigger settings."""
    enabled: Optional[bool] = None
    mode: Optional[AutoCompactionMode] = None
    observer_threshold_tokens: Optional[int] = None
    reflector_threshold_tokens: Optional[int] = None
    retain_buffer_tokens: Optional[int] = None


class OMStats(BaseModel):
    """Runtime statistics for a session."""
    session_id: str
    triggers_fired: int = 0
    compactions: int = 0
    compactions_declined: int = 0
    branch_summaries: int = 0
    reflections: int = 0
    forced_reflections: int = 0
    observations_dropped: int = 0
    total_tokens_before: int = 0
    last_observation_count: int = 0
