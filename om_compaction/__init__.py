"""
om-compaction: observational memory compaction for coding-agent sessions.

Usage:
    from om_compaction import ObservationalMemory, InMemorySessionStore

    om = ObservationalMemory(provider=my_provider, store=InMemorySessionStore())

    await om.aappend_message({"role": "user", "content": "Fix the login bug"})
    await om.on_agent_end()      # observer trigger, buffered mode
    await om.aforce_reflect()    # compact now with aggressive reflection
    print(om.status())
"""

from om_compaction.core import ObservationalMemory
from om_compaction.compactor import Compactor
from om_compaction.config import from_env, parse_settings_args, parse_token_count, parse_token_string
from om_compaction.exceptions import (
    CapabilityUnavailable,
    CompactionDeclined,
    ConfigError,
    NothingToCompact,
    OMCompactionError,
    SummarizationAborted,
    SummarizationError,
)
from om_compaction.models import (
    AutoCompactionMode,
    BranchSummaryDetails,
    CompactionDetails,
    CompactionEntry,
    MessageEntry,
    Observation,
    OMConfig,
    OMStats,
    Priority,
    ReflectionMode,
    TriggerState,
    parse_details,
)
from om_compaction.observability.callbacks import CallbackManager, EventType, OMEvent
from om_compaction.providers.base import GenerationResult, LLMProvider, StopReason
from om_compaction.reflector import Reflector
from om_compaction.storage.base import SessionStore
from om_compaction.storage.memory import InMemorySessionStore
from om_compaction.token_counter import TokenCounter
from om_compaction.trigger import TriggerController

# Version
__version__ = "0.1.0"

__all__ = [
    "ObservationalMemory",
    "Compactor",
    "Reflector",
    "TriggerController",
    "TokenCounter",
    "OMConfig",
    "OMStats",
    "TriggerState",
    "AutoCompactionMode",
    "ReflectionMode",
    "Priority",
    "Observation",
    "MessageEntry",
    "CompactionEntry",
    "CompactionDetails",
    "BranchSummaryDetails",
    "parse_details",
    "from_env",
    "parse_settings_args",
    "parse_token_count",
    "parse_token_string",
    "OMCompactionError",
    "ConfigError",
    "CapabilityUnavailable",
    "SummarizationError",
    "SummarizationAborted",
    "CompactionDeclined",
    "NothingToCompact",
    "EventType",
    "OMEvent",
    "CallbackManager",
    "LLMProvider",
    "GenerationResult",
    "StopReason",
    "SessionStore",
    "InMemorySessionStore",
]
