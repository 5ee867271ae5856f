import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

from om_compaction.models import utcnow

logger = logging.getLogger("om_compaction.callbacks")


class EventType(Enum):
    # Observer trigger events
    TRIGGER_FIRED = "trigger_fired"                 # Raw tail crossed the activation threshold
    TRIGGER_COMPLETED = "trigger_completed"         # Requested compaction finished
    TRIGGER_FAILED = "trigger_failed"               # Requested compaction raised a real error

    # Compaction events
    COMPACTION_STARTED = "compaction_started"       # LLM call starting
    COMPACTION_COMPLETED = "compaction_completed"   # Summary + details produced
    COMPACTION_DECLINED = "compaction_declined"     # Host falls back to its default compaction

    # Reflector events
    REFLECTION_COMPLETED = "reflection_completed"

    # Tree summary events
    BRANCH_SUMMARY_COMPLETED = "branch_summary_completed"
    BRANCH_SUMMARY_DECLINED = "branch_summary_declined"

    # Settings
    CONFIG_UPDATED = "config_updated"


@dataclass
class OMEvent:
    type: EventType
    session_id: str
    timestamp: datetime = field(default_factory=utcnow)
    data: Dict[str, Any] = field(default_factory=dict)


class CallbackManager:
    """
    Manages event callbacks. Users register handlers for specific events.
    """

    def __init__(self, session_id: str = "default"):
        self.session_id = session_id
        self._handlers: Dict[EventType, List[Callable[[OMEvent], None]]] = {
            event_type: [] for event_type in EventType
        }

    def on(self, event_type: EventType, callback: Callable[[OMEvent], None]) -> None:
        if callback not in self._handlers[event_type]:
            self._handlers[event_type].append(callback)

    def remove(self, event_type: EventType, callback: Callable[[OMEvent], None]) -> None:
        if callback in self._handlers[event_type]:
            self._handlers[event_type].remove(callback)

    def emit(self, event_type: EventType, **data: Any) -> OMEvent:
        event = OMEvent(type=event_type, session_id=self.session_id, data=data)
        for handler in self._handlers[event.type]:
            try:
                handler(event)
            except Exception:
                # A broken handler must not break compaction
                logger.exception("Callback error in %s", event.type.value)
        return event
