from typing import Dict

from om_compaction.models import OMStats
from om_compaction.observability.callbacks import CallbackManager, EventType, OMEvent


class MetricsTracker:
    """
    Tracks triggers, compactions, declines and reflection drops per session.
    """

    def __init__(self):
        self._sessions: Dict[str, OMStats] = {}

    def _get_or_create_stats(self, session_id: str) -> OMStats:
        if session_id not in self._sessions:
            self._sessions[session_id] = OMStats(session_id=session_id)
        return self._sessions[session_id]

    def attach(self, callbacks: CallbackManager) -> None:
        """Subscribe to the events this tracker counts."""
        callbacks.on(EventType.TRIGGER_FIRED, self.handle_event)
        callbacks.on(EventType.COMPACTION_COMPLETED, self.handle_event)
        callbacks.on(EventType.COMPACTION_DECLINED, self.handle_event)
        callbacks.on(EventType.REFLECTION_COMPLETED, self.handle_event)
        callbacks.on(EventType.BRANCH_SUMMARY_COMPLETED, self.handle_event)

    def handle_event(self, event: OMEvent) -> None:
        stats = self._get_or_create_stats(event.session_id)
        data = event.data

        if event.type is EventType.TRIGGER_FIRED:
            stats.triggers_fired += 1
        elif event.type is EventType.COMPACTION_COMPLETED:
            self.record_compaction(event.session_id, data.get("tokens_before", 0), data.get("observation_count", 0))
        elif event.type is EventType.COMPACTION_DECLINED:
            stats.compactions_declined += 1
        elif event.type is EventType.REFLECTION_COMPLETED:
            self.record_reflection(event.session_id, data.get("mode"), data.get("dropped", 0))
        elif event.type is EventType.BRANCH_SUMMARY_COMPLETED:
            stats.branch_summaries += 1

    def record_compaction(self, session_id: str, tokens_before: int, observation_count: int):
        stats = self._get_or_create_stats(session_id)
        stats.compactions += 1
        stats.total_tokens_before += tokens_before or 0
        stats.last_observation_count = observation_count

    def record_reflection(self, session_id: str, mode: str, dropped: int):
        stats = self._get_or_create_stats(session_id)
        stats.reflections += 1
        if mode == "forced":
            stats.forced_reflections += 1
        stats.observations_dropped += dropped

    def get_session_stats(self, session_id: str) -> OMStats:
        return self._get_or_create_stats(session_id)

    def get_global_stats(self) -> dict:
        return {
            "total_sessions": len(self._sessions),
            "total_compactions": sum(s.compactions for s in self._sessions.values()),
            "total_declines": sum(s.compactions_declined for s in self._sessions.values()),
            "total_observations_dropped": sum(s.observations_dropped for s in self._sessions.values()),
        }
