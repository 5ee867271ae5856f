from om_compaction.observability.callbacks import CallbackManager, EventType, OMEvent
from om_compaction.observability.metrics import MetricsTracker
from om_compaction.observability.status import (
    StatusSnapshot,
    ViewOptions,
    build_status_snapshot,
    format_settings_report,
    format_status_report,
    parse_view_args,
    render_observation_view,
)

__all__ = [
    "CallbackManager",
    "EventType",
    "OMEvent",
    "MetricsTracker",
    "StatusSnapshot",
    "ViewOptions",
    "build_status_snapshot",
    "format_settings_report",
    "format_status_report",
    "parse_view_args",
    "render_observation_view",
]
