class OMCompactionError(Exception):
    """Base class for om-compaction errors."""


class ConfigError(OMCompactionError, ValueError):
    """Malformed or out-of-range configuration input. Prior settings stay unchanged."""


class CapabilityUnavailable(OMCompactionError):
    """No generation target or no credential for it."""


class SummarizationError(OMCompactionError):
    """The summarization call failed or produced nothing usable."""


class SummarizationAborted(SummarizationError):
    """The caller's cancellation signal fired. Never retried."""


class CompactionDeclined(OMCompactionError):
    """Observational compaction did not produce a result; the host's default applies."""


class NothingToCompact(OMCompactionError):
    """The session has no entries that a compaction would consume."""


_BENIGN_MARKERS = ("nothing to compact", "already compacted", "compaction cancelled")


def is_benign_compaction_error(error: BaseException) -> bool:
    """
    True for outcomes that only mean a concurrent request already did the work.

    These are not defects and are not surfaced to the operator.
    """
    if isinstance(error, NothingToCompact):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _BENIGN_MARKERS)
