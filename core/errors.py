"""Exception types raised and recorded by the session controller."""


class TypingSessionError(Exception):
    """Base class for typing session errors."""


class InputError(TypingSessionError):
    """Malformed submission (empty word, blank input, bad elapsed time)."""


class TransientSupplyError(TypingSessionError):
    """The word supplier failed; the session continues on a fallback word."""


class AnalysisFailure(TypingSessionError):
    """Pattern analysis of the initial phase failed. Blocks the targeted phase."""


class TargetedBatchFailure(TypingSessionError):
    """Fetching targeted words after analysis failed. Blocks the targeted phase."""


class PersistenceFailure(TypingSessionError):
    """Saving the completed session failed. Retryable without replaying the session."""


class AbortSaveFailure(TypingSessionError):
    """Best-effort save on abort failed. Logged only."""
