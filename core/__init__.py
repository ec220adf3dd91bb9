from .models import Attempt, Diagnosis, Phase, SessionIdentity, SessionStatus
from .interfaces import WordSupplier, AnalysisClient, PersistenceClient
from .errors import (
    TypingSessionError, InputError, TransientSupplyError,
    AnalysisFailure, TargetedBatchFailure, PersistenceFailure, AbortSaveFailure
)
from .scoring import score, count_mistakes, per_word_accuracy, build_feedback
from .difficulty import update_rolling_accuracy, next_tier
from .aggregator import ResultAggregator, summarize, compare_phases, phase_progress
from .timing import DelayPolicy, RetryPolicy
from .session import SessionController
from .config import WORDS_PER_PHASE, FALLBACK_WORDS

__all__ = [
    'Attempt', 'Diagnosis', 'Phase', 'SessionIdentity', 'SessionStatus',
    'WordSupplier', 'AnalysisClient', 'PersistenceClient',
    'TypingSessionError', 'InputError', 'TransientSupplyError',
    'AnalysisFailure', 'TargetedBatchFailure', 'PersistenceFailure', 'AbortSaveFailure',
    'score', 'count_mistakes', 'per_word_accuracy', 'build_feedback',
    'update_rolling_accuracy', 'next_tier',
    'ResultAggregator', 'summarize', 'compare_phases', 'phase_progress',
    'DelayPolicy', 'RetryPolicy',
    'SessionController',
    'WORDS_PER_PHASE', 'FALLBACK_WORDS'
]
