"""Collects attempts per phase and combines phases for submission."""

from .config import WORDS_PER_PHASE
from .models import Attempt


class ResultAggregator:
    """Ordered attempt log for a single phase."""

    def __init__(self, capacity: int = WORDS_PER_PHASE):
        self.capacity = capacity
        self._attempts = []

    def __len__(self) -> int:
        return len(self._attempts)

    def record(self, attempt: Attempt) -> None:
        if len(self._attempts) >= self.capacity:
            raise ValueError(f"Phase already holds {self.capacity} attempts")
        self._attempts.append(attempt)

    def snapshot_phase(self) -> tuple:
        """Frozen copy of this phase's attempts in the order they were made."""
        return tuple(self._attempts)

    def is_full(self) -> bool:
        return len(self._attempts) >= self.capacity

    @staticmethod
    def merge(phase1, phase2) -> list:
        """Phase 1 attempts followed by phase 2 attempts, nothing dropped or reordered."""
        return list(phase1) + list(phase2)


def accuracy_percent(attempts) -> float:
    attempts = list(attempts)
    if not attempts:
        return 0.0
    return round(sum(1 for a in attempts if a.correct) / len(attempts) * 100, 1)


def summarize(attempts) -> dict:
    """Headline numbers for a stored session."""
    attempts = list(attempts)
    total = len(attempts)
    average_seconds = sum(a.time_spent_ms for a in attempts) / total / 1000 if total else 0.0
    return {
        'totalWords': total,
        'correctCount': sum(1 for a in attempts if a.correct),
        'overallAccuracy': accuracy_percent(attempts),
        'averageTimePerWord': round(average_seconds, 1)
    }


def compare_phases(phase1, phase2) -> dict:
    """Initial vs targeted accuracy. Targeted figures stay None until phase 2 has attempts."""
    phase2 = list(phase2)
    initial = accuracy_percent(phase1)
    targeted = accuracy_percent(phase2) if phase2 else None
    return {
        'initialPhaseAccuracy': initial,
        'targetedPhaseAccuracy': targeted,
        'improvement': round(targeted - initial, 1) if targeted is not None else None
    }


def phase_progress(attempts, words_per_phase: int = WORDS_PER_PHASE) -> dict:
    """Split a merged attempt list back into its two phases and compare them.

    Phase 2 only starts once phase 1 is full, so the first words_per_phase
    attempts are always phase 1.
    """
    attempts = list(attempts)
    return compare_phases(attempts[:words_per_phase], attempts[words_per_phase:])
