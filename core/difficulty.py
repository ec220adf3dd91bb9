"""Difficulty tier selection from rolling accuracy."""

from .config import TIERS, HARD_ACCURACY_THRESHOLD, MEDIUM_ACCURACY_THRESHOLD
from .utils import clamp


def update_rolling_accuracy(previous: float, word_accuracy: float) -> float:
    """Average the previous estimate with the latest word.

    Halving each time weights recent words more heavily than a running mean.
    """
    return clamp((previous + word_accuracy) / 2, 0.0, 100.0)


def next_tier(current_tier: str, rolling_accuracy: float) -> str:
    """Pick the tier for the next word.

    Re-evaluated after every attempt with no hysteresis, so a child hovering
    around a threshold can move back and forth between tiers.
    """
    if current_tier not in TIERS:
        raise ValueError(f"Unknown difficulty tier: {current_tier}")
    if rolling_accuracy >= HARD_ACCURACY_THRESHOLD:
        return 'hard'
    if rolling_accuracy >= MEDIUM_ACCURACY_THRESHOLD:
        return 'medium'
    return 'easy'
