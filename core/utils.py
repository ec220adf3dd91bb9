"""Utility functions for typesight application."""


def normalize_word(text: str) -> str:
    """Trim surrounding whitespace and lower-case a word for comparison."""
    return (text or '').strip().lower()


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
