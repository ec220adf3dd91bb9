"""Per-attempt scoring: correctness, character mistakes and feedback text."""

import math

from .errors import InputError
from .models import Attempt
from .utils import normalize_word, clamp


def count_mistakes(target: str, typed: str) -> int:
    """Count positions where the two words differ.

    Compares index by index over the longer word; a position past the end of
    either word counts as a mismatch. This is not an edit distance.
    """
    mistakes = 0
    for i in range(max(len(target), len(typed))):
        expected = target[i] if i < len(target) else None
        actual = typed[i] if i < len(typed) else None
        if expected != actual:
            mistakes += 1
    return mistakes


def _validate_elapsed(elapsed_ms) -> int:
    if elapsed_ms is None or isinstance(elapsed_ms, bool) or not isinstance(elapsed_ms, (int, float)):
        raise InputError(f"Elapsed time must be a number of milliseconds, got {elapsed_ms!r}")
    if not math.isfinite(elapsed_ms):
        raise InputError(f"Elapsed time must be finite, got {elapsed_ms!r}")
    if elapsed_ms < 0:
        raise InputError(f"Elapsed time cannot be negative: {elapsed_ms}")
    return int(round(elapsed_ms))


def score(target: str, raw_input: str, elapsed_ms) -> Attempt:
    """Score one submission against the displayed word."""
    if not isinstance(target, str) or not normalize_word(target):
        raise InputError("Target word is empty")
    if not isinstance(raw_input, str) or not normalize_word(raw_input):
        raise InputError("Typed input is empty")
    time_spent = _validate_elapsed(elapsed_ms)

    expected = normalize_word(target)
    typed = normalize_word(raw_input)
    return Attempt(
        word=target,
        input=typed,
        correct=expected == typed,
        time_spent_ms=time_spent,
        mistake_count=count_mistakes(expected, typed)
    )


def per_word_accuracy(attempt: Attempt) -> float:
    """Accuracy of a single attempt in percent, clamped to [0, 100]."""
    length = len(normalize_word(attempt.word))
    if length == 0:
        raise InputError("Target word is empty")
    return clamp((1 - attempt.mistake_count / length) * 100, 0.0, 100.0)


def build_feedback(attempt: Attempt, rolling_accuracy: float) -> str:
    """Human-readable comparison of what was typed against the target."""
    if attempt.correct:
        return f"✓ Perfect! Time: {attempt.time_spent_ms / 1000:.1f}s\nAccuracy: {rolling_accuracy:.1f}%"

    expected = normalize_word(attempt.word)
    typed = attempt.input
    comparison = ''.join(
        '✓' if i < len(typed) and i < len(expected) and typed[i] == expected[i] else '✗'
        for i in range(max(len(typed), len(expected)))
    )

    lines = [
        f"The word was: {attempt.word}",
        f"Your typing: {typed}",
        f"Accuracy:   {comparison}",
        ''
    ]
    if len(typed) != len(expected):
        tip = 'You missed some letters.' if len(typed) < len(expected) else 'You added extra letters.'
        lines.append(f"Tip: Pay attention to word length. {tip}")
    else:
        focus = [f"'{expected[i]}' (typed '{typed[i]}')" for i in range(len(typed)) if typed[i] != expected[i]]
        if focus:
            lines.append(f"Focus on: {', '.join(focus)}")
    return '\n'.join(lines)
