"""Domain models for typesight application."""

from dataclasses import dataclass
from enum import Enum


class Phase(str, Enum):
    """Assessment phases. ANALYZING is the transient gap between the two rounds."""
    INITIAL = 'initial'
    ANALYZING = 'analyzing'
    TARGETED = 'targeted'


class SessionStatus(str, Enum):
    """Controller states."""
    AWAITING_WORD = 'awaiting_word'
    AWAITING_INPUT = 'awaiting_input'
    SCORING = 'scoring'
    TRANSITIONING = 'transitioning'
    ANALYSIS_FAILED = 'analysis_failed'
    FINISHING = 'finishing'
    COMPLETED = 'completed'
    ABORTED = 'aborted'


TERMINAL_STATUSES = (SessionStatus.COMPLETED, SessionStatus.ABORTED)


@dataclass(frozen=True)
class SessionIdentity:
    """Opaque identity supplied by the embedding application."""
    session_id: str
    username: str
    therapist_code: str


@dataclass(frozen=True)
class Attempt:
    """One scored submission against one presented word."""
    word: str
    input: str
    correct: bool
    time_spent_ms: int
    mistake_count: int

    def to_dict(self) -> dict:
        return {
            'word': self.word,
            'input': self.input,
            'correct': self.correct,
            'timeSpent': self.time_spent_ms,
            'mistakes': self.mistake_count
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Attempt':
        return cls(
            word=data['word'],
            input=data['input'],
            correct=bool(data['correct']),
            time_spent_ms=int(data.get('timeSpent', 0)),
            mistake_count=int(data.get('mistakes', 0))
        )


class Diagnosis:
    """Structured result of the pattern analysis.

    The core only reads problem letters and confusion pairs; every other key
    returned by the analysis service is kept and handed back unchanged.
    """

    def __init__(self, problematic_letters: list = None, confusion_pairs: list = None,
                 recommendations: list = None, extra: dict = None):
        # Set semantics, first-seen order kept for display
        letters = []
        for letter in problematic_letters or []:
            if letter not in letters:
                letters.append(letter)
        self.problematic_letters = letters
        self.confusion_pairs = list(confusion_pairs or [])  # [{'confuses': 'b', 'with': 'd'}]
        self.recommendations = recommendations if recommendations is not None else []
        self.extra = dict(extra or {})

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data['problematicLetters'] = list(self.problematic_letters)
        data['confusionPatterns'] = [dict(p) for p in self.confusion_pairs]
        data['recommendations'] = self.recommendations
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'Diagnosis':
        known = ('problematicLetters', 'confusionPatterns', 'confusionPairs', 'recommendations')
        pairs = data.get('confusionPatterns', data.get('confusionPairs', []))
        return cls(
            problematic_letters=[str(l) for l in data.get('problematicLetters', []) or []],
            confusion_pairs=[
                {'confuses': str(p.get('confuses', '')), 'with': str(p.get('with', ''))}
                for p in pairs or [] if isinstance(p, dict)
            ],
            recommendations=data.get('recommendations'),
            extra={k: v for k, v in data.items() if k not in known}
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Diagnosis):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"Diagnosis(letters={self.problematic_letters}, pairs={self.confusion_pairs})"
