"""Per-phase state carried by the session controller.

Each phase owns exactly the fields it needs, so a targeted word queue cannot
exist during the initial phase and phase 1 results cannot change once frozen.
"""

from .aggregator import ResultAggregator
from .config import WORDS_PER_PHASE
from .models import Phase, Diagnosis


class InitialPhase:
    """Broad sampling round."""

    phase = Phase.INITIAL
    accepts_attempts = True

    def __init__(self, words_per_phase: int = WORDS_PER_PHASE):
        self.results = ResultAggregator(words_per_phase)


class AnalyzingPhase:
    """Gap between rounds while analysis and targeted words are fetched."""

    phase = Phase.ANALYZING
    accepts_attempts = False

    def __init__(self, phase1_attempts: tuple):
        self.phase1_attempts = tuple(phase1_attempts)
        self.diagnosis: Diagnosis | None = None


class TargetedPhase:
    """Remediation round driven by the diagnosis."""

    phase = Phase.TARGETED
    accepts_attempts = True

    def __init__(self, phase1_attempts: tuple, diagnosis: Diagnosis, word_queue: list,
                 words_per_phase: int = WORDS_PER_PHASE):
        self.phase1_attempts = tuple(phase1_attempts)
        self.diagnosis = diagnosis
        self.word_queue = tuple(word_queue)
        self.cursor = 0
        self.results = ResultAggregator(words_per_phase)

    def next_queued_word(self) -> str | None:
        """Pop the next pre-fetched word, or None once the queue is used up."""
        while self.cursor < len(self.word_queue):
            word = self.word_queue[self.cursor]
            self.cursor += 1
            if word and word.strip():
                return word
        return None
