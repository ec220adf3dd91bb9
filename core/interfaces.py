"""Abstract base classes for the collaborators the session controller calls."""

from abc import ABC, abstractmethod

from .models import Attempt, Diagnosis


class WordSupplier(ABC):
    """Source of words to type."""

    @abstractmethod
    def next_word(self, session_id: str, username: str, therapist_code: str,
                  phase: str, difficulty_hint: str, history: list[Attempt]) -> str:
        """Return one word for the given phase and difficulty tier."""
        pass

    @abstractmethod
    def targeted_batch(self, session_id: str, username: str, therapist_code: str,
                       diagnosis: Diagnosis) -> list[str]:
        """Return an ordered batch of words practising the diagnosed letters."""
        pass


class AnalysisClient(ABC):
    """Letter-confusion pattern analysis."""

    @abstractmethod
    def analyze(self, session_id: str, username: str, therapist_code: str,
                attempts: list[Attempt]) -> Diagnosis:
        """Diagnose a finished initial phase."""
        pass


class PersistenceClient(ABC):
    """Durable storage of session results."""

    @abstractmethod
    def save(self, session_id: str, username: str, therapist_code: str,
             attempts: list[Attempt], diagnosis: Diagnosis | None, is_complete: bool) -> dict:
        """Store a finished or partial session. Returns an acknowledgement dict."""
        pass
