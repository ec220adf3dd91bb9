"""Session controller for the two-phase typing assessment.

A session runs an initial round of words, sends the results for pattern
analysis, runs a targeted round built from the diagnosis, then saves both
rounds together. Every handler runs to completion before the next event is
accepted; collaborator calls are the only suspension points.
"""

import asyncio
import logging

from .aggregator import ResultAggregator, compare_phases
from .config import (
    WORDS_PER_PHASE, FALLBACK_WORDS, DEFAULT_TIER, INITIAL_ROLLING_ACCURACY,
    WORD_SUPPLY_ATTEMPTS, SAVE_ATTEMPTS, ANALYSIS_ATTEMPTS,
    REMOTE_CALL_TIMEOUT_SECONDS
)
from .difficulty import update_rolling_accuracy, next_tier
from .errors import (
    TransientSupplyError, AnalysisFailure, TargetedBatchFailure,
    PersistenceFailure, AbortSaveFailure
)
from .interfaces import WordSupplier, AnalysisClient, PersistenceClient
from .models import Attempt, Diagnosis, Phase, SessionIdentity, SessionStatus, TERMINAL_STATUSES
from .phases import InitialPhase, AnalyzingPhase, TargetedPhase
from .scoring import score, per_word_accuracy, build_feedback
from .timing import DelayPolicy, RetryPolicy, NO_RETRY, monotonic_ms

logger = logging.getLogger(__name__)


class SessionController:
    """Drives one child's assessment session from first word to saved results."""

    def __init__(self, identity: SessionIdentity, word_supplier: WordSupplier,
                 analysis_client: AnalysisClient, persistence: PersistenceClient,
                 words_per_phase: int = WORDS_PER_PHASE,
                 delays: DelayPolicy = None, clock=None, fallback_words: list = None,
                 word_retry: RetryPolicy = None, analysis_retry: RetryPolicy = None,
                 save_retry: RetryPolicy = None,
                 call_timeout: float | None = REMOTE_CALL_TIMEOUT_SECONDS):
        self.identity = identity
        self.word_supplier = word_supplier
        self.analysis_client = analysis_client
        self.persistence = persistence
        self.words_per_phase = words_per_phase
        self.delays = delays or DelayPolicy()
        self.clock = clock or monotonic_ms
        self.fallback_words = list(fallback_words or FALLBACK_WORDS)
        self.word_retry = word_retry or RetryPolicy(WORD_SUPPLY_ATTEMPTS)
        self.analysis_retry = analysis_retry or RetryPolicy(ANALYSIS_ATTEMPTS)
        self.save_retry = save_retry or RetryPolicy(SAVE_ATTEMPTS)
        self.call_timeout = call_timeout

        self.status = SessionStatus.AWAITING_WORD
        self.current_word = None
        self.rolling_accuracy = INITIAL_ROLLING_ACCURACY
        self.difficulty_tier = DEFAULT_TIER
        self.cumulative_mistakes = 0
        self.last_feedback = None
        self.error = None
        self.abort_error = None
        self.merged_attempts = None
        self.save_ack = None
        self.fallback_count = 0

        self._phase_state = InitialPhase(words_per_phase)
        self._displayed_at = None
        self._fallback_index = 0
        self._lock = asyncio.Lock()
        self._aborting = False
        self._save_idle = asyncio.Event()
        self._save_idle.set()

    # ------------------------------------------------------------------
    # Read-only view

    @property
    def phase(self) -> Phase:
        return self._phase_state.phase

    @property
    def attempts_this_phase(self) -> tuple:
        if isinstance(self._phase_state, AnalyzingPhase):
            return ()
        return self._phase_state.results.snapshot_phase()

    @property
    def phase1_attempts(self) -> tuple | None:
        if isinstance(self._phase_state, InitialPhase):
            return None
        return self._phase_state.phase1_attempts

    @property
    def diagnosis(self) -> Diagnosis | None:
        if isinstance(self._phase_state, InitialPhase):
            return None
        return self._phase_state.diagnosis

    @property
    def targeted_word_queue(self) -> tuple | None:
        if isinstance(self._phase_state, TargetedPhase):
            return self._phase_state.word_queue
        return None

    @property
    def targeted_word_cursor(self) -> int | None:
        if isinstance(self._phase_state, TargetedPhase):
            return self._phase_state.cursor
        return None

    @property
    def is_loading(self) -> bool:
        return self.current_word is None and self.status == SessionStatus.AWAITING_WORD

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def all_attempts(self) -> list[Attempt]:
        """Every attempt made so far, phase 1 first."""
        if self.merged_attempts is not None:
            return list(self.merged_attempts)
        state = self._phase_state
        if isinstance(state, InitialPhase):
            return list(state.results.snapshot_phase())
        if isinstance(state, AnalyzingPhase):
            return list(state.phase1_attempts)
        return ResultAggregator.merge(state.phase1_attempts, state.results.snapshot_phase())

    def phase_summary(self) -> dict:
        phase1 = self.phase1_attempts
        if phase1 is None:
            phase1 = self.attempts_this_phase
            phase2 = ()
        elif isinstance(self._phase_state, TargetedPhase):
            phase2 = self._phase_state.results.snapshot_phase()
        else:
            phase2 = ()
        return compare_phases(phase1, phase2)

    def snapshot(self) -> dict:
        diagnosis = self.diagnosis
        return {
            'session_id': self.identity.session_id,
            'username': self.identity.username,
            'status': self.status.value,
            'phase': self.phase.value,
            'current_word': self.current_word,
            'loading': self.is_loading,
            'feedback': self.last_feedback,
            'rolling_accuracy': round(self.rolling_accuracy, 1),
            'difficulty': self.difficulty_tier,
            'cumulative_mistakes': self.cumulative_mistakes,
            'words_per_phase': self.words_per_phase,
            'attempts_this_phase': [a.to_dict() for a in self.attempts_this_phase],
            'diagnosis': diagnosis.to_dict() if diagnosis else None,
            'error': str(self.error) if self.error else None,
            'error_type': type(self.error).__name__ if self.error else None,
            'summary': self.phase_summary()
        }

    # ------------------------------------------------------------------
    # Events

    async def start(self) -> None:
        """Fetch and display the first word."""
        if self._lock.locked():
            return
        async with self._lock:
            if self.status != SessionStatus.AWAITING_WORD or self.current_word is not None:
                return
            logger.info(f"Session {self.identity.session_id} started for {self.identity.username}")
            await self._present_next_word()

    async def submit(self, raw_input: str, elapsed_ms: float | None = None) -> Attempt | None:
        """Score typed input against the displayed word and move the session on.

        Returns None when the session is not waiting for input, including while
        another event is still being handled. Raises InputError for malformed
        input without touching session state.
        """
        if self._lock.locked():
            logger.info(f"Session {self.identity.session_id} busy, ignoring submission")
            return None
        async with self._lock:
            if self.status != SessionStatus.AWAITING_INPUT or self.current_word is None:
                logger.info(f"Session {self.identity.session_id} not awaiting input ({self.status.value})")
                return None
            if elapsed_ms is None:
                elapsed_ms = max(0.0, self.clock() - self._displayed_at)
            attempt = score(self.current_word, raw_input, elapsed_ms)

            self.status = SessionStatus.SCORING
            self._record(attempt)
            await self._advance()
            return attempt

    async def retry_analysis(self) -> bool:
        """Re-run a failed phase transition. Phase 1 results are reused as-is."""
        if self._lock.locked():
            return False
        async with self._lock:
            if self.status != SessionStatus.ANALYSIS_FAILED:
                return False
            logger.info(f"Retrying analysis for session {self.identity.session_id}")
            self.error = None
            self.status = SessionStatus.TRANSITIONING
            await self._run_transition()
            return self.status not in (SessionStatus.ANALYSIS_FAILED, SessionStatus.ABORTED)

    async def retry_save(self) -> bool:
        """Re-send the retained merged results after a failed save."""
        if self._lock.locked():
            return False
        async with self._lock:
            if self.status != SessionStatus.FINISHING or self.merged_attempts is None:
                return False
            logger.info(f"Retrying save for session {self.identity.session_id}")
            return await self._save_merged()

    async def abort(self) -> bool:
        """End the session early and save whatever has been typed.

        Safe from any state. Only the first call does anything; it returns True
        when a save was attempted. An in-flight word fetch or analysis is left
        to settle and its result is discarded. An in-flight completion save is
        awaited first so the results are never sent twice.
        """
        if self._aborting or self.is_terminal:
            return False
        self._aborting = True

        if not self._save_idle.is_set():
            await self._save_idle.wait()
            if self.status == SessionStatus.COMPLETED:
                return False

        self.status = SessionStatus.ABORTED
        self.current_word = None
        self.last_feedback = 'Session ended.'
        attempts = self.all_attempts()
        logger.info(f"Session {self.identity.session_id} aborted with {len(attempts)} attempts")
        if not attempts:
            return False

        diagnosis = self.diagnosis
        try:
            await self._call(
                'abort save', self.persistence.save,
                self.identity.session_id, self.identity.username, self.identity.therapist_code,
                attempts, diagnosis, False,
                retry=NO_RETRY
            )
        except Exception as e:
            self.abort_error = AbortSaveFailure(f"Failed to save on abort: {e}")
            logger.error(f"Abort save failed for session {self.identity.session_id}: {e}")
        return True

    # ------------------------------------------------------------------
    # Steps

    def _record(self, attempt: Attempt) -> None:
        self._phase_state.results.record(attempt)
        self.rolling_accuracy = update_rolling_accuracy(self.rolling_accuracy, per_word_accuracy(attempt))
        self.difficulty_tier = next_tier(self.difficulty_tier, self.rolling_accuracy)
        self.cumulative_mistakes += attempt.mistake_count
        self.last_feedback = build_feedback(attempt, self.rolling_accuracy)
        self.current_word = None
        self._displayed_at = None
        logger.info(f"Session {self.identity.session_id} {self.phase.value} "
                    f"{len(self._phase_state.results)}/{self.words_per_phase}: "
                    f"{attempt.word} -> {attempt.input} ({attempt.mistake_count} mistakes, "
                    f"accuracy {self.rolling_accuracy:.1f}, tier {self.difficulty_tier})")

    async def _advance(self) -> None:
        state = self._phase_state
        # The attempt that fills the phase is the one that triggers the transition
        if not state.results.is_full():
            self.status = SessionStatus.AWAITING_WORD
            await self.delays.feedback()
            if self._aborting:
                return
            await self._present_next_word()
        elif isinstance(state, InitialPhase):
            self._phase_state = AnalyzingPhase(state.results.snapshot_phase())
            self.status = SessionStatus.TRANSITIONING
            self.last_feedback = 'Analyzing your typing patterns...'
            logger.info(f"Session {self.identity.session_id} entering analysis")
            await self._run_transition()
        else:
            await self._finish(state)

    async def _present_next_word(self) -> None:
        self.status = SessionStatus.AWAITING_WORD
        self.current_word = None
        word = None
        if isinstance(self._phase_state, TargetedPhase):
            word = self._phase_state.next_queued_word()
            if word is not None:
                await self.delays.word_display()
        if word is None:
            word = await self._fetch_word()
        if self._aborting:
            logger.info(f"Discarding word for aborted session {self.identity.session_id}")
            return
        self.current_word = word
        # Timer starts at display, so fetch latency is never charged to the child
        self._displayed_at = self.clock()
        self.status = SessionStatus.AWAITING_INPUT

    async def _fetch_word(self) -> str:
        identity = self.identity
        try:
            word = await self._call(
                'word supply', self.word_supplier.next_word,
                identity.session_id, identity.username, identity.therapist_code,
                self.phase.value, self.difficulty_tier, list(self.attempts_this_phase),
                retry=self.word_retry
            )
            if not isinstance(word, str) or not word.strip():
                raise TransientSupplyError(f"Word supplier returned {word!r}")
            return word.strip()
        except Exception as e:
            word = self.fallback_words[self._fallback_index % len(self.fallback_words)]
            self._fallback_index += 1
            self.fallback_count += 1
            logger.warning(f"Word supply failed for session {identity.session_id}, "
                           f"using fallback '{word}': {e}")
            return word

    async def _run_transition(self) -> None:
        analyzing = self._phase_state
        identity = self.identity
        await self.delays.thinking()
        if self._aborting:
            return

        if analyzing.diagnosis is None:
            try:
                diagnosis = await self._call(
                    'analysis', self.analysis_client.analyze,
                    identity.session_id, identity.username, identity.therapist_code,
                    list(analyzing.phase1_attempts),
                    retry=self.analysis_retry
                )
                if isinstance(diagnosis, dict):
                    diagnosis = Diagnosis.from_dict(diagnosis)
                if not isinstance(diagnosis, Diagnosis):
                    raise ValueError(f"Analysis returned {type(diagnosis).__name__}")
            except Exception as e:
                self._fail_transition(AnalysisFailure(f"Failed to analyze results: {e}"))
                return
            if self._aborting:
                return
            analyzing.diagnosis = diagnosis

        try:
            words = await self._call(
                'targeted batch', self.word_supplier.targeted_batch,
                identity.session_id, identity.username, identity.therapist_code,
                analyzing.diagnosis,
                retry=self.word_retry
            )
        except Exception as e:
            self._fail_transition(TargetedBatchFailure(f"Failed to generate targeted words: {e}"))
            return
        if self._aborting:
            return

        self._phase_state = TargetedPhase(
            analyzing.phase1_attempts, analyzing.diagnosis, list(words or []), self.words_per_phase
        )
        self.error = None
        message = 'First set completed!\n\n'
        if analyzing.diagnosis.problematic_letters:
            message += f"Letters to focus on: {', '.join(analyzing.diagnosis.problematic_letters)}\n"
        message += "\nLet's practice with some targeted words..."
        self.last_feedback = message
        logger.info(f"Session {identity.session_id} entering targeted phase with "
                    f"{len(self._phase_state.word_queue)} queued words")

        await self.delays.feedback()
        if self._aborting:
            return
        await self._present_next_word()

    def _fail_transition(self, error: Exception) -> None:
        logger.error(f"Session {self.identity.session_id} phase transition failed: {error}")
        if self._aborting:
            return
        self.error = error
        self.status = SessionStatus.ANALYSIS_FAILED
        self.last_feedback = 'Failed to analyze results and generate targeted words'

    async def _finish(self, state: TargetedPhase) -> None:
        self.status = SessionStatus.FINISHING
        self.last_feedback = 'Completing final analysis...'
        await self.delays.thinking()
        if self._aborting:
            return
        self.merged_attempts = ResultAggregator.merge(state.phase1_attempts, state.results.snapshot_phase())
        await self._save_merged()

    async def _save_merged(self) -> bool:
        identity = self.identity
        self._save_idle.clear()
        try:
            ack = await self._call(
                'save', self.persistence.save,
                identity.session_id, identity.username, identity.therapist_code,
                list(self.merged_attempts), self.diagnosis, True,
                retry=self.save_retry
            )
        except Exception as e:
            self.error = PersistenceFailure(f"Failed to save results: {e}")
            self.last_feedback = 'Failed to save results'
            logger.error(f"Save failed for session {identity.session_id}: {e}")
            return False
        finally:
            self._save_idle.set()

        self.save_ack = ack
        self.error = None
        self.status = SessionStatus.COMPLETED
        self.last_feedback = '🎉 Assessment complete! Results saved.'
        logger.info(f"Session {identity.session_id} completed with {len(self.merged_attempts)} attempts")
        return True

    async def _call(self, label: str, fn, *args, retry: RetryPolicy = NO_RETRY):
        """Run a blocking collaborator call off the event loop with retry and timeout."""
        loop = asyncio.get_running_loop()
        for attempt_number in range(1, retry.attempts + 1):
            try:
                call = loop.run_in_executor(None, lambda: fn(*args))
                if self.call_timeout:
                    return await asyncio.wait_for(call, self.call_timeout)
                return await call
            except Exception as e:
                if attempt_number >= retry.attempts or self._aborting:
                    raise
                backoff = retry.backoff_for(attempt_number)
                logger.warning(f"{label} failed for session {self.identity.session_id} ({e}), "
                               f"retry {attempt_number}/{retry.attempts - 1} in {backoff:.0f}ms")
                await self.delays.sleep(backoff)
