"""Unit tests for the session controller."""

import asyncio
import threading
import time
import unittest

from core.errors import InputError, AnalysisFailure, TargetedBatchFailure, PersistenceFailure
from core.interfaces import WordSupplier, AnalysisClient, PersistenceClient
from core.models import Diagnosis, Phase, SessionIdentity, SessionStatus
from core.session import SessionController
from core.timing import DelayPolicy, RetryPolicy


# ============================================================================
# Mock Implementations
# ============================================================================

class MockWordSupplier(WordSupplier):
    """Mock word supplier for testing."""

    def __init__(self, words=None, batch=None):
        self.words = list(words or ['sun', 'map', 'bed', 'pig', 'dot', 'fog', 'hat', 'jam', 'log', 'cup'])
        self.batch = list(batch if batch is not None else ['bed', 'dab', 'bird', 'drab', 'double'])
        self.fail_calls = set()
        self.batch_error = None
        self.block_call = None
        self.entered = threading.Event()
        self.release = threading.Event()
        self.next_word_calls = []
        self.targeted_batch_calls = []

    def next_word(self, session_id, username, therapist_code, phase, difficulty_hint, history):
        self.next_word_calls.append((phase, difficulty_hint, list(history)))
        call_number = len(self.next_word_calls)
        if call_number == self.block_call:
            self.entered.set()
            self.release.wait(5)
        if call_number in self.fail_calls:
            raise ConnectionError("word service down")
        return self.words.pop(0)

    def targeted_batch(self, session_id, username, therapist_code, diagnosis):
        self.targeted_batch_calls.append(diagnosis)
        if self.batch_error:
            raise self.batch_error
        return list(self.batch)


class MockAnalysisClient(AnalysisClient):
    """Mock analysis client for testing."""

    def __init__(self, result=None):
        self.result = result if result is not None else Diagnosis(['b', 'd'], [{'confuses': 'd', 'with': 'b'}])
        self.error = None
        self.calls = []

    def analyze(self, session_id, username, therapist_code, attempts):
        self.calls.append(list(attempts))
        if self.error:
            raise self.error
        return self.result


class MockPersistence(PersistenceClient):
    """Mock persistence client for testing."""

    def __init__(self):
        self.saves = []
        self.error = None
        self.block = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def save(self, session_id, username, therapist_code, attempts, diagnosis, is_complete):
        if self.block:
            self.entered.set()
            self.release.wait(5)
        self.saves.append({
            'session_id': session_id,
            'attempts': list(attempts),
            'diagnosis': diagnosis,
            'is_complete': is_complete
        })
        if self.error:
            raise self.error
        return {'saved': True, 'sessionId': session_id}


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def wait_for_event(event: threading.Event, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while not event.is_set():
        if time.monotonic() > deadline:
            raise AssertionError("Timed out waiting for collaborator call")
        await asyncio.sleep(0.01)


class SessionTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared fixtures: mock collaborators and no UX delays."""

    def setUp(self):
        self.supplier = MockWordSupplier()
        self.analysis = MockAnalysisClient()
        self.persistence = MockPersistence()
        self.clock = FakeClock()

    def tearDown(self):
        # Never leave an executor thread parked on a mock
        self.supplier.release.set()
        self.persistence.release.set()

    def make_controller(self, **kwargs) -> SessionController:
        kwargs.setdefault('delays', DelayPolicy.none())
        kwargs.setdefault('clock', self.clock)
        kwargs.setdefault('word_retry', RetryPolicy(1))
        kwargs.setdefault('analysis_retry', RetryPolicy(1))
        kwargs.setdefault('save_retry', RetryPolicy(1))
        return SessionController(
            SessionIdentity('s1', 'ana', 'T-100'),
            self.supplier, self.analysis, self.persistence, **kwargs
        )

    async def play(self, controller: SessionController, count: int, typed: str = None):
        """Submit the displayed word (or a fixed string) count times."""
        attempts = []
        for _ in range(count):
            attempts.append(await controller.submit(typed or controller.current_word, 1000))
        return attempts


# ============================================================================
# Initial phase
# ============================================================================

class TestInitialPhase(SessionTestCase):

    async def test_start_shows_first_word(self):
        controller = self.make_controller()
        self.assertTrue(controller.is_loading)
        await controller.start()
        self.assertEqual(controller.current_word, 'sun')
        self.assertEqual(controller.status, SessionStatus.AWAITING_INPUT)
        self.assertEqual(controller.phase, Phase.INITIAL)
        self.assertFalse(controller.is_loading)
        self.assertEqual(self.supplier.next_word_calls[0][:2], ('initial', 'easy'))

    async def test_submit_records_attempt(self):
        controller = self.make_controller()
        await controller.start()
        attempt = await controller.submit('SUN ', 1200)
        self.assertTrue(attempt.correct)
        self.assertEqual(attempt.time_spent_ms, 1200)
        self.assertEqual(len(controller.attempts_this_phase), 1)
        self.assertEqual(controller.current_word, 'map')
        self.assertIn('Perfect', controller.last_feedback)

    async def test_wrong_word_updates_accuracy_and_tier(self):
        self.supplier.words[0] = 'book'
        controller = self.make_controller()
        await controller.start()
        attempt = await controller.submit('boko', 1000)
        self.assertEqual(attempt.mistake_count, 2)
        self.assertEqual(controller.rolling_accuracy, 75.0)
        self.assertEqual(controller.difficulty_tier, 'medium')
        self.assertEqual(controller.cumulative_mistakes, 2)
        self.assertIn("The word was: book", controller.last_feedback)
        # The next word is requested at the new tier
        self.assertEqual(self.supplier.next_word_calls[1][1], 'medium')

    async def test_history_passed_to_supplier(self):
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 2)
        history = self.supplier.next_word_calls[2][2]
        self.assertEqual([a.word for a in history], ['sun', 'map'])

    async def test_blank_input_leaves_state_untouched(self):
        controller = self.make_controller()
        await controller.start()
        with self.assertRaises(InputError):
            await controller.submit('   ', 1000)
        self.assertEqual(controller.current_word, 'sun')
        self.assertEqual(controller.status, SessionStatus.AWAITING_INPUT)
        self.assertEqual(controller.attempts_this_phase, ())
        self.assertEqual(controller.rolling_accuracy, 100.0)

    async def test_submit_before_start_ignored(self):
        controller = self.make_controller()
        self.assertIsNone(await controller.submit('sun', 1000))

    async def test_timer_starts_at_display(self):
        self.clock.now = 5000
        controller = self.make_controller()
        await controller.start()
        self.clock.now = 7500
        attempt = await controller.submit('sun')
        self.assertEqual(attempt.time_spent_ms, 2500)

    async def test_snapshot(self):
        controller = self.make_controller()
        await controller.start()
        state = controller.snapshot()
        self.assertEqual(state['status'], 'awaiting_input')
        self.assertEqual(state['phase'], 'initial')
        self.assertEqual(state['current_word'], 'sun')
        self.assertIsNone(state['diagnosis'])
        self.assertIsNone(state['error'])
        self.assertEqual(state['words_per_phase'], 5)


class TestFallbackWords(SessionTestCase):

    async def test_fallback_on_third_word(self):
        self.supplier.fail_calls = {3}
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 2)
        self.assertEqual(controller.current_word, 'cat')
        self.assertEqual(controller.status, SessionStatus.AWAITING_INPUT)
        self.assertEqual(controller.fallback_count, 1)
        self.assertIsNone(controller.error)

    async def test_fallbacks_rotate(self):
        self.supplier.fail_calls = {1, 2, 3}
        controller = self.make_controller()
        await controller.start()
        seen = [controller.current_word]
        for _ in range(2):
            await controller.submit(controller.current_word, 1000)
            seen.append(controller.current_word)
        self.assertEqual(seen, ['cat', 'dog', 'sun'])

    async def test_retry_before_fallback(self):
        self.supplier.fail_calls = {1}
        controller = self.make_controller(word_retry=RetryPolicy(3, backoff_ms=0))
        await controller.start()
        self.assertEqual(controller.current_word, 'sun')
        self.assertEqual(controller.fallback_count, 0)
        self.assertEqual(len(self.supplier.next_word_calls), 2)

    async def test_empty_word_uses_fallback(self):
        self.supplier.words[0] = '   '
        controller = self.make_controller()
        await controller.start()
        self.assertEqual(controller.current_word, 'cat')

    async def test_slow_supplier_times_out(self):
        class SlowSupplier(MockWordSupplier):
            def next_word(self, *args):
                time.sleep(0.3)
                return 'late'

        self.supplier = SlowSupplier()
        controller = self.make_controller(call_timeout=0.05)
        await controller.start()
        self.assertEqual(controller.current_word, 'cat')


# ============================================================================
# Phase transition
# ============================================================================

class TestTransition(SessionTestCase):

    async def test_fifth_attempt_triggers_transition_once(self):
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 5)
        self.assertEqual(len(self.analysis.calls), 1)
        self.assertEqual(len(self.analysis.calls[0]), 5)
        self.assertEqual(len(controller.phase1_attempts), 5)
        self.assertEqual(controller.phase, Phase.TARGETED)
        self.assertEqual(controller.attempts_this_phase, ())
        self.assertEqual(controller.status, SessionStatus.AWAITING_INPUT)
        self.assertIn('Letters to focus on: b, d', controller.last_feedback)

    async def test_targeted_queue_bypasses_supplier(self):
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 5)
        self.assertEqual(controller.current_word, 'bed')
        calls_before = len(self.supplier.next_word_calls)
        await self.play(controller, 4)
        self.assertEqual(len(self.supplier.next_word_calls), calls_before)
        self.assertEqual(controller.current_word, 'double')
        self.assertEqual(controller.targeted_word_cursor, 5)

    async def test_short_queue_falls_back_to_supplier(self):
        self.supplier.batch = ['bed', 'dab']
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 5)
        await self.play(controller, 2)
        self.assertEqual(controller.current_word, 'fog')
        self.assertEqual(self.supplier.next_word_calls[-1][0], 'targeted')

    async def test_dict_diagnosis_accepted(self):
        self.analysis.result = {'problematicLetters': ['p'], 'confusionPatterns': [], 'severity': 'mild'}
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 5)
        self.assertEqual(controller.diagnosis.problematic_letters, ['p'])
        self.assertEqual(controller.diagnosis.extra, {'severity': 'mild'})

    async def test_analysis_failure_blocks_targeted_phase(self):
        self.analysis.error = TimeoutError("analysis timed out")
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 5)
        self.assertEqual(controller.status, SessionStatus.ANALYSIS_FAILED)
        self.assertIsInstance(controller.error, AnalysisFailure)
        self.assertEqual(controller.phase, Phase.ANALYZING)
        self.assertEqual(len(controller.phase1_attempts), 5)
        self.assertIsNone(controller.current_word)
        self.assertEqual(self.supplier.targeted_batch_calls, [])
        self.assertIsNone(await controller.submit('sun', 1000))

    async def test_retry_analysis_reuses_phase1(self):
        self.analysis.error = TimeoutError("analysis timed out")
        controller = self.make_controller()
        await controller.start()
        phase1 = await self.play(controller, 5)
        self.analysis.error = None
        self.assertTrue(await controller.retry_analysis())
        self.assertEqual(controller.phase, Phase.TARGETED)
        self.assertEqual(list(controller.phase1_attempts), phase1)
        self.assertEqual(self.analysis.calls[0], self.analysis.calls[1])
        self.assertIsNone(controller.error)

    async def test_batch_failure_keeps_diagnosis_for_retry(self):
        self.supplier.batch_error = ConnectionError("batch service down")
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 5)
        self.assertEqual(controller.status, SessionStatus.ANALYSIS_FAILED)
        self.assertIsInstance(controller.error, TargetedBatchFailure)
        self.supplier.batch_error = None
        await controller.retry_analysis()
        self.assertEqual(len(self.analysis.calls), 1)
        self.assertEqual(controller.current_word, 'bed')

    async def test_retry_analysis_outside_failure(self):
        controller = self.make_controller()
        await controller.start()
        self.assertFalse(await controller.retry_analysis())


# ============================================================================
# Completion
# ============================================================================

class TestCompletion(SessionTestCase):

    async def test_completion_saves_merged_results(self):
        controller = self.make_controller()
        await controller.start()
        phase1 = await self.play(controller, 5)
        phase2 = await self.play(controller, 5)
        self.assertEqual(controller.status, SessionStatus.COMPLETED)
        self.assertEqual(len(self.persistence.saves), 1)
        save = self.persistence.saves[0]
        self.assertEqual(save['attempts'], phase1 + phase2)
        self.assertEqual([a.word for a in save['attempts'][5:]], ['bed', 'dab', 'bird', 'drab', 'double'])
        self.assertTrue(save['is_complete'])
        self.assertEqual(save['diagnosis'], self.analysis.result)
        self.assertEqual(controller.save_ack['sessionId'], 's1')
        self.assertIn('Assessment complete', controller.last_feedback)

    async def test_phase_summary(self):
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 5, typed='zzz')
        await self.play(controller, 5)
        summary = controller.phase_summary()
        self.assertEqual(summary['initialPhaseAccuracy'], 0.0)
        self.assertEqual(summary['targetedPhaseAccuracy'], 100.0)
        self.assertEqual(summary['improvement'], 100.0)

    async def test_save_failure_then_retry(self):
        self.persistence.error = ConnectionError("db down")
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 10)
        self.assertEqual(controller.status, SessionStatus.FINISHING)
        self.assertIsInstance(controller.error, PersistenceFailure)
        self.assertEqual(len(controller.merged_attempts), 10)

        self.persistence.error = None
        self.assertTrue(await controller.retry_save())
        self.assertEqual(controller.status, SessionStatus.COMPLETED)
        self.assertEqual(self.persistence.saves[0]['attempts'], self.persistence.saves[1]['attempts'])

    async def test_save_retried_with_backoff(self):
        class FlakyPersistence(MockPersistence):
            def save(self, *args):
                if not self.saves:
                    self.saves.append(None)
                    raise ConnectionError("blip")
                return super().save(*args)

        self.persistence = FlakyPersistence()
        controller = self.make_controller(save_retry=RetryPolicy(3, backoff_ms=0))
        await controller.start()
        await self.play(controller, 10)
        self.assertEqual(controller.status, SessionStatus.COMPLETED)
        self.assertEqual(len(self.persistence.saves), 2)


# ============================================================================
# Abort and concurrency
# ============================================================================

class TestAbort(SessionTestCase):

    async def test_abort_saves_partial_results(self):
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 2)
        self.assertTrue(await controller.abort())
        self.assertEqual(controller.status, SessionStatus.ABORTED)
        self.assertEqual(len(self.persistence.saves), 1)
        self.assertEqual(len(self.persistence.saves[0]['attempts']), 2)
        self.assertFalse(self.persistence.saves[0]['is_complete'])
        self.assertIsNone(await controller.submit('bed', 1000))

    async def test_abort_is_idempotent(self):
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 2)
        results = await asyncio.gather(controller.abort(), controller.abort())
        self.assertEqual(sorted(results), [False, True])
        self.assertFalse(await controller.abort())
        self.assertEqual(len(self.persistence.saves), 1)

    async def test_abort_without_attempts_saves_nothing(self):
        controller = self.make_controller()
        await controller.start()
        self.assertFalse(await controller.abort())
        self.assertEqual(controller.status, SessionStatus.ABORTED)
        self.assertEqual(self.persistence.saves, [])

    async def test_abort_during_analysis_failure_keeps_phase1(self):
        self.analysis.error = TimeoutError("analysis timed out")
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 5)
        await controller.abort()
        save = self.persistence.saves[0]
        self.assertEqual(len(save['attempts']), 5)
        self.assertIsNone(save['diagnosis'])

    async def test_abort_save_failure_recorded(self):
        self.persistence.error = ConnectionError("db down")
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 1)
        self.assertTrue(await controller.abort())
        self.assertEqual(controller.status, SessionStatus.ABORTED)
        self.assertIsNotNone(controller.abort_error)

    async def test_abort_mid_fetch_discards_word(self):
        self.supplier.block_call = 2
        controller = self.make_controller()
        await controller.start()
        pending = asyncio.create_task(controller.submit('sun', 1000))
        await wait_for_event(self.supplier.entered)

        self.assertTrue(controller.is_busy)
        self.assertIsNone(await controller.submit('map', 1000))

        self.assertTrue(await controller.abort())
        self.assertEqual(len(self.persistence.saves[0]['attempts']), 1)

        self.supplier.release.set()
        attempt = await pending
        self.assertEqual(attempt.word, 'sun')
        self.assertEqual(controller.status, SessionStatus.ABORTED)
        self.assertIsNone(controller.current_word)

    async def test_abort_waits_for_completion_save(self):
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 9)
        self.persistence.block = True
        pending = asyncio.create_task(controller.submit(controller.current_word, 1000))
        await wait_for_event(self.persistence.entered)

        aborting = asyncio.create_task(controller.abort())
        await asyncio.sleep(0.05)
        self.assertFalse(aborting.done())

        self.persistence.release.set()
        await pending
        self.assertFalse(await aborting)
        self.assertEqual(controller.status, SessionStatus.COMPLETED)
        self.assertEqual(len(self.persistence.saves), 1)

    async def test_abort_after_failed_completion_save_is_partial(self):
        self.persistence.error = ConnectionError("db down")
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 10)
        self.assertEqual(controller.status, SessionStatus.FINISHING)

        self.persistence.error = None
        self.assertTrue(await controller.abort())
        self.assertEqual(controller.status, SessionStatus.ABORTED)
        save = self.persistence.saves[-1]
        self.assertEqual(len(save['attempts']), 10)
        self.assertFalse(save['is_complete'])

    async def test_abort_after_completion_does_nothing(self):
        controller = self.make_controller()
        await controller.start()
        await self.play(controller, 10)
        self.assertFalse(await controller.abort())
        self.assertEqual(controller.status, SessionStatus.COMPLETED)
        self.assertEqual(len(self.persistence.saves), 1)


if __name__ == '__main__':
    unittest.main()
