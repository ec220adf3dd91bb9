"""Console UI for typesight application."""

import time

import requests

from core.config import WORDS_PER_PHASE
from cli.api_client import TypesightAPIClient

RETRYABLE_STATUSES = ('analysis_failed', 'finishing')

PHASE_TITLES = {
    'initial': 'Set 1 of 2',
    'analyzing': 'Analyzing',
    'targeted': 'Set 2 of 2 (targeted practice)'
}


class ConsoleUI:
    """Console user interface for a typing assessment session."""

    def __init__(self, client: TypesightAPIClient, username: str, therapist_code: str):
        self.client = client
        self.username = username
        self.therapist_code = therapist_code
        self.session_id = None

    def print_progress(self, state: dict):
        done = len(state['attempts_this_phase'])
        total = state.get('words_per_phase', WORDS_PER_PHASE)
        bar = '#' * done + '-' * (total - done)
        print('=' * 40)
        print(f"{PHASE_TITLES.get(state['phase'], state['phase'])}  [{bar}] {done}/{total}")
        print(f"Accuracy: {state['rolling_accuracy']:.1f}%  |  Level: {state['difficulty']}")
        print('=' * 40)

    def print_feedback(self, state: dict):
        if state.get('feedback'):
            print('-' * 40)
            print(state['feedback'])
            print('-' * 40)

    def print_summary(self, state: dict):
        summary = state['summary']
        print('\n' + '=' * 50)
        print('ASSESSMENT SUMMARY')
        print('=' * 50)
        print(f"Set 1 accuracy: {summary['initialPhaseAccuracy']}%")
        if summary['targetedPhaseAccuracy'] is not None:
            print(f"Set 2 accuracy: {summary['targetedPhaseAccuracy']}%")
            print(f"Change: {summary['improvement']:+.1f}%")
        diagnosis = state.get('diagnosis')
        if diagnosis and diagnosis.get('problematicLetters'):
            print(f"Most affected letters: {', '.join(diagnosis['problematicLetters'])}")
        print('=' * 50 + '\n')

    def handle_error(self, state: dict) -> dict | None:
        """Offer a retry for a blocked session. Returns the new state, or None to quit."""
        print(f"\n⚠️ {state['error']}")
        while state.get('error') and state['status'] in RETRYABLE_STATUSES:
            answer = input('Try again? [y/n] ').strip().lower()
            if answer != 'y':
                return None
            state = self.client.retry(self.session_id)
            if state.get('error') and state['status'] in RETRYABLE_STATUSES:
                print(f"⚠️ {state['error']}")
        return state

    def quit(self):
        if self.session_id:
            print('Saving your progress...')
            try:
                self.client.abort(self.session_id)
            except Exception as e:
                print(f"Could not save on exit: {e}")
        print('Goodbye!')

    def run(self):
        """Run one assessment session."""
        try:
            health = self.client.health_check()
            print(f"Connected to {health['service']} server")
        except Exception:
            print(f"Error: Cannot connect to server at {self.client.base_url}")
            print("Make sure the server is running: python run_server.py")
            return

        print('Generating your first word...')
        state = self.client.start_session(self.username, self.therapist_code)
        self.session_id = state['session_id']
        print('\nType each word exactly as shown. Type "q" to stop and save.\n')

        while state['status'] not in ('completed', 'aborted'):
            if state.get('error') and state['status'] in RETRYABLE_STATUSES:
                state = self.handle_error(state)
                if state is None:
                    self.quit()
                    return
                continue

            if not state.get('current_word'):
                time.sleep(0.5)
                state = self.client.get_state(self.session_id)
                continue

            self.print_progress(state)
            print(f"\n>>> {state['current_word']}\n")
            shown_at = time.monotonic()

            typed = ''
            while not typed:
                typed = input('==> ').strip()
            if typed.lower() == 'q':
                self.quit()
                return

            elapsed_ms = int((time.monotonic() - shown_at) * 1000)
            print('Checking...')
            try:
                state = self.client.submit(self.session_id, typed, elapsed_ms)
            except Exception as e:
                print(f"Error submitting word: {e}")
                state = self.client.get_state(self.session_id)
                continue
            self.print_feedback(state)

        if state['status'] == 'completed':
            self.print_summary(state)

    def show_sessions(self):
        """List stored sessions for this therapist (and child, when one was given)."""
        listing = self.client.list_sessions(self.therapist_code, self.username)
        sessions = listing['sessions']
        if not sessions:
            print('No saved sessions.')
            return
        print(f"{'SESSION':<12}{'CHILD':<14}{'DATE':<22}{'WORDS':>6}{'ACCURACY':>10}  STATUS")
        for record in sessions:
            summary = record.get('summary', {})
            print(f"{record['sessionId']:<12}{record['username']:<14}{record.get('date', '')[:19]:<22}"
                  f"{summary.get('totalWords', 0):>6}{summary.get('overallAccuracy', 0):>9}%  {record.get('phase', '')}")

    def show_record(self, session_id: str):
        """Print one stored session with its set-by-set progress."""
        try:
            record = self.client.get_record(session_id, self.therapist_code)
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                print(f"No saved session {session_id} for therapist {self.therapist_code}")
                return
            raise
        print(f"Session {record['sessionId']} - {record['username']} ({record.get('phase', '')})")
        for attempt in record.get('results', []):
            mark = 'ok' if attempt['correct'] else f"typed '{attempt['input']}'"
            print(f"  {attempt['word']:<14}{mark}")
        self.print_summary({'summary': record['progress'], 'diagnosis': record.get('analysis')})
