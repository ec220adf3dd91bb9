"""File-based storage implementation."""

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone

from core.aggregator import summarize, phase_progress
from core.interfaces import PersistenceClient
from core.models import Attempt, Diagnosis

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = os.path.expanduser('~/.config/typesight/config.json')


def read_config(config_file: str) -> dict:
    """Load the JSON config holding the Gemini API key."""
    if not os.path.exists(config_file):
        raise FileNotFoundError(
            f"No typesight config at {config_file}. "
            f'Set GEMINI_API_KEY or create it with {{"gemini_api_key": "..."}}'
        )
    with open(config_file) as f:
        return json.load(f)


def build_session_record(session_id: str, username: str, therapist_code: str,
                         attempts: list[Attempt], diagnosis: Diagnosis | None,
                         is_complete: bool) -> dict:
    """Stored shape of a typing session."""
    return {
        'sessionId': session_id,
        'username': username,
        'therapistCode': therapist_code,
        'date': datetime.now(timezone.utc).isoformat(),
        'phase': 'complete' if is_complete else 'partial',
        'isComplete': is_complete,
        'results': [a.to_dict() for a in attempts],
        'analysis': diagnosis.to_dict() if diagnosis else None,
        'summary': summarize(attempts),
        'progress': phase_progress(attempts)
    }


class FileStorage(PersistenceClient):
    """Stores one JSON file per session."""

    def __init__(self, config_file: str = None, state_dir: str = None):
        self.config_file = config_file or DEFAULT_CONFIG_FILE
        # Project root is one level up from server/
        project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        self.state_dir = state_dir or os.path.join(project_root, 'typing_sessions')

    def _get_session_file(self, session_id: str) -> str:
        """Get record file path for a session."""
        safe_id = re.sub(r'[^A-Za-z0-9_.-]', '_', session_id)
        return os.path.join(self.state_dir, f'session_{safe_id}.json')

    def load_config(self) -> dict:
        return read_config(self.config_file)

    def save(self, session_id: str, username: str, therapist_code: str,
             attempts: list[Attempt], diagnosis: Diagnosis | None, is_complete: bool) -> dict:
        record = build_session_record(session_id, username, therapist_code, attempts, diagnosis, is_complete)
        os.makedirs(self.state_dir, exist_ok=True)
        session_file = self._get_session_file(session_id)
        # Each save gets its own temp file; a timed-out save may still be writing
        with tempfile.NamedTemporaryFile('w', dir=self.state_dir, prefix='.session_', suffix='.tmp',
                                         delete=False) as f:
            tmp_file = f.name
            json.dump(record, f, indent=2)
        try:
            os.replace(tmp_file, session_file)
        except OSError:
            os.unlink(tmp_file)
            raise
        logger.info(f"Saved session {session_id} ({len(attempts)} attempts, complete={is_complete})")
        return {'saved': True, 'sessionId': session_id, 'summary': record['summary']}

    def load_session(self, session_id: str) -> dict | None:
        session_file = self._get_session_file(session_id)
        if os.path.exists(session_file):
            try:
                with open(session_file, 'r') as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Error loading session {session_id}: {e}")
                return None
        return None

    def list_sessions(self, therapist_code: str, username: str = None) -> list[dict]:
        """Stored sessions for a therapist, newest first."""
        sessions = []
        if os.path.exists(self.state_dir):
            for filename in os.listdir(self.state_dir):
                if not (filename.startswith('session_') and filename.endswith('.json')):
                    continue
                try:
                    with open(os.path.join(self.state_dir, filename), 'r') as f:
                        record = json.load(f)
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning(f"Skipping unreadable session file {filename}: {e}")
                    continue
                if record.get('therapistCode') != therapist_code:
                    continue
                if username and record.get('username') != username:
                    continue
                sessions.append(record)
        sessions.sort(key=lambda r: r.get('date', ''), reverse=True)
        return sessions

