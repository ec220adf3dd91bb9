"""REST API client for typesight server."""

import requests


class TypesightAPIClient:
    """Client for communicating with the typesight REST API."""

    def __init__(self, base_url: str = "http://localhost:8000"):
        self.base_url = base_url.rstrip('/')
        self.session = requests.Session()

    def _get(self, endpoint: str, params: dict = None) -> dict:
        """Make a GET request."""
        response = self.session.get(f"{self.base_url}{endpoint}", params=params or {})
        response.raise_for_status()
        return response.json()

    def _post(self, endpoint: str, data: dict = None) -> dict:
        """Make a POST request."""
        response = self.session.post(f"{self.base_url}{endpoint}", json=data or {})
        response.raise_for_status()
        return response.json()

    def health_check(self) -> dict:
        """Check if the server is running."""
        return self._get("/")

    def start_session(self, username: str, therapist_code: str, session_id: str = None) -> dict:
        """Start a session and get its first word."""
        payload = {'username': username, 'therapist_code': therapist_code}
        if session_id:
            payload['session_id'] = session_id
        return self._post("/api/typing/sessions", payload)

    def get_state(self, session_id: str) -> dict:
        return self._get(f"/api/typing/sessions/{session_id}")

    def submit(self, session_id: str, typed: str, elapsed_ms: int = None) -> dict:
        """Submit a typed word."""
        payload = {'input': typed}
        if elapsed_ms is not None:
            payload['elapsed_ms'] = elapsed_ms
        return self._post(f"/api/typing/sessions/{session_id}/submit", payload)

    def retry(self, session_id: str) -> dict:
        return self._post(f"/api/typing/sessions/{session_id}/retry")

    def abort(self, session_id: str) -> dict:
        """End the session early and save."""
        return self._post(f"/api/typing/sessions/{session_id}/abort")

    def list_sessions(self, therapist_code: str, username: str = None) -> dict:
        params = {'username': username} if username else None
        return self._get(f"/api/typing/therapists/{therapist_code}/sessions", params)

    def get_record(self, session_id: str, therapist_code: str) -> dict:
        """Stored record of a finished session, with its phase-by-phase progress."""
        return self._get(f"/api/typing/sessions/{session_id}/record", {'therapist_code': therapist_code})
