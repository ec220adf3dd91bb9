"""FastAPI server for typesight application."""

import logging
import os
import time
import uuid

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from typing import Optional

from core.aggregator import phase_progress
from core.config import FINISHED_SESSION_RETENTION_SECONDS
from core.errors import InputError
from core.models import Attempt, SessionIdentity, SessionStatus
from core.session import SessionController
from core.timing import DelayPolicy
from core.interfaces import WordSupplier, AnalysisClient, PersistenceClient

from server.gemini_provider import GeminiProvider
from server.file_storage import FileStorage
from server.postgres_storage import PostgresStorage

logger = logging.getLogger(__name__)


# Pydantic models for API
class StartSessionRequest(BaseModel):
    username: str
    therapist_code: str
    session_id: Optional[str] = None


class SubmitRequest(BaseModel):
    input: str
    elapsed_ms: Optional[int] = None


class AttemptResponse(BaseModel):
    word: str
    input: str
    correct: bool
    timeSpent: int
    mistakes: int


class SessionStateResponse(BaseModel):
    session_id: str
    username: str
    status: str
    phase: str
    current_word: Optional[str]
    loading: bool
    feedback: Optional[str]
    rolling_accuracy: float
    difficulty: str
    cumulative_mistakes: int
    words_per_phase: int
    attempts_this_phase: list[AttemptResponse]
    diagnosis: Optional[dict]
    error: Optional[str]
    error_type: Optional[str]
    summary: dict
    last_attempt: Optional[AttemptResponse] = None


class SessionListResponse(BaseModel):
    therapist_code: str
    sessions: list[dict]


# Global state (in production, use proper DI)
storage: PersistenceClient = None
word_supplier: WordSupplier = None
analysis_client: AnalysisClient = None
delay_policy: DelayPolicy = None
active_sessions: dict[str, SessionController] = {}
finished_at: dict[str, float] = {}  # session_id -> monotonic time it was first seen terminal


def log_event(event: str, controller: SessionController, **data) -> None:
    """Log a session event when the storage backend keeps an event log."""
    if storage and hasattr(storage, 'log_event'):
        storage.log_event(event, controller.identity.username, controller.identity.session_id,
                          controller.phase.value, **data)


def get_session(session_id: str) -> SessionController:
    controller = active_sessions.get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return controller


def prune_sessions(now: float = None) -> int:
    """Drop finished sessions held longer than the retention window. Returns how many were dropped."""
    now = time.monotonic() if now is None else now
    dropped = 0
    for session_id, controller in list(active_sessions.items()):
        if not controller.is_terminal:
            continue
        if now - finished_at.setdefault(session_id, now) >= FINISHED_SESSION_RETENTION_SECONDS:
            del active_sessions[session_id]
            finished_at.pop(session_id, None)
            dropped += 1
    if dropped:
        logger.info(f"Dropped {dropped} finished sessions, {len(active_sessions)} still held")
    return dropped


def to_response(controller: SessionController, last_attempt=None) -> SessionStateResponse:
    if controller.is_terminal:
        finished_at.setdefault(controller.identity.session_id, time.monotonic())
    state = controller.snapshot()
    if last_attempt is not None:
        state['last_attempt'] = last_attempt.to_dict()
    return SessionStateResponse(**state)


app = FastAPI(title="Typesight API", description="Adaptive typing assessment API")


@app.on_event("startup")
async def startup():
    """Initialize storage and AI providers on startup."""
    global storage, word_supplier, analysis_client, delay_policy

    logging.basicConfig(level=logging.INFO)

    # Use file storage by default, set TYPESIGHT_STORAGE=postgres to use PostgreSQL
    storage_type = os.environ.get('TYPESIGHT_STORAGE', 'file')
    if storage_type == 'postgres':
        storage = PostgresStorage()
        print("Using PostgreSQL storage")
    else:
        storage = FileStorage(state_dir=os.environ.get('TYPESIGHT_STATE_DIR'))
        print("Using file storage")

    # Get API key from environment variable first, then fall back to config file
    api_key = os.environ.get('GEMINI_API_KEY')
    if not api_key:
        try:
            config = storage.load_config()
            api_key = config.get('gemini_api_key')
        except FileNotFoundError:
            pass

    if not api_key:
        raise RuntimeError(
            "GEMINI_API_KEY environment variable not set and config file not found. "
            "Set GEMINI_API_KEY or create ~/.config/typesight/config.json"
        )

    provider = GeminiProvider(api_key, model_name=os.environ.get('TYPESIGHT_MODEL', 'gemini-2.0-flash'))
    word_supplier = provider
    analysis_client = provider
    print(f"AI provider initialized: {provider.model_name}")

    if os.environ.get('TYPESIGHT_DELAYS', 'on').lower() == 'off':
        delay_policy = DelayPolicy.none()
    else:
        delay_policy = DelayPolicy()


@app.on_event("shutdown")
async def shutdown():
    """Best-effort save of every session still in progress."""
    for controller in list(active_sessions.values()):
        if not controller.is_terminal:
            await controller.abort()
    if hasattr(storage, 'close'):
        storage.close()


@app.get("/")
async def root():
    return {"service": "typesight", "active_sessions": len(active_sessions)}


@app.post("/api/typing/sessions", response_model=SessionStateResponse)
async def start_session(request: StartSessionRequest):
    """Start a new assessment session and fetch its first word."""
    if not request.username.strip() or not request.therapist_code.strip():
        raise HTTPException(status_code=400, detail="username and therapist_code are required")

    prune_sessions()
    session_id = request.session_id or str(uuid.uuid4())[:8]
    existing = active_sessions.get(session_id)
    if existing and not existing.is_terminal:
        raise HTTPException(status_code=409, detail="Session already in progress")

    identity = SessionIdentity(session_id, request.username.strip(), request.therapist_code.strip())
    controller = SessionController(identity, word_supplier, analysis_client, storage, delays=delay_policy)
    active_sessions[session_id] = controller
    finished_at.pop(session_id, None)
    log_event('session.start', controller, therapist_code=identity.therapist_code)

    await controller.start()
    return to_response(controller)


@app.get("/api/typing/sessions/{session_id}", response_model=SessionStateResponse)
async def get_session_state(session_id: str):
    """Current state of a session."""
    return to_response(get_session(session_id))


@app.post("/api/typing/sessions/{session_id}/submit", response_model=SessionStateResponse)
async def submit_attempt(session_id: str, request: SubmitRequest):
    """Submit the typed word. Returns once the next word (or the next phase) is ready."""
    controller = get_session(session_id)
    if controller.is_busy:
        raise HTTPException(status_code=409, detail="Session is busy")

    phase_before = controller.phase
    try:
        attempt = await controller.submit(request.input, request.elapsed_ms)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if attempt is None:
        raise HTTPException(status_code=409, detail=f"Session is not awaiting input ({controller.status.value})")

    log_event('session.attempt', controller,
              word=attempt.word, correct=attempt.correct,
              mistakes=attempt.mistake_count, ms=attempt.time_spent_ms,
              phase_before=phase_before.value)
    if controller.phase != phase_before:
        log_event('session.phase_change', controller, from_phase=phase_before.value)
    if controller.status == SessionStatus.COMPLETED:
        log_event('session.complete', controller, attempts=len(controller.merged_attempts))
    elif controller.error:
        log_event('session.error', controller, error=str(controller.error),
                  error_type=type(controller.error).__name__)

    return to_response(controller, attempt)


@app.post("/api/typing/sessions/{session_id}/retry", response_model=SessionStateResponse)
async def retry_session(session_id: str):
    """Retry a blocked phase transition or a failed save."""
    controller = get_session(session_id)
    if controller.status == SessionStatus.ANALYSIS_FAILED:
        await controller.retry_analysis()
    elif controller.status == SessionStatus.FINISHING and controller.error:
        succeeded = await controller.retry_save()
        if succeeded:
            log_event('session.complete', controller, attempts=len(controller.merged_attempts), retried=True)
    else:
        raise HTTPException(status_code=400, detail="Nothing to retry")
    return to_response(controller)


@app.post("/api/typing/sessions/{session_id}/abort", response_model=SessionStateResponse)
async def abort_session(session_id: str):
    """End a session early, saving whatever was typed."""
    controller = get_session(session_id)
    saved = await controller.abort()
    if saved:
        log_event('session.abort', controller, attempts=len(controller.all_attempts()),
                  save_failed=controller.abort_error is not None)
    return to_response(controller)


@app.get("/api/typing/therapists/{therapist_code}/sessions", response_model=SessionListResponse)
async def list_therapist_sessions(therapist_code: str, username: Optional[str] = None):
    """Stored sessions for a therapist, optionally for one child."""
    sessions = storage.list_sessions(therapist_code, username)
    return SessionListResponse(therapist_code=therapist_code, sessions=sessions)


@app.get("/api/typing/sessions/{session_id}/record")
async def get_session_record(session_id: str, therapist_code: str):
    """Stored record of one session with its phase-by-phase progress, for the therapist who owns it."""
    record = storage.load_session(session_id)
    if record is None or record.get('therapistCode') != therapist_code:
        raise HTTPException(status_code=404, detail="Session record not found")
    if 'progress' not in record:
        record['progress'] = phase_progress(Attempt.from_dict(r) for r in record.get('results', []))
    return record
