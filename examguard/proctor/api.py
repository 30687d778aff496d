"""
Proctoring API - FastAPI endpoints for exam proctoring

Endpoints:
- POST /api/proctor/start - Create a session and prepare camera and models
- POST /api/proctor/prepare - Retry a failed setup
- POST /api/proctor/begin - Start the exam (setup -> active)
- POST /api/proctor/stream - Push a webcam frame
- POST /api/proctor/focus - Report a focus/visibility change
- POST /api/proctor/progress - Record the current grading payload
- POST /api/proctor/submit - Submit the exam
- POST /api/proctor/cancel - Leave setup without starting
- GET /api/proctor/status/{session_id} - Get session status
"""

import asyncio
import logging
import time
from functools import lru_cache
from typing import Any, Dict, Literal, Optional, Set

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..config import settings
from .capture import RemoteCaptureDevice
from .exceptions import SessionStateError, SetupError, SetupNotReadyError
from .oracle import PerceptionOracleAdapter, create_default_adapter
from .reporter import ResultReporter, create_default_reporter
from .session import ProctorConfig, ProctorSession
from .state import AssessmentInfo, GradingPayload, SessionPhase, SessionSnapshot
from .utils.frames import decode_frame_base64

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proctor", tags=["Proctoring"])

# In-memory session storage (replace with Redis for production)
_sessions: Dict[str, ProctorSession] = {}
_cameras: Dict[str, RemoteCaptureDevice] = {}
_last_seen: Dict[str, float] = {}
_background_tasks: Set[asyncio.Task] = set()

# Finished sessions stay queryable for this long
CLEANUP_DELAY_SECONDS = 60

# Sessions with no client activity for this long in setup are discarded
SETUP_IDLE_TIMEOUT_SECONDS = settings.SETUP_IDLE_TIMEOUT_SECONDS


# ============== Dependencies ==============

@lru_cache(maxsize=1)
def get_adapter() -> PerceptionOracleAdapter:
    """Perception adapter shared by all sessions (models load once)"""
    return create_default_adapter(settings.OBJECT_MODEL_PATH, settings.OBJECT_MIN_SCORE)


@lru_cache(maxsize=1)
def get_reporter() -> ResultReporter:
    return create_default_reporter(settings)


def get_proctor_config() -> ProctorConfig:
    return ProctorConfig.from_settings(settings)


# ============== Request/Response Models ==============

class StartSessionRequest(BaseModel):
    """Request to start a proctoring session"""
    title: str = Field(..., description="Assessment title")
    duration_seconds: int = Field(..., gt=0, description="Exam duration in seconds")
    badge: Optional[str] = Field(None, description="Badge awarded on passing")
    assessment_id: Optional[str] = Field(None, description="ID of the assessment")


class SessionRequest(BaseModel):
    session_id: str


class StreamFrameRequest(BaseModel):
    """Request to push a webcam frame"""
    session_id: str = Field(..., description="Session ID from /start")
    frame_base64: str = Field(..., description="Base64 encoded JPEG frame")


class StreamFrameResponse(BaseModel):
    accepted: bool
    phase: str
    frames_received: int


class FocusEventRequest(BaseModel):
    """Focus or visibility change reported by the browser"""
    session_id: str
    event: Literal["hidden", "visible", "blur", "focus"]


class FocusEventResponse(BaseModel):
    violation: Optional[str] = None
    phase: str


class GradingRequest(BaseModel):
    """Scoring from the grading collaborator"""
    session_id: str
    score: int = Field(0, ge=0, le=100)
    correct_answers: int = Field(0, ge=0)
    total_questions: int = Field(0, ge=0)

    def to_grading(self) -> GradingPayload:
        return GradingPayload(
            score=self.score,
            correct_answers=self.correct_answers,
            total_questions=self.total_questions
        )


class SessionStatusResponse(BaseModel):
    """Current session status"""
    session_id: str
    phase: str
    remaining_seconds: int
    consecutive_no_face_ticks: int
    seconds_until_no_face_timeout: Optional[float] = None
    termination_reason: Optional[str] = None
    termination_title: Optional[str] = None
    termination_message: Optional[str] = None
    camera_ready: bool
    models_ready: bool
    detection: Dict[str, Any]
    preview: Dict[str, Any]
    last_error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class ModelStatusResponse(BaseModel):
    """Model availability status"""
    face_detector: bool
    object_detector: bool
    object_weights: bool


# ============== Helpers ==============

def _get_session(session_id: str) -> ProctorSession:
    session = _sessions.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _status(session: ProctorSession) -> SessionStatusResponse:
    snapshot = session.snapshot()
    reason = snapshot.termination_reason
    return SessionStatusResponse(
        **snapshot.to_dict(),
        termination_title=reason.label if reason else None,
        termination_message=reason.message if reason else None,
        result=session.result.to_payload() if session.result else None
    )


async def _prepare(session: ProctorSession):
    try:
        await session.prepare()
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SetupError as e:
        raise HTTPException(status_code=503, detail=str(e))


def _touch(session_id: str):
    """Record client activity on a session"""
    _last_seen[session_id] = time.monotonic()


def _forget(session_id: str):
    _sessions.pop(session_id, None)
    _cameras.pop(session_id, None)
    _last_seen.pop(session_id, None)


def _spawn(coro) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def _schedule_cleanup(session: ProctorSession):
    def on_change(snapshot: SessionSnapshot):
        if snapshot.phase.is_terminal:
            unsubscribe()
            _spawn(_cleanup_session(session.id))

    unsubscribe = session.subscribe(on_change)


# ============== API Endpoints ==============

@router.post("/start", response_model=SessionStatusResponse)
async def start_session(
    request: StartSessionRequest,
    adapter: PerceptionOracleAdapter = Depends(get_adapter),
    reporter: ResultReporter = Depends(get_reporter),
    config: ProctorConfig = Depends(get_proctor_config)
):
    """
    Create a proctoring session and enter setup.

    Camera and models are prepared right away. A setup failure leaves the
    session in setup with last_error set; retry with /prepare.
    """
    camera = RemoteCaptureDevice(max_frame_age=settings.STREAM_STALE_SECONDS)
    session = ProctorSession(
        assessment=AssessmentInfo(
            title=request.title,
            duration_seconds=request.duration_seconds,
            badge=request.badge,
            assessment_id=request.assessment_id
        ),
        camera=camera,
        adapter=adapter,
        reporter=reporter,
        config=config
    )
    _sessions[session.id] = session
    _cameras[session.id] = camera
    _touch(session.id)
    _schedule_cleanup(session)
    _spawn(_expire_idle_setup(session.id))

    session.begin_setup()
    try:
        await session.prepare()
    except SetupError as e:
        logger.warning(f"Setup for {session.id} needs a retry: {e}")

    logger.info(f"Started proctoring session: {session.id}")
    return _status(session)


@router.post("/prepare", response_model=SessionStatusResponse)
async def prepare_session(request: SessionRequest):
    """Retry camera and model preparation"""
    session = _get_session(request.session_id)
    _touch(session.id)
    await _prepare(session)
    return _status(session)


@router.post("/begin", response_model=SessionStatusResponse)
async def begin_exam(request: SessionRequest):
    """Start the exam. Requires camera and models to be ready."""
    session = _get_session(request.session_id)
    try:
        await session.start()
    except (SessionStateError, SetupNotReadyError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SetupError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return _status(session)


@router.post("/stream", response_model=StreamFrameResponse)
async def stream_frame(request: StreamFrameRequest):
    """
    Push a single webcam frame.

    Only the latest frame is kept; the sampler picks it up on its next tick.
    """
    session = _get_session(request.session_id)
    _touch(session.id)

    if session.phase not in (SessionPhase.SETUP, SessionPhase.ACTIVE):
        raise HTTPException(status_code=409, detail=f"Session is {session.phase.value}")

    frame = decode_frame_base64(request.frame_base64)
    if frame is None:
        raise HTTPException(status_code=400, detail="Invalid frame data")

    camera = _cameras[session.id]
    accepted = camera.push_frame(frame)
    stream = camera.stream

    return StreamFrameResponse(
        accepted=accepted,
        phase=session.phase.value,
        frames_received=stream.frames_received if stream else 0
    )


@router.post("/focus", response_model=FocusEventResponse)
async def report_focus_event(request: FocusEventRequest):
    """
    Record a focus or visibility change.

    While the exam is running, "hidden" and "blur" end it immediately.
    """
    session = _get_session(request.session_id)
    _touch(session.id)
    violation = session.handle_focus_event(request.event)
    return FocusEventResponse(
        violation=violation.reason.value if violation else None,
        phase=session.phase.value
    )


@router.post("/progress", response_model=SessionStatusResponse)
async def record_progress(request: GradingRequest):
    """Store the running score used if the timer submits the exam"""
    session = _get_session(request.session_id)
    if session.phase is not SessionPhase.ACTIVE:
        raise HTTPException(status_code=409, detail=f"Session is {session.phase.value}")
    session.record_grading(request.to_grading())
    return _status(session)


@router.post("/submit", response_model=SessionStatusResponse)
async def submit_exam(request: GradingRequest):
    """Submit the exam and get the result"""
    session = _get_session(request.session_id)
    try:
        session.submit(request.to_grading())
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _status(session)


@router.post("/cancel", response_model=SessionStatusResponse)
async def cancel_session(request: SessionRequest):
    """Leave setup without starting. The session is discarded."""
    session = _get_session(request.session_id)
    try:
        session.cancel()
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    _forget(session.id)
    return _status(session)


@router.get("/status/{session_id}", response_model=SessionStatusResponse)
async def get_session_status(session_id: str):
    """
    Get current status of a proctoring session.
    """
    return _status(_get_session(session_id))


@router.get("/models-status", response_model=ModelStatusResponse)
async def get_models_status():
    """
    Check which ML models are available.
    """
    from .models.model_loader import check_models

    status = check_models(settings.OBJECT_MODEL_PATH)

    return ModelStatusResponse(**status)


# ============== Background Tasks ==============

async def _cleanup_session(session_id: str):
    """Clean up session resources after delay"""
    # Wait a bit before cleanup to allow final status requests
    await asyncio.sleep(CLEANUP_DELAY_SECONDS)

    if session_id in _sessions:
        _forget(session_id)
        logger.info(f"Cleaned up session: {session_id}")


async def _expire_idle_setup(session_id: str):
    """Discard a session left in setup with no client activity"""
    while True:
        session = _sessions.get(session_id)
        if session is None or session.phase is not SessionPhase.SETUP:
            return

        idle = time.monotonic() - _last_seen.get(session_id, 0.0)
        if idle >= SETUP_IDLE_TIMEOUT_SECONDS:
            logger.info(f"Discarding session {session_id} after {idle:.0f}s idle in setup")
            session.cancel()
            _forget(session_id)
            return

        await asyncio.sleep(SETUP_IDLE_TIMEOUT_SECONDS - idle)


async def shutdown_sessions():
    """Stop every session's tasks and release cameras"""
    for task in list(_background_tasks):
        task.cancel()
    for session in list(_sessions.values()):
        session.close()
    _sessions.clear()
    _cameras.clear()
    _last_seen.clear()


# ============== Health Check ==============

@router.get("/health")
async def health_check():
    """Health check for proctoring module"""
    return {
        "status": "healthy",
        "active_sessions": len(_sessions),
        "module": "proctoring"
    }
