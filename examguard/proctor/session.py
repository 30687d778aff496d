"""
Proctor Session - State machine for a single proctored exam

    IDLE --begin_setup--> SETUP --start--> ACTIVE --violation--> TERMINATED
                            |                 |
                            +--cancel--> IDLE +--submit / timer--> COMPLETED

The session owns the camera stream, the sampling task, the countdown task
and the focus monitor. Entering a terminal phase stops all of them in the
same synchronous step that sets the phase, then reports the result once.

Every state mutation runs synchronously on the event loop thread with no
await between read and write, so the sampler, the countdown and focus
events can never interleave a read-modify-write.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .capture import CaptureConstraints, CaptureDevice, VideoStream
from .classifier import ClassifierPolicy, classify
from .events import DetectionFrame, ReasonCode, ViolationEvent
from .exceptions import (
    CameraAcquisitionError,
    SessionStateError,
    SetupError,
    SetupNotReadyError,
)
from .focus_monitor import FocusMonitor
from .oracle import PerceptionOracleAdapter
from .reporter import ResultReporter
from .sampler import FrameSampler, SamplingMode
from .state import (
    AssessmentInfo,
    DetectionStatus,
    GradingPayload,
    SessionPhase,
    SessionResult,
    SessionSnapshot,
    SessionState,
)
from .utils.logging import log_phase_change, log_session_start, log_violation
from .utils.tasks import cancel_task

logger = logging.getLogger(__name__)


SessionListener = Callable[[SessionSnapshot], None]


@dataclass
class ProctorConfig:
    """Runtime knobs for a proctoring session"""
    active_interval: float = 0.5
    preview_interval: float = 0.8
    no_face_timeout_ticks: int = 10
    countdown_tick_seconds: float = 1.0
    constraints: CaptureConstraints = field(default_factory=CaptureConstraints)

    @property
    def policy(self) -> ClassifierPolicy:
        return ClassifierPolicy(
            no_face_timeout_ticks=self.no_face_timeout_ticks,
            tick_interval_seconds=self.active_interval
        )

    @classmethod
    def from_settings(cls, settings) -> "ProctorConfig":
        return cls(
            active_interval=settings.ACTIVE_SAMPLE_INTERVAL_MS / 1000.0,
            preview_interval=settings.PREVIEW_SAMPLE_INTERVAL_MS / 1000.0,
            no_face_timeout_ticks=settings.NO_FACE_TIMEOUT_TICKS,
            countdown_tick_seconds=settings.COUNTDOWN_TICK_SECONDS,
            constraints=CaptureConstraints(
                width=settings.FRAME_WIDTH,
                height=settings.FRAME_HEIGHT,
                device_index=settings.CAMERA_INDEX
            )
        )


class ProctorSession:
    """
    Controller for one proctored exam.

    Single source of truth for the exam's state. UI layers observe it
    through subscribe() and drive it through the public methods; they
    never mutate state directly.
    """

    def __init__(
        self,
        assessment: AssessmentInfo,
        camera: CaptureDevice,
        adapter: PerceptionOracleAdapter,
        reporter: ResultReporter,
        config: Optional[ProctorConfig] = None,
        grader: Optional[Callable[[], GradingPayload]] = None,
        session_id: Optional[str] = None
    ):
        """
        Args:
            assessment: Exam being taken
            camera: Capture device the camera stream is acquired from
            adapter: Perception adapter shared by preview and active sampling
            reporter: Receives the result when the session ends
            config: Cadence and grace settings
            grader: Returns the scoring payload when the exam is submitted
                    (explicitly or by the timer)
            session_id: Optional custom session ID (auto-generated if not provided)
        """
        self.id = session_id or f"EXM_{uuid.uuid4().hex[:6].upper()}"
        self.assessment = assessment
        self.camera = camera
        self.adapter = adapter
        self.reporter = reporter
        self.config = config or ProctorConfig()
        self.grader = grader

        self.state = SessionState(remaining_seconds=assessment.duration_seconds)
        self.result: Optional[SessionResult] = None
        self.last_error: Optional[str] = None

        self.sampler = FrameSampler(
            adapter,
            self.handle_detection,
            active_interval=self.config.active_interval,
            preview_interval=self.config.preview_interval
        )
        self.focus_monitor = FocusMonitor(self.handle_violation)

        self._policy = self.config.policy
        self._stream: Optional[VideoStream] = None
        self._countdown_task: Optional[asyncio.Task] = None
        self._setup_lock = asyncio.Lock()
        self._finished = asyncio.Event()
        self._listeners: List[SessionListener] = []

        self._grading: Optional[GradingPayload] = None
        self._seconds_until_no_face_timeout: Optional[float] = None
        self._detection = DetectionStatus()
        self._preview = DetectionStatus()

        log_session_start(self.id, assessment.title, assessment.duration_seconds)

    # ============== State inspection ==============

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def camera_ready(self) -> bool:
        return self._stream is not None and self._stream.is_live

    @property
    def models_ready(self) -> bool:
        return self.adapter.is_ready

    @property
    def stream(self) -> Optional[VideoStream]:
        return self._stream

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.id,
            phase=self.state.phase,
            remaining_seconds=self.state.remaining_seconds,
            consecutive_no_face_ticks=self.state.consecutive_no_face_ticks,
            seconds_until_no_face_timeout=self._seconds_until_no_face_timeout,
            termination_reason=self.state.termination_reason,
            camera_ready=self.camera_ready,
            models_ready=self.models_ready,
            detection=self._detection,
            preview=self._preview,
            last_error=self.last_error
        )

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """
        Register a listener called with a snapshot after every change.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def wait_finished(self, timeout: Optional[float] = None) -> Optional[SessionResult]:
        """Wait until the session reaches a terminal phase"""
        await asyncio.wait_for(self._finished.wait(), timeout)
        return self.result

    # ============== Setup ==============

    def begin_setup(self):
        """IDLE -> SETUP. Does not start the countdown."""
        self._require(SessionPhase.IDLE, "begin setup")
        self._set_phase(SessionPhase.SETUP)

    async def prepare(self):
        """
        Acquire the camera and load the perception models.

        On success the setup preview starts. On failure the session stays
        in SETUP with last_error set, and prepare() may be called again.

        Raises:
            CameraAcquisitionError: Camera could not be opened
            OracleLoadError: Models failed to load
        """
        self._require(SessionPhase.SETUP, "prepare")

        async with self._setup_lock:
            try:
                if not self.camera_ready:
                    await self._acquire_camera()
                if self.state.phase is not SessionPhase.SETUP:
                    return
                if not self.adapter.is_ready:
                    await self.adapter.load()
            except SetupError as e:
                self.last_error = str(e)
                logger.warning(f"Setup failed for session {self.id}: {e}")
                self._notify()
                raise

            if self.state.phase is not SessionPhase.SETUP:
                return

            self.last_error = None
            self.sampler.start(self._stream, SamplingMode.PREVIEW)
            self._notify()

    def cancel(self):
        """SETUP -> IDLE. Releases the camera; no result is produced."""
        self._require(SessionPhase.SETUP, "cancel")
        self.sampler.stop()
        self._release_camera()
        self._preview = DetectionStatus()
        self.last_error = None
        self._set_phase(SessionPhase.IDLE)

    async def start(self):
        """
        SETUP -> ACTIVE.

        Raises:
            SetupNotReadyError: Camera or models are not ready yet
        """
        self._require(SessionPhase.SETUP, "start")
        if not self.models_ready or self._stream is None:
            raise SetupNotReadyError("Camera and AI models must be ready before starting")

        if not self._stream.is_live:
            logger.info(f"Camera stream for {self.id} went stale, acquiring a fresh one")
            async with self._setup_lock:
                try:
                    await self._acquire_camera()
                except SetupError as e:
                    self.last_error = str(e)
                    self._notify()
                    raise
            if self.state.phase is not SessionPhase.SETUP:
                return

        self.sampler.stop()
        self.state.consecutive_no_face_ticks = 0
        self.state.remaining_seconds = self.assessment.duration_seconds
        self._seconds_until_no_face_timeout = None
        self._set_phase(SessionPhase.ACTIVE, notify=False)

        self.focus_monitor.attach()
        self.sampler.start(self._stream, SamplingMode.ACTIVE)
        self._countdown_task = asyncio.get_running_loop().create_task(
            self._run_countdown(), name=f"countdown-{self.id}"
        )
        self._notify()

    # ============== Active exam ==============

    def record_grading(self, grading: GradingPayload):
        """Keep the latest scoring payload for a timer-forced submission"""
        self._grading = grading

    def submit(self, grading: Optional[GradingPayload] = None) -> Optional[SessionResult]:
        """ACTIVE -> COMPLETED on explicit submission"""
        self._require(SessionPhase.ACTIVE, "submit")
        if grading is not None:
            self._grading = grading
        self._finish(SessionPhase.COMPLETED)
        return self.result

    def handle_detection(self, detection: DetectionFrame, mode: SamplingMode = SamplingMode.ACTIVE):
        """Sampler callback: one tick of fused detections"""
        if mode is SamplingMode.PREVIEW:
            if self.state.phase is SessionPhase.SETUP:
                self._preview = DetectionStatus.from_detection(detection)
                self._notify()
            return

        if self.state.phase is not SessionPhase.ACTIVE:
            return

        self._detection = DetectionStatus.from_detection(detection)
        result = classify(detection, self.state.consecutive_no_face_ticks, self._policy)
        self.state.consecutive_no_face_ticks = result.consecutive_no_face_ticks
        self._seconds_until_no_face_timeout = result.seconds_until_timeout

        if result.violation is not None:
            self.handle_violation(result.violation)
        else:
            self._notify()

    def handle_violation(self, event: ViolationEvent) -> bool:
        """
        ACTIVE -> TERMINATED on the first violation.

        Returns:
            True if this event ended the session
        """
        if self.state.phase is not SessionPhase.ACTIVE:
            logger.debug(f"Ignoring {event.reason.value} violation in phase {self.state.phase.value}")
            return False

        log_violation(self.id, event.reason.value, event.source)
        self._finish(SessionPhase.TERMINATED, event.reason)
        return True

    def handle_focus_event(self, event: str) -> Optional[ViolationEvent]:
        """Forward a host focus/visibility event ("hidden", "visible", "blur", "focus")"""
        return self.focus_monitor.handle_event(event)

    def tick_countdown(self):
        """One second of exam time has passed"""
        if self.state.phase is not SessionPhase.ACTIVE:
            return

        self.state.remaining_seconds = max(0, self.state.remaining_seconds - 1)
        if self.state.remaining_seconds == 0:
            logger.info(f"Time is up for session {self.id}, submitting")
            self._finish(SessionPhase.COMPLETED)
        else:
            self._notify()

    async def _run_countdown(self):
        while self.state.phase is SessionPhase.ACTIVE:
            await asyncio.sleep(self.config.countdown_tick_seconds)
            self.tick_countdown()

    def close(self):
        """Release tasks and the camera without producing a result (service shutdown)"""
        cancel_task(self._countdown_task)
        self._countdown_task = None
        self.sampler.stop()
        self.focus_monitor.detach()
        self._release_camera()

    # ============== Internals ==============

    def _finish(self, phase: SessionPhase, reason: Optional[ReasonCode] = None):
        """Enter a terminal phase, stop everything and report once"""
        self.state.termination_reason = reason
        self._set_phase(phase, notify=False)

        cancel_task(self._countdown_task)
        self._countdown_task = None
        self.sampler.stop()
        self.focus_monitor.detach()
        self._release_camera()

        elapsed = self.assessment.duration_seconds - self.state.remaining_seconds
        grading = self._grading
        if phase is SessionPhase.COMPLETED and self.grader is not None:
            try:
                grading = self.grader()
            except Exception:
                logger.exception(f"Grader failed for session {self.id}")

        try:
            self.result = self.reporter.report(
                self.id, phase, reason, elapsed, self.assessment, grading
            )
        except Exception:
            logger.exception(f"Result reporting failed for session {self.id}")

        self._finished.set()
        self._notify()

    async def _acquire_camera(self):
        try:
            stream = await self.camera.acquire(self.config.constraints)
        except CameraAcquisitionError:
            raise
        except Exception as e:
            raise CameraAcquisitionError(
                "Camera access denied. Please enable camera permissions and try again."
            ) from e

        if self.state.phase is not SessionPhase.SETUP:
            self.camera.release(stream)
            return

        if self._stream is not None:
            self.camera.release(self._stream)
        self._stream = stream

    def _release_camera(self):
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            self.camera.release(stream)
        except Exception:
            logger.exception(f"Failed to release camera for session {self.id}")

    def _require(self, phase: SessionPhase, action: str):
        if self.state.phase is not phase:
            raise SessionStateError(
                f"Cannot {action} while session is {self.state.phase.value}"
            )

    def _set_phase(self, phase: SessionPhase, notify: bool = True):
        old = self.state.phase
        self.state.phase = phase
        log_phase_change(self.id, old.value, phase.value)
        if notify:
            self._notify()

    def _notify(self):
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener failed")
