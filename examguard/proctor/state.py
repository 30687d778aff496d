"""
Session State - Phases, mutable session state and the records built from it
"""

from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from .events import DetectionFrame, ReasonCode


class SessionPhase(str, Enum):
    """
    Session phases in chronological order:

    1. IDLE        - No exam running
    2. SETUP       - Camera and models being prepared, preview sampling only
    3. ACTIVE      - Exam running, countdown and violation detection live
    4. TERMINATED  - Ended by a policy violation (terminal)
    5. COMPLETED   - Submitted by the user or by the timer (terminal)
    """
    IDLE = "idle"
    SETUP = "setup"
    ACTIVE = "active"
    TERMINATED = "terminated"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.TERMINATED, SessionPhase.COMPLETED)


class Outcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    TERMINATED = "terminated"


@dataclass
class SessionState:
    """The single piece of mutable state owned by a proctoring session"""
    phase: SessionPhase = SessionPhase.IDLE
    consecutive_no_face_ticks: int = 0
    remaining_seconds: int = 0
    termination_reason: Optional[ReasonCode] = None


@dataclass
class AssessmentInfo:
    """Assessment being proctored"""
    title: str
    duration_seconds: int
    badge: Optional[str] = None
    assessment_id: Optional[str] = None


@dataclass
class GradingPayload:
    """Scoring supplied by the grading collaborator"""
    score: int = 0
    correct_answers: int = 0
    total_questions: int = 0


@dataclass
class DetectionStatus:
    """What the cameras last saw, for display only"""
    faces: int = 0
    persons: int = 0
    phone: bool = False
    books: bool = False
    headphones: bool = False

    @classmethod
    def from_detection(cls, detection: DetectionFrame) -> "DetectionStatus":
        return cls(
            faces=detection.face_count,
            persons=detection.person_count,
            phone=detection.prohibited.phone,
            books=detection.prohibited.book_or_reading_material,
            headphones=detection.prohibited.audio_device
        )


@dataclass
class SessionSnapshot:
    """Read-only view of a session handed to observers"""
    session_id: str
    phase: SessionPhase
    remaining_seconds: int
    consecutive_no_face_ticks: int
    seconds_until_no_face_timeout: Optional[float]
    termination_reason: Optional[ReasonCode]
    camera_ready: bool
    models_ready: bool
    detection: DetectionStatus
    preview: DetectionStatus
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        data["termination_reason"] = (
            self.termination_reason.value if self.termination_reason else None
        )
        return data


@dataclass
class SessionResult:
    """Outcome record produced exactly once when a session ends"""
    session_id: str
    title: str
    outcome: Outcome
    reason: Optional[ReasonCode]
    elapsed_seconds: int
    score: int
    correct_answers: int
    total_questions: int
    badge: Optional[str]
    status: str
    completed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def time_taken(self) -> str:
        return f"{round(self.elapsed_seconds / 60)} mins"

    def to_payload(self) -> Dict[str, Any]:
        """Render the record expected by the result service"""
        payload = {
            "title": self.title,
            "score": self.score,
            "correctAnswers": self.correct_answers,
            "totalQuestions": self.total_questions,
            "timeTaken": self.time_taken,
            "badge": self.badge,
            "status": self.status,
        }
        if self.reason is not None:
            payload["terminationReason"] = self.reason.value
        return payload
